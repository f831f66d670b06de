"""Mock resource-lifecycle engine for testing infrastructure programs.

Stands in for the engine connection while a program runs under test:
resource registrations, reads, function invocations and output registrations
are answered locally by user-supplied Mocks, with URNs and registry state
kept consistent with what the real engine would produce.
"""

from .config import ConfigurationError, MockConfig
from .mocks import Mocks
from .models import GET_RESOURCE_TOKEN, MockResourceResult
from .monitor import (
    ExtensionPointError,
    MockMonitor,
    RegisteredResource,
    ResourceRegistry,
    UnknownResourceError,
)
from .rpc import UNKNOWN, ResourceReference, Secret, SerializationError
from .settings import get_monitor, set_mock_options, set_mocks
from .urn import InvalidUrnError, Urn, new_urn, parse_urn

__version__ = "0.1.0"

__all__ = [
    "GET_RESOURCE_TOKEN",
    "UNKNOWN",
    "ConfigurationError",
    "ExtensionPointError",
    "InvalidUrnError",
    "MockConfig",
    "MockMonitor",
    "MockResourceResult",
    "Mocks",
    "RegisteredResource",
    "ResourceReference",
    "ResourceRegistry",
    "Secret",
    "SerializationError",
    "UnknownResourceError",
    "Urn",
    "get_monitor",
    "new_urn",
    "parse_urn",
    "set_mock_options",
    "set_mocks",
]
