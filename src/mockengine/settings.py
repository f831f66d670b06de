"""Process-wide mock engine activation.

Installing mocks replaces the engine connection for the rest of the process:
the program under test talks to get_monitor() instead of a live engine. The
project name, stack name and preview flag are fixed at the same time and are
read back by the monitor each time it synthesizes a URN.

Each activation builds a new MockMonitor with its own registry, so two test
runs in the same process never share resource state.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .config import MockConfig

if TYPE_CHECKING:
    from .mocks import Mocks
    from .monitor import MockMonitor

logger = logging.getLogger(__name__)

_config: MockConfig = MockConfig()
_monitor: MockMonitor | None = None


def set_mock_options(
    monitor: MockMonitor,
    project: str | None = None,
    stack: str | None = None,
    preview: bool | None = None,
) -> None:
    """Install a monitor in place of the engine connection.

    Args:
        monitor: Monitor that will service protocol calls.
        project: Project name. Defaults to "project".
        stack: Stack name. Defaults to "stack".
        preview: Whether the program runs as a preview. Defaults to False.

    Raises:
        ConfigurationError: If project or stack is invalid.
    """
    global _config, _monitor

    config = MockConfig.create(project=project, stack=stack, preview=preview)
    _config = config
    _monitor = monitor

    logger.info(
        "Mock engine activated",
        extra={"project": config.project, "stack": config.stack, "preview": config.preview},
    )


def set_mocks(
    mocks: Mocks,
    project: str | None = None,
    stack: str | None = None,
    preview: bool | None = None,
) -> MockMonitor:
    """Configure the process to use the given mocks.

    Args:
        mocks: Mocks for provider function calls and resource construction.
        project: Project name. Defaults to "project".
        stack: Stack name. Defaults to "stack".
        preview: Whether the program runs as a preview. Defaults to False.

    Returns:
        The newly installed monitor.
    """
    from .monitor import MockMonitor

    monitor = MockMonitor(mocks)
    set_mock_options(monitor, project=project, stack=stack, preview=preview)
    return monitor


def get_monitor() -> MockMonitor:
    """Get the installed monitor.

    Raises:
        RuntimeError: If no mocks have been installed.
    """
    if _monitor is None:
        raise RuntimeError("Mocks are not active; call set_mocks() first")
    return _monitor


def get_config() -> MockConfig:
    """Get the active configuration."""
    return _config


def get_project() -> str:
    """Get the active project name."""
    return _config.project


def get_stack() -> str:
    """Get the active stack name."""
    return _config.stack


def is_dry_run() -> bool:
    """Check whether the program runs as a preview."""
    return _config.preview


def reset() -> None:
    """Remove the installed monitor and restore default settings."""
    global _config, _monitor

    _config = MockConfig()
    _monitor = None
