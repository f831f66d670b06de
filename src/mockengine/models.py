"""Pydantic models for the mock engine protocol surface.

These models provide:
1. Validation of incoming protocol requests at the boundary
2. camelCase wire names alongside snake_case attribute names
3. A validated shape for what user mocks return from resolve_resource()
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# Token the engine uses to read back a registered resource's state
GET_RESOURCE_TOKEN = "pulumi:pulumi:getResource"

# Structured value payload: JSON-compatible mapping
StructValue = dict[str, Any]


class ProtocolModel(BaseModel):
    """Base for protocol messages."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict[str, Any]:
        """Dump using wire (camelCase) field names."""
        return self.model_dump(by_alias=True, exclude_none=True)


# =============================================================================
# Requests
# =============================================================================


class InvokeRequest(ProtocolModel):
    """Provider function invocation."""

    tok: str = Field(min_length=1)
    args: StructValue = Field(default_factory=dict)
    provider: str | None = None


class ReadResourceRequest(ProtocolModel):
    """Read of an existing resource by physical id."""

    type: str = Field(min_length=1)
    name: str = Field(min_length=1)
    properties: StructValue = Field(default_factory=dict)
    provider: str | None = None
    id: str | None = None
    custom: bool | None = None
    parent: str | None = None


class RegisterResourceRequest(ProtocolModel):
    """Registration of a new resource (construction or import)."""

    type: str = Field(min_length=1)
    name: str = Field(min_length=1)
    object: StructValue = Field(default_factory=dict)
    provider: str | None = None
    import_id: str | None = Field(None, alias="importId")
    custom: bool | None = None
    parent: str | None = None


class RegisterResourceOutputsRequest(ProtocolModel):
    """Registration of a resource's final outputs."""

    urn: str = Field(min_length=1)
    outputs: StructValue = Field(default_factory=dict)


class SupportsFeatureRequest(ProtocolModel):
    """Feature support query."""

    id: str = ""


# =============================================================================
# Responses
# =============================================================================


class InvokeResponse(ProtocolModel):
    """Result of a provider function invocation."""

    return_: StructValue = Field(default_factory=dict, alias="return")


class ReadResourceResponse(ProtocolModel):
    """Result of reading a resource."""

    urn: str
    properties: StructValue = Field(default_factory=dict)


class RegisterResourceResponse(ProtocolModel):
    """Result of registering a resource."""

    urn: str
    id: str | None = None
    object: StructValue = Field(default_factory=dict)


class SupportsFeatureResponse(ProtocolModel):
    """Feature support answer."""

    has_support: bool = Field(True, alias="hasSupport")


# =============================================================================
# Extension point results
# =============================================================================


class MockResourceResult(BaseModel):
    """What a mock returns for a resource construction or read.

    state holds plain (deserialized) property values; id is the physical id,
    absent for resources without a physical counterpart. Other keys in a
    mapping result (a urn, say) are ignored.
    """

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    state: dict[str, Any]

    @classmethod
    def coerce(cls, value: Any) -> MockResourceResult:
        """Validate any of the accepted result shapes.

        Accepted shapes:
        - MockResourceResult instance
        - mapping with "state" and optional "id"
        - 2-tuple (id, state)

        Raises:
            pydantic.ValidationError: If the shape or field types are wrong.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, tuple) and len(value) == 2:
            value = {"id": value[0], "state": value[1]}
        elif isinstance(value, Mapping):
            value = dict(value)
        return cls.model_validate(value)
