"""Mock resource monitor: registry and protocol dispatcher.

The monitor stands in for the engine connection a program under test talks
to. Each protocol call is handled by one async handler:

1. Validate the request (a pydantic model or a plain mapping)
2. Serve it from the registry, or ask the user's Mocks for a decision
3. Commit the result to the registry
4. Complete the call through its callback, exactly once

REGISTRY CONSISTENCY:
The registry only ever holds serialized state. Every registry write happens
after the handler's last await, so a handler that fails (unknown resource,
mock error, serialization error) never leaves a partial entry behind.
"""

from __future__ import annotations

import copy
import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from . import settings
from .mocks import Mocks
from .models import (
    GET_RESOURCE_TOKEN,
    InvokeRequest,
    InvokeResponse,
    MockResourceResult,
    ReadResourceRequest,
    ReadResourceResponse,
    RegisterResourceOutputsRequest,
    RegisterResourceRequest,
    RegisterResourceResponse,
    SupportsFeatureRequest,
    SupportsFeatureResponse,
)
from .rpc import SerializationError, deserialize_properties, serialize_properties
from .urn import format_urn, parse_urn, qualify_type

logger = logging.getLogger(__name__)

# Completion callback: (error, response), called exactly once per call
Callback = Callable[[Exception | None, Any], None]

RequestT = TypeVar("RequestT", bound=BaseModel)


class UnknownResourceError(Exception):
    """Raised when a call references a URN that was never registered."""

    def __init__(self, urn: str) -> None:
        super().__init__(f"unknown resource {urn}")
        self.urn = urn


class ExtensionPointError(Exception):
    """Raised when a user-supplied mock raises while resolving a call."""

    pass


@dataclass
class RegisteredResource:
    """A resource that has been read or registered.

    urn is fixed at first registration. id and state are replaced by later
    registrations of the same URN; state alone by output registration.
    """

    urn: str
    type: str
    qualified_type: str
    name: str
    id: str | None = None
    state: dict[str, Any] = field(default_factory=dict)
    parent: str | None = None
    custom: bool | None = None


class ResourceRegistry:
    """In-memory URN → resource mapping owned by one monitor."""

    def __init__(self) -> None:
        """Initialize empty registry."""
        self._resources: dict[str, RegisteredResource] = {}

    def __len__(self) -> int:
        return len(self._resources)

    def __contains__(self, urn: object) -> bool:
        return urn in self._resources

    def get(self, urn: str) -> RegisteredResource | None:
        """Get a resource by URN.

        Returns:
            RegisteredResource if found, None otherwise.
        """
        return self._resources.get(urn)

    def require(self, urn: str) -> RegisteredResource:
        """Get a resource by URN.

        Raises:
            UnknownResourceError: If the URN was never registered.
        """
        resource = self._resources.get(urn)
        if resource is None:
            raise UnknownResourceError(urn)
        return resource

    def upsert(
        self,
        urn: str,
        *,
        type_: str,
        qualified_type: str,
        name: str,
        id_: str | None,
        state: dict[str, Any],
        parent: str | None = None,
        custom: bool | None = None,
    ) -> RegisteredResource:
        """Create a resource entry, or update id and state of an existing one.

        An existing entry keeps its identity fields; only id, state and
        custom are replaced.
        """
        existing = self._resources.get(urn)
        if existing is not None:
            existing.id = id_
            existing.state = state
            existing.custom = custom
            return existing

        resource = RegisteredResource(
            urn=urn,
            type=type_,
            qualified_type=qualified_type,
            name=name,
            id=id_,
            state=state,
            parent=parent,
            custom=custom,
        )
        self._resources[urn] = resource
        return resource

    def replace_state(self, urn: str, state: dict[str, Any]) -> RegisteredResource:
        """Replace a resource's state wholesale.

        Raises:
            UnknownResourceError: If the URN was never registered.
        """
        resource = self.require(urn)
        resource.state = state
        return resource

    def list_resources(self, type_: str | None = None) -> list[RegisteredResource]:
        """List resources in registration order, optionally filtered by type."""
        results = list(self._resources.values())
        if type_:
            results = [r for r in results if r.type == type_]
        return results

    def children_of(self, urn: str) -> list[RegisteredResource]:
        """List resources registered with the given parent."""
        return [r for r in self._resources.values() if r.parent == urn]

    def clear(self) -> None:
        """Clear all state."""
        self._resources.clear()


class MockMonitor:
    """Protocol dispatcher backed by a ResourceRegistry and user Mocks.

    Handlers never raise: every failure is delivered as callback(error, None).

    Usage:
        monitor = MockMonitor(MyMocks())
        await monitor.register_resource(
            {"type": "pkg:mod:Bucket", "name": "b", "object": {}},
            callback,
        )
    """

    def __init__(self, mocks: Mocks, registry: ResourceRegistry | None = None) -> None:
        """Initialize monitor.

        Args:
            mocks: User-supplied extension point.
            registry: Registry to use; a fresh one by default.
        """
        self.mocks = mocks
        self.resources = registry if registry is not None else ResourceRegistry()

    # -------------------------------------------------------------------------
    # Name synthesis
    # -------------------------------------------------------------------------

    def new_urn(self, parent: str | None, type_: str, name: str) -> tuple[str, str]:
        """Synthesize a URN for a resource.

        The parent's own type comes from its registry entry when the parent
        is registered, and from parsing the parent URN otherwise.

        Returns:
            (urn, qualified_type) tuple.

        Raises:
            InvalidUrnError: If an unregistered parent URN is malformed.
        """
        parent_type: str | None = None
        if parent:
            parent_resource = self.resources.get(parent)
            if parent_resource is not None:
                parent_type = parent_resource.type
            else:
                parent_type = parse_urn(parent).type

        qualified_type = qualify_type(type_, parent_type)
        urn = format_urn(settings.get_stack(), settings.get_project(), qualified_type, name)
        return urn, qualified_type

    # -------------------------------------------------------------------------
    # Protocol handlers
    # -------------------------------------------------------------------------

    async def invoke(self, request: InvokeRequest | Mapping[str, Any], callback: Callback) -> None:
        """Handle a provider function invocation."""
        await self._complete("invoke", self._invoke(request), callback)

    async def read_resource(
        self, request: ReadResourceRequest | Mapping[str, Any], callback: Callback
    ) -> None:
        """Handle a resource read."""
        await self._complete("read_resource", self._read_resource(request), callback)

    async def register_resource(
        self, request: RegisterResourceRequest | Mapping[str, Any], callback: Callback
    ) -> None:
        """Handle a resource registration."""
        await self._complete("register_resource", self._register_resource(request), callback)

    async def register_resource_outputs(
        self, request: RegisterResourceOutputsRequest | Mapping[str, Any], callback: Callback
    ) -> None:
        """Handle registration of a resource's outputs."""
        await self._complete(
            "register_resource_outputs", self._register_resource_outputs(request), callback
        )

    async def supports_feature(
        self, request: SupportsFeatureRequest | Mapping[str, Any] | None, callback: Callback
    ) -> None:
        """Report support for every feature."""
        _ = request
        callback(None, SupportsFeatureResponse(has_support=True))

    # -------------------------------------------------------------------------
    # Handler bodies (may raise)
    # -------------------------------------------------------------------------

    async def _invoke(self, request: InvokeRequest | Mapping[str, Any]) -> InvokeResponse:
        req = _validate(InvokeRequest, request)
        args = deserialize_properties(req.args)

        if req.tok == GET_RESOURCE_TOKEN:
            urn = args.get("urn")
            if not isinstance(urn, str):
                raise UnknownResourceError(str(urn))
            resource = self.resources.require(urn)
            return InvokeResponse(return_=copy.deepcopy(resource.state))

        result = await self._call_mock(
            f"call '{req.tok}'", self.mocks.resolve_call, req.tok, args, req.provider
        )
        if result is None:
            result = {}
        if not isinstance(result, Mapping):
            raise SerializationError(
                f"mock call '{req.tok}' must return a mapping, got {type(result).__name__}"
            )

        return InvokeResponse(return_=await serialize_properties("", result))

    async def _read_resource(
        self, request: ReadResourceRequest | Mapping[str, Any]
    ) -> ReadResourceResponse:
        req = _validate(ReadResourceRequest, request)
        resource = await self._resolve_and_commit(
            type_=req.type,
            name=req.name,
            inputs=req.properties,
            provider=req.provider,
            id_=req.id,
            custom=req.custom,
            parent=req.parent,
        )
        return ReadResourceResponse(urn=resource.urn, properties=copy.deepcopy(resource.state))

    async def _register_resource(
        self, request: RegisterResourceRequest | Mapping[str, Any]
    ) -> RegisterResourceResponse:
        req = _validate(RegisterResourceRequest, request)
        resource = await self._resolve_and_commit(
            type_=req.type,
            name=req.name,
            inputs=req.object,
            provider=req.provider,
            id_=req.import_id,
            custom=req.custom,
            parent=req.parent,
        )
        return RegisterResourceResponse(
            urn=resource.urn, id=resource.id, object=copy.deepcopy(resource.state)
        )

    async def _register_resource_outputs(
        self, request: RegisterResourceOutputsRequest | Mapping[str, Any]
    ) -> dict[str, Any]:
        req = _validate(RegisterResourceOutputsRequest, request)
        self.resources.replace_state(req.urn, copy.deepcopy(req.outputs))
        logger.debug("Replaced resource outputs", extra={"urn": req.urn})
        return {}

    async def _resolve_and_commit(
        self,
        *,
        type_: str,
        name: str,
        inputs: dict[str, Any],
        provider: str | None,
        id_: str | None,
        custom: bool | None,
        parent: str | None,
    ) -> RegisteredResource:
        raw = await self._call_mock(
            f"resource '{type_}::{name}'",
            self.mocks.resolve_resource,
            type_,
            name,
            deserialize_properties(inputs),
            provider,
            id_,
            custom,
        )

        try:
            result = MockResourceResult.coerce(raw)
        except ValidationError as e:
            raise SerializationError(
                f"mock resource '{type_}::{name}' returned an invalid result: {e}"
            ) from e

        serialized_state = await serialize_properties("", result.state)

        # No awaits past this point: URN synthesis and commit run as one step
        urn, qualified_type = self.new_urn(parent, type_, name)
        resource = self.resources.upsert(
            urn,
            type_=type_,
            qualified_type=qualified_type,
            name=name,
            id_=result.id,
            state=serialized_state,
            parent=parent or None,
            custom=custom,
        )
        logger.debug(
            "Registered resource",
            extra={"urn": urn, "resource_id": result.id, "custom": custom},
        )
        return resource

    async def _call_mock(self, what: str, fn: Callable[..., Any], *args: Any) -> Any:
        """Call into user mocks, awaiting the result if needed.

        Raises:
            ExtensionPointError: If the mock raises.
        """
        try:
            result = fn(*args)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            raise ExtensionPointError(f"mock {what} failed: {e}") from e
        return result

    async def _complete(self, method: str, work: Awaitable[Any], callback: Callback) -> None:
        """Run a handler body and deliver its outcome to the callback."""
        try:
            response = await work
        except Exception as e:
            logger.warning(
                "Mock monitor call failed",
                extra={"method": method, "error": str(e), "error_type": type(e).__name__},
            )
            callback(e, None)
            return

        logger.debug("Mock monitor call completed", extra={"method": method})
        callback(None, response)


def _validate(model: type[RequestT], request: RequestT | Mapping[str, Any]) -> RequestT:
    if isinstance(request, model):
        return request
    return model.model_validate(request)
