"""Structured-value serialization for the mock engine wire format.

Property payloads cross the protocol boundary as JSON-compatible mappings.
A few values need reserved encodings:

- Secrets: {SPECIAL_SIG_KEY: SPECIAL_SECRET_SIG, "value": <serialized value>}
- Resource references: {SPECIAL_SIG_KEY: SPECIAL_RESOURCE_SIG, "urn": ..., "id": ...}
- Unknown values (preview only): the string UNKNOWN_VALUE

serialize_properties() is async because property values may be awaitables
that resolve to other resources' outputs.
"""

from __future__ import annotations

import inspect
import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

SPECIAL_SIG_KEY = "4dabf18193072939515e22adb298388d"
SPECIAL_SECRET_SIG = "1b47061264138c4ac30d75fd1eb44270"
SPECIAL_RESOURCE_SIG = "5cf8f73096256a8f31e491e813e4eb8e"
UNKNOWN_VALUE = "04da6b54-80e4-46f7-96ec-b56ff0331ba9"

# Nesting limit for property values, guards against self-referencing containers
MAX_PROPERTY_DEPTH = 64


class SerializationError(Exception):
    """Raised when a value cannot be converted to or from the wire format."""

    pass


class _Unknown:
    """Sentinel for a value that is not known until the resource is created."""

    _instance: _Unknown | None = None

    def __new__(cls) -> _Unknown:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNKNOWN"

    def __bool__(self) -> bool:
        return False


UNKNOWN = _Unknown()


@dataclass(frozen=True)
class Secret:
    """A value that must be treated as secret on the wire."""

    value: Any


@dataclass(frozen=True)
class ResourceReference:
    """A reference to another resource by URN."""

    urn: str
    id: str | None = None
    package_version: str | None = None


async def serialize_properties(ctx: str, props: Mapping[str, Any] | None) -> dict[str, Any]:
    """Serialize a mapping of plain property values into wire form.

    Top-level properties whose value is None are omitted.

    Args:
        ctx: Dotted path prefix used in error messages.
        props: Property values to serialize.

    Returns:
        JSON-compatible mapping.

    Raises:
        SerializationError: If any value cannot be serialized.
    """
    if props is None:
        return {}
    if not isinstance(props, Mapping):
        raise SerializationError(
            f"{ctx or 'properties'}: expected a mapping, got {type(props).__name__}"
        )

    result: dict[str, Any] = {}
    for key, value in props.items():
        if not isinstance(key, str):
            raise SerializationError(f"{ctx or 'properties'}: property keys must be strings: {key!r}")
        if value is None:
            continue
        result[key] = await serialize_property(_join(ctx, key), value)
    return result


async def serialize_property(ctx: str, value: Any, _depth: int = 0) -> Any:
    """Serialize a single property value.

    Raises:
        SerializationError: If the value has an unsupported type.
    """
    if _depth > MAX_PROPERTY_DEPTH:
        raise SerializationError(f"{ctx}: value nested deeper than {MAX_PROPERTY_DEPTH} levels")

    if inspect.isawaitable(value):
        value = await value

    if value is None or isinstance(value, (bool, str, int)):
        return value

    if isinstance(value, float):
        if not math.isfinite(value):
            raise SerializationError(f"{ctx}: non-finite number {value!r} cannot be serialized")
        return value

    if value is UNKNOWN:
        return UNKNOWN_VALUE

    if isinstance(value, Secret):
        return {
            SPECIAL_SIG_KEY: SPECIAL_SECRET_SIG,
            "value": await serialize_property(ctx, value.value, _depth + 1),
        }

    if isinstance(value, ResourceReference):
        ref: dict[str, Any] = {SPECIAL_SIG_KEY: SPECIAL_RESOURCE_SIG, "urn": value.urn}
        if value.id is not None:
            ref["id"] = value.id
        if value.package_version is not None:
            ref["packageVersion"] = value.package_version
        return ref

    if isinstance(value, Mapping):
        obj: dict[str, Any] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise SerializationError(f"{ctx}: mapping keys must be strings: {key!r}")
            obj[key] = await serialize_property(_join(ctx, key), item, _depth + 1)
        return obj

    if isinstance(value, (list, tuple)):
        return [
            await serialize_property(f"{ctx}[{i}]", item, _depth + 1)
            for i, item in enumerate(value)
        ]

    raise SerializationError(f"{ctx}: unsupported value of type {type(value).__name__}")


def deserialize_properties(props: Mapping[str, Any] | None) -> dict[str, Any]:
    """Deserialize a wire mapping into plain property values.

    Raises:
        SerializationError: If the mapping contains an unrecognized special value.
    """
    if props is None:
        return {}
    if not isinstance(props, Mapping):
        raise SerializationError(f"properties: expected a mapping, got {type(props).__name__}")
    return {key: deserialize_property(value, key) for key, value in props.items()}


def deserialize_property(value: Any, ctx: str = "", _depth: int = 0) -> Any:
    """Deserialize a single wire value."""
    if _depth > MAX_PROPERTY_DEPTH:
        raise SerializationError(f"{ctx}: value nested deeper than {MAX_PROPERTY_DEPTH} levels")

    if value == UNKNOWN_VALUE:
        return UNKNOWN

    if isinstance(value, Mapping):
        sig = value.get(SPECIAL_SIG_KEY)
        if sig is None:
            return {
                key: deserialize_property(item, _join(ctx, key), _depth + 1)
                for key, item in value.items()
            }
        if sig == SPECIAL_SECRET_SIG:
            return Secret(deserialize_property(value.get("value"), ctx, _depth + 1))
        if sig == SPECIAL_RESOURCE_SIG:
            urn = value.get("urn")
            if not isinstance(urn, str):
                raise SerializationError(f"{ctx}: resource reference is missing a URN")
            return ResourceReference(
                urn=urn,
                id=value.get("id"),
                package_version=value.get("packageVersion"),
            )
        raise SerializationError(f"{ctx}: unrecognized signature {sig!r}")

    if isinstance(value, list):
        return [
            deserialize_property(item, f"{ctx}[{i}]", _depth + 1)
            for i, item in enumerate(value)
        ]

    return value


def is_secret_value(value: Any) -> bool:
    """Check whether a wire value is an encoded secret."""
    return isinstance(value, Mapping) and value.get(SPECIAL_SIG_KEY) == SPECIAL_SECRET_SIG


def _join(ctx: str, key: str) -> str:
    return f"{ctx}.{key}" if ctx else key
