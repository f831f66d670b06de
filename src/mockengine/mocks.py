"""Extension point for user-supplied mock behavior.

A test subclasses Mocks to decide what provider function calls return and
what constructing or reading a resource produces. Both methods may be plain
functions or coroutines; the monitor awaits whichever it gets.

Usage:
    class MyMocks(Mocks):
        def resolve_call(self, token, args, provider=None):
            if token == "aws:index/getRegion:getRegion":
                return {"name": "us-west-2"}
            return {}

        def resolve_resource(self, type_, name, inputs, provider=None, id_=None, custom=None):
            return MockResourceResult(id=f"{name}-id", state=dict(inputs))

    set_mocks(MyMocks(), project="web", stack="dev")
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Mapping
from typing import Any, Union

from .models import MockResourceResult

# What resolve_resource() may return, directly or through an awaitable
ResourceResultLike = Union[
    MockResourceResult,
    Mapping[str, Any],
    tuple[str | None, Mapping[str, Any]],
]


class Mocks(ABC):
    """Replaces engine-side provider operations during tests."""

    @abstractmethod
    def resolve_call(
        self,
        token: str,
        args: dict[str, Any],
        provider: str | None = None,
    ) -> Mapping[str, Any] | Awaitable[Mapping[str, Any]]:
        """Mock a provider function call.

        Args:
            token: Function token, of the form "package:module:function".
            args: Deserialized call arguments.
            provider: Reference of the provider instance used for the call, if any.

        Returns:
            Mapping of result values.
        """

    @abstractmethod
    def resolve_resource(
        self,
        type_: str,
        name: str,
        inputs: dict[str, Any],
        provider: str | None = None,
        id_: str | None = None,
        custom: bool | None = None,
    ) -> ResourceResultLike | Awaitable[ResourceResultLike]:
        """Mock a resource construction or read.

        Args:
            type_: Resource type token, of the form "package:module:Type".
            name: Logical name of the resource.
            inputs: Deserialized resource inputs.
            provider: Reference of the provider instance managing the resource, if any.
            id_: Physical id of an existing resource to read or import, if any.
            custom: Whether the resource is managed by a provider (as opposed
                to a component).

        Returns:
            Physical id and output state for the resource.
        """
