"""Tests for the mock monitor registry and protocol handlers."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
from pydantic import ValidationError
from recording_mocks import MockFailure, RecordingMocks, complete

from mockengine import settings
from mockengine.models import (
    GET_RESOURCE_TOKEN,
    InvokeRequest,
    MockResourceResult,
    RegisterResourceRequest,
    SupportsFeatureResponse,
)
from mockengine.monitor import (
    ExtensionPointError,
    MockMonitor,
    ResourceRegistry,
    UnknownResourceError,
)
from mockengine.rpc import (
    SPECIAL_SECRET_SIG,
    SPECIAL_SIG_KEY,
    UNKNOWN,
    UNKNOWN_VALUE,
    Secret,
    SerializationError,
)
from mockengine.urn import InvalidUrnError


@pytest.fixture
def mocks() -> RecordingMocks:
    return RecordingMocks()


@pytest.fixture
def monitor(mocks: RecordingMocks) -> MockMonitor:
    return MockMonitor(mocks)


async def register(
    monitor: MockMonitor, type_: str, name: str, parent: str | None = None, **fields: Any
) -> Any:
    request = {"type": type_, "name": name, "object": fields.pop("object", {}), **fields}
    if parent is not None:
        request["parent"] = parent
    return (await complete(monitor.register_resource, request)).response


async def get_resource(monitor: MockMonitor, urn: str) -> Any:
    request = {"tok": GET_RESOURCE_TOKEN, "args": {"urn": urn}}
    return await complete(monitor.invoke, request)


class TestResourceRegistry:
    """Tests for ResourceRegistry."""

    def test_upsert_creates_then_updates_in_place(self) -> None:
        """Test that a second upsert keeps identity fields and replaces id/state."""
        registry = ResourceRegistry()

        first = registry.upsert(
            "urn:a", type_="pkg:mod:T", qualified_type="pkg:mod:T", name="a",
            id_="1", state={"v": 1}, custom=True,
        )
        second = registry.upsert(
            "urn:a", type_="pkg:mod:Other", qualified_type="pkg:mod:Other", name="b",
            id_="2", state={"v": 2}, custom=True,
        )

        assert second is first
        assert len(registry) == 1
        assert first.type == "pkg:mod:T"
        assert first.name == "a"
        assert first.id == "2"
        assert first.state == {"v": 2}

    def test_require_unknown(self) -> None:
        """Test that requiring an unregistered URN raises."""
        registry = ResourceRegistry()

        with pytest.raises(UnknownResourceError) as exc_info:
            registry.require("urn:missing")

        assert str(exc_info.value) == "unknown resource urn:missing"
        assert exc_info.value.urn == "urn:missing"

    def test_list_and_children(self) -> None:
        """Test filtering by type and by parent."""
        registry = ResourceRegistry()
        registry.upsert("urn:p", type_="T", qualified_type="T", name="p", id_=None, state={})
        registry.upsert(
            "urn:c", type_="U", qualified_type="T$U", name="c", id_=None, state={}, parent="urn:p"
        )

        assert [r.urn for r in registry.list_resources()] == ["urn:p", "urn:c"]
        assert [r.urn for r in registry.list_resources("U")] == ["urn:c"]
        assert [r.urn for r in registry.children_of("urn:p")] == ["urn:c"]
        assert "urn:p" in registry

        registry.clear()
        assert len(registry) == 0


class TestRegisterResource:
    """Tests for MockMonitor.register_resource()."""

    @pytest.mark.asyncio
    async def test_bucket_scenario(self, monitor: MockMonitor, mocks: RecordingMocks) -> None:
        """Test registering a bucket and reading its state back."""
        mocks.resource_results["my-bucket"] = {
            "id": "bucket-1",
            "state": {"foo": "bar", "arn": "arn:aws:s3:::my-bucket"},
        }

        response = await register(monitor, "pkg:mod:Bucket", "my-bucket", object={"foo": "bar"})

        assert response.id == "bucket-1"
        assert response.urn.endswith("::pkg:mod:Bucket::my-bucket")
        assert response.urn == "urn:pulumi:stack::project::pkg:mod:Bucket::my-bucket"
        assert response.object == {"foo": "bar", "arn": "arn:aws:s3:::my-bucket"}

        lookup = await get_resource(monitor, response.urn)
        assert lookup.response.return_ == {"foo": "bar", "arn": "arn:aws:s3:::my-bucket"}

    @pytest.mark.asyncio
    async def test_mock_receives_request_fields(
        self, monitor: MockMonitor, mocks: RecordingMocks
    ) -> None:
        """Test that import id, provider and custom flag reach the mock."""
        await register(
            monitor, "pkg:mod:T", "x",
            object={"a": 1}, importId="phys-1", provider="prov-ref", custom=True,
        )

        assert mocks.resource_requests == [{
            "type": "pkg:mod:T",
            "name": "x",
            "inputs": {"a": 1},
            "provider": "prov-ref",
            "id": "phys-1",
            "custom": True,
        }]

    @pytest.mark.asyncio
    async def test_accepts_pydantic_request(self, monitor: MockMonitor) -> None:
        """Test that a request model is accepted as well as a mapping."""
        request = RegisterResourceRequest(type="pkg:mod:T", name="x", object={"a": 1})

        recorder = await complete(monitor.register_resource, request)

        assert recorder.response.id == "x_id"

    @pytest.mark.asyncio
    async def test_secrets_and_unknowns_stored_serialized(
        self, monitor: MockMonitor, mocks: RecordingMocks
    ) -> None:
        """Test that the mock sees plain values and the registry holds wire values."""
        secret_wire = {SPECIAL_SIG_KEY: SPECIAL_SECRET_SIG, "value": "hunter2"}
        mocks.resource_results["db"] = MockResourceResult(
            id="db-1", state={"password": Secret("hunter2"), "endpoint": UNKNOWN}
        )

        response = await register(monitor, "pkg:mod:Db", "db", object={"password": secret_wire})

        assert mocks.resource_requests[0]["inputs"] == {"password": Secret("hunter2")}
        assert response.object == {"password": secret_wire, "endpoint": UNKNOWN_VALUE}
        assert monitor.resources.require(response.urn).state == response.object

    @pytest.mark.asyncio
    async def test_tuple_result(self, monitor: MockMonitor, mocks: RecordingMocks) -> None:
        """Test that an (id, state) tuple is accepted."""
        mocks.resource_results["t"] = ("t-1", {"k": "v"})

        response = await register(monitor, "pkg:mod:T", "t")

        assert response.id == "t-1"
        assert response.object == {"k": "v"}

    @pytest.mark.asyncio
    async def test_resource_without_id(self, monitor: MockMonitor, mocks: RecordingMocks) -> None:
        """Test that a component without physical id registers with id None."""
        mocks.resource_results["comp"] = {"state": {}}

        response = await register(monitor, "my:index:Component", "comp", custom=False)

        assert response.id is None
        assert monitor.resources.require(response.urn).id is None

    @pytest.mark.asyncio
    async def test_async_mocks(self) -> None:
        """Test that coroutine results from mocks are awaited."""
        monitor = MockMonitor(RecordingMocks(use_async=True))

        response = await register(monitor, "pkg:mod:T", "x", object={"a": 1})

        assert response.id == "x_id"
        assert response.object == {"a": 1}

    @pytest.mark.asyncio
    async def test_uses_active_project_and_stack(self, mocks: RecordingMocks) -> None:
        """Test that URNs pick up the activated project and stack."""
        monitor = settings.set_mocks(mocks, project="web", stack="dev")

        response = await register(monitor, "pkg:mod:T", "x")

        assert response.urn == "urn:pulumi:dev::web::pkg:mod:T::x"

    @pytest.mark.asyncio
    async def test_reregistration_keeps_urn_and_replaces_state(
        self, monitor: MockMonitor, mocks: RecordingMocks
    ) -> None:
        """Test that registering the same resource twice keeps one entry."""
        first = await register(monitor, "pkg:mod:T", "x", object={"v": 1})
        second = await register(monitor, "pkg:mod:T", "x", object={"v": 2})

        assert first.urn == second.urn
        assert len(monitor.resources) == 1
        assert monitor.resources.require(first.urn).state == {"v": 2}

    @pytest.mark.asyncio
    async def test_extra_result_keys_ignored(
        self, monitor: MockMonitor, mocks: RecordingMocks
    ) -> None:
        """Test that a mapping result carrying keys besides id and state is accepted."""
        mocks.resource_results["x"] = {"id": "x-1", "state": {"a": 1}, "urn": "ignored"}

        response = await register(monitor, "pkg:mod:T", "x")

        assert response.id == "x-1"
        assert response.object == {"a": 1}

    @pytest.mark.asyncio
    async def test_response_is_detached_from_registry(self, monitor: MockMonitor) -> None:
        """Test that mutating a nested value in a response leaves stored state alone."""
        response = await register(monitor, "pkg:mod:T", "x", object={"n": {"k": 1}})

        response.object["n"]["k"] = 999

        assert monitor.resources.require(response.urn).state == {"n": {"k": 1}}



class TestParentChains:
    """Tests for URN synthesis through parent relationships."""

    @pytest.mark.asyncio
    async def test_child_of_registered_parent(self, monitor: MockMonitor) -> None:
        """Test that a child's type is prefixed with its parent's own type."""
        parent = await register(monitor, "my:index:Component", "web")
        child = await register(monitor, "pkg:mod:Bucket", "logs", parent=parent.urn)

        assert child.urn == "urn:pulumi:stack::project::my:index:Component$pkg:mod:Bucket::logs"
        entry = monitor.resources.require(child.urn)
        assert entry.parent == parent.urn
        assert entry.type == "pkg:mod:Bucket"
        assert entry.qualified_type == "my:index:Component$pkg:mod:Bucket"

    @pytest.mark.asyncio
    async def test_grandchild_inherits_only_innermost_type(self, monitor: MockMonitor) -> None:
        """Test that a three-level chain A -> B -> C yields B$C, not A$B$C."""
        a = await register(monitor, "A", "a")
        b = await register(monitor, "B", "b", parent=a.urn)
        c = await register(monitor, "C", "c", parent=b.urn)

        assert b.urn.split("::")[2] == "A$B"
        assert c.urn.split("::")[2] == "B$C"

    @pytest.mark.asyncio
    async def test_unregistered_parent_is_parsed(self, monitor: MockMonitor) -> None:
        """Test that an unregistered parent URN is parsed for its own type."""
        child = await register(monitor, "C", "child", parent="urn:pulumi:s::p::A$B::p")

        assert child.urn.split("::")[2] == "B$C"

    @pytest.mark.asyncio
    async def test_malformed_unregistered_parent(self, monitor: MockMonitor) -> None:
        """Test that a malformed parent fails the call without registering anything."""
        recorder = await complete(
            monitor.register_resource,
            {"type": "C", "name": "child", "parent": "garbage"},
        )

        assert isinstance(recorder.error, InvalidUrnError)
        assert len(monitor.resources) == 0

    @pytest.mark.asyncio
    async def test_distinct_parents_distinct_urns(self, monitor: MockMonitor) -> None:
        """Test that the same child under different parent types gets distinct URNs."""
        p1 = await register(monitor, "pkg:mod:A", "p")
        p2 = await register(monitor, "pkg:mod:B", "p")

        c1 = await register(monitor, "pkg:mod:C", "c", parent=p1.urn)
        c2 = await register(monitor, "pkg:mod:C", "c", parent=p2.urn)

        assert c1.urn != c2.urn
        assert len(monitor.resources) == 4


class TestReadResource:
    """Tests for MockMonitor.read_resource()."""

    @pytest.mark.asyncio
    async def test_read_populates_registry(
        self, monitor: MockMonitor, mocks: RecordingMocks
    ) -> None:
        """Test that a read resource can be looked up afterwards."""
        recorder = await complete(
            monitor.read_resource,
            {"type": "pkg:mod:Vpc", "name": "existing", "id": "vpc-123", "properties": {"a": 1}},
        )
        response = recorder.response

        assert mocks.resource_requests[0]["id"] == "vpc-123"
        assert response.urn == "urn:pulumi:stack::project::pkg:mod:Vpc::existing"
        assert response.properties == {"a": 1}
        assert monitor.resources.require(response.urn).id == "vpc-123"

        lookup = await get_resource(monitor, response.urn)
        assert lookup.response.return_ == {"a": 1}

    @pytest.mark.asyncio
    async def test_read_response_wire_shape(self, monitor: MockMonitor) -> None:
        """Test the camelCase wire dump of a read response."""
        recorder = await complete(monitor.read_resource, {"type": "T", "name": "r"})

        assert recorder.response.to_wire() == {
            "urn": "urn:pulumi:stack::project::T::r",
            "properties": {},
        }

    @pytest.mark.asyncio
    async def test_read_under_registered_parent(self, monitor: MockMonitor) -> None:
        """Test that a read with a parent gets a qualified type and can be looked up."""
        parent = await register(monitor, "pkg:mod:Parent", "p")

        recorder = await complete(
            monitor.read_resource,
            {"type": "pkg:mod:Child", "name": "c", "id": "c-1", "parent": parent.urn},
        )
        response = recorder.response

        assert recorder.error is None
        assert response.urn.split("::")[2] == "pkg:mod:Parent$pkg:mod:Child"
        assert monitor.resources.require(response.urn).parent == parent.urn
        assert [r.urn for r in monitor.resources.children_of(parent.urn)] == [response.urn]

        lookup = await get_resource(monitor, response.urn)
        assert lookup.error is None
        assert lookup.response.return_ == {}



class TestInvoke:
    """Tests for MockMonitor.invoke()."""

    @pytest.mark.asyncio
    async def test_call_is_forwarded(self, monitor: MockMonitor, mocks: RecordingMocks) -> None:
        """Test that a function call is answered by the mock and serialized."""
        mocks.call_results["pkg:index:getZones"] = {"zones": ["a", "b"], "token": Secret("t")}

        recorder = await complete(
            monitor.invoke,
            InvokeRequest(tok="pkg:index:getZones", args={"region": "west"}, provider="p1"),
        )

        assert mocks.calls == [
            {"token": "pkg:index:getZones", "args": {"region": "west"}, "provider": "p1"}
        ]
        assert recorder.response.return_ == {
            "zones": ["a", "b"],
            "token": {SPECIAL_SIG_KEY: SPECIAL_SECRET_SIG, "value": "t"},
        }
        assert recorder.response.to_wire()["return"]["zones"] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_get_resource_unknown(self, monitor: MockMonitor, mocks: RecordingMocks) -> None:
        """Test that looking up an unregistered URN fails."""
        recorder = await get_resource(monitor, "urn:pulumi:stack::project::T::missing")

        assert isinstance(recorder.error, UnknownResourceError)
        assert "unknown resource" in str(recorder.error)
        assert mocks.calls == []

    @pytest.mark.asyncio
    async def test_get_resource_does_not_call_mock(
        self, monitor: MockMonitor, mocks: RecordingMocks
    ) -> None:
        """Test that getResource is served from the registry only."""
        response = await register(monitor, "T", "x")

        await get_resource(monitor, response.urn)

        assert mocks.calls == []

    @pytest.mark.asyncio
    async def test_get_resource_returns_a_copy(self, monitor: MockMonitor) -> None:
        """Test that mutating a looked-up nested value does not change later lookups."""
        response = await register(monitor, "pkg:mod:T", "x", object={"n": {"k": 1}})

        lookup = await get_resource(monitor, response.urn)
        lookup.response.return_["n"]["k"] = 999

        again = await get_resource(monitor, response.urn)
        assert again.response.return_ == {"n": {"k": 1}}


    @pytest.mark.asyncio
    async def test_non_mapping_result(self, monitor: MockMonitor, mocks: RecordingMocks) -> None:
        """Test that a call result that is not a mapping is a serialization error."""
        mocks.call_results["pkg:index:f"] = ["not", "a", "mapping"]

        recorder = await complete(monitor.invoke, {"tok": "pkg:index:f"})

        assert isinstance(recorder.error, SerializationError)

    @pytest.mark.asyncio
    async def test_none_result_is_empty(self, monitor: MockMonitor, mocks: RecordingMocks) -> None:
        """Test that a call returning None yields an empty return value."""
        mocks.call_results["pkg:index:f"] = None

        recorder = await complete(monitor.invoke, {"tok": "pkg:index:f"})

        assert recorder.response.return_ == {}


class TestRegisterResourceOutputs:
    """Tests for MockMonitor.register_resource_outputs()."""

    @pytest.mark.asyncio
    async def test_replaces_not_merges(self, monitor: MockMonitor) -> None:
        """Test that each output registration fully replaces state."""
        response = await register(monitor, "T", "x", object={"input": 1})

        first = await complete(
            monitor.register_resource_outputs, {"urn": response.urn, "outputs": {"a": 1}}
        )
        second = await complete(
            monitor.register_resource_outputs, {"urn": response.urn, "outputs": {"b": 2}}
        )

        assert first.response == {}
        assert second.response == {}
        lookup = await get_resource(monitor, response.urn)
        assert lookup.response.return_ == {"b": 2}

    @pytest.mark.asyncio
    async def test_outputs_stored_as_given(self, monitor: MockMonitor) -> None:
        """Test that outputs are stored without transformation."""
        response = await register(monitor, "T", "x")
        outputs = {"s": {SPECIAL_SIG_KEY: SPECIAL_SECRET_SIG, "value": "v"}, "u": UNKNOWN_VALUE}

        await complete(monitor.register_resource_outputs, {"urn": response.urn, "outputs": outputs})

        assert monitor.resources.require(response.urn).state == outputs

    @pytest.mark.asyncio
    async def test_outputs_copied_on_commit(self, monitor: MockMonitor) -> None:
        """Test that the caller's outputs payload can be changed after the call."""
        response = await register(monitor, "T", "x")
        outputs = {"n": {"k": 1}}

        await complete(monitor.register_resource_outputs, {"urn": response.urn, "outputs": outputs})
        outputs["n"]["k"] = 999

        lookup = await get_resource(monitor, response.urn)
        assert lookup.response.return_ == {"n": {"k": 1}}


    @pytest.mark.asyncio
    async def test_unknown_urn(self, monitor: MockMonitor) -> None:
        """Test that outputs for an unregistered URN fail."""
        recorder = await complete(
            monitor.register_resource_outputs, {"urn": "urn:pulumi:s::p::T::nope", "outputs": {}}
        )

        assert isinstance(recorder.error, UnknownResourceError)


class TestSupportsFeature:
    """Tests for MockMonitor.supports_feature()."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("feature", ["secrets", "resourceReferences", "anything"])
    async def test_always_supported(self, monitor: MockMonitor, feature: str) -> None:
        """Test that every feature is reported as supported."""
        recorder = await complete(monitor.supports_feature, {"id": feature})

        assert recorder.response == SupportsFeatureResponse(has_support=True)
        assert recorder.response.to_wire() == {"hasSupport": True}


class TestFailureIsolation:
    """Tests that failures are delivered through the callback and contained."""

    @pytest.mark.asyncio
    async def test_mock_error_wrapped(self, monitor: MockMonitor, mocks: RecordingMocks) -> None:
        """Test that a raising mock becomes ExtensionPointError with the cause chained."""
        mocks.set_failure(True, "boom")

        recorder = await complete(monitor.register_resource, {"type": "T", "name": "x"})

        assert isinstance(recorder.error, ExtensionPointError)
        assert isinstance(recorder.error.__cause__, MockFailure)
        assert "boom" in str(recorder.error)
        assert len(monitor.resources) == 0

    @pytest.mark.asyncio
    async def test_async_mock_error_wrapped(self) -> None:
        """Test that a rejecting coroutine mock is wrapped the same way."""
        mocks = RecordingMocks(use_async=True)
        mocks.set_failure(True)
        monitor = MockMonitor(mocks)

        recorder = await complete(monitor.invoke, {"tok": "pkg:index:f"})

        assert isinstance(recorder.error, ExtensionPointError)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "result",
        [
            {"id": "x"},  # missing state
            {"id": 42, "state": {}},  # non-string id
            "just-a-string",
        ],
    )
    async def test_invalid_resource_result_shape(
        self, monitor: MockMonitor, mocks: RecordingMocks, result: Any
    ) -> None:
        """Test that malformed mock results become SerializationError."""
        mocks.resource_results["x"] = result

        recorder = await complete(monitor.register_resource, {"type": "T", "name": "x"})

        assert isinstance(recorder.error, SerializationError)
        assert isinstance(recorder.error.__cause__, ValidationError)
        assert len(monitor.resources) == 0

    @pytest.mark.asyncio
    async def test_unserializable_state(self, monitor: MockMonitor, mocks: RecordingMocks) -> None:
        """Test that unserializable state fails without registering the resource."""
        mocks.resource_results["x"] = {"id": "x", "state": {"bad": object()}}

        recorder = await complete(monitor.register_resource, {"type": "T", "name": "x"})

        assert isinstance(recorder.error, SerializationError)
        assert len(monitor.resources) == 0

    @pytest.mark.asyncio
    async def test_invalid_request(self, monitor: MockMonitor) -> None:
        """Test that a malformed request is reported through the callback."""
        recorder = await complete(monitor.register_resource, {"name": "missing-type"})

        assert isinstance(recorder.error, ValidationError)

    @pytest.mark.asyncio
    async def test_failure_leaves_other_resources_intact(
        self, monitor: MockMonitor, mocks: RecordingMocks
    ) -> None:
        """Test that one failing call does not disturb existing entries."""
        good = await register(monitor, "T", "good", object={"v": 1})
        mocks.set_failure(True)

        recorder = await complete(monitor.register_resource, {"type": "T", "name": "bad"})

        assert recorder.error is not None
        assert len(monitor.resources) == 1
        assert monitor.resources.require(good.urn).state == {"v": 1}

    @pytest.mark.asyncio
    async def test_concurrent_calls_are_independent(self) -> None:
        """Test that interleaved handlers each complete exactly once."""
        mocks = RecordingMocks(use_async=True)
        monitor = MockMonitor(mocks)
        mocks.resource_results["bad"] = {"id": "bad"}

        recorders = await asyncio.gather(
            complete(monitor.register_resource, {"type": "T", "name": "a"}),
            complete(monitor.register_resource, {"type": "T", "name": "bad"}),
            complete(monitor.register_resource, {"type": "T", "name": "b"}),
        )

        assert recorders[0].response.id == "a_id"
        assert isinstance(recorders[1].error, SerializationError)
        assert recorders[2].response.id == "b_id"
        assert sorted(r.name for r in monitor.resources.list_resources()) == ["a", "b"]
