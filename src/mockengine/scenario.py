"""Declarative YAML scenarios for the mock engine.

A scenario bundles mock rules with a scripted sequence of protocol calls, so
a program's engine traffic can be replayed without writing a Mocks subclass:

    project: web
    stack: dev
    resources:
      - type: aws:s3/bucket:Bucket
        id: "{name}-bucket"
        state:
          arn: "arn:aws:s3:::{name}"
    calls:
      - token: aws:index/getRegion:getRegion
        result: {name: us-west-2}
    steps:
      - op: registerResource
        request: {type: aws:s3/bucket:Bucket, name: logs, object: {acl: private}}
      - op: invoke
        ref: logs
        request: {tok: "pulumi:pulumi:getResource"}

The {name} and {type} placeholders in resource rule ids and state strings
are replaced with the resource's name and type; other braces are kept as is.

Steps may name earlier resources by logical name: parentRef becomes the
request's parent, ref becomes the target URN. A ref on an invoke step is a
getResource lookup and may not name any other token.

SECURITY: Scenario files are size-limited and parsed with yaml.safe_load.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from . import settings
from .mocks import Mocks
from .models import GET_RESOURCE_TOKEN, MockResourceResult
from .monitor import MockMonitor

logger = logging.getLogger(__name__)

MAX_SCENARIO_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max scenario file
MAX_SCENARIO_STEPS = 10000

DEFAULT_ID_TEMPLATE = "{name}_id"
WILDCARD_TYPE = "*"


class ScenarioLoadError(Exception):
    """Raised when scenario loading or validation fails."""

    pass


# =============================================================================
# Scenario Models
# =============================================================================


class ResourceRule(BaseModel):
    """How to mock resources of one type."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    type: str = WILDCARD_TYPE
    id: str | None = DEFAULT_ID_TEMPLATE
    state: dict[str, Any] = Field(default_factory=dict)
    # Copy the resource's inputs into its state before applying `state`
    echo_inputs: bool = Field(True, alias="echoInputs")


class CallRule(BaseModel):
    """How to mock one provider function."""

    model_config = {"extra": "ignore"}

    token: str = Field(min_length=1)
    result: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None


class StepOp(str, Enum):
    """Protocol calls a scenario step can make."""

    INVOKE = "invoke"
    READ_RESOURCE = "readResource"
    REGISTER_RESOURCE = "registerResource"
    REGISTER_RESOURCE_OUTPUTS = "registerResourceOutputs"
    SUPPORTS_FEATURE = "supportsFeature"


class ScenarioStep(BaseModel):
    """One scripted protocol call."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    op: StepOp
    request: dict[str, Any] = Field(default_factory=dict)
    parent_ref: str | None = Field(None, alias="parentRef")
    ref: str | None = None
    expect_error: bool = Field(False, alias="expectError")

    @model_validator(mode="after")
    def validate_ref(self) -> ScenarioStep:
        if self.ref is not None and self.op == StepOp.INVOKE:
            _check_lookup_request(self.request)
        return self


class Scenario(BaseModel):
    """Mock rules plus the protocol calls to replay against them."""

    model_config = {"extra": "ignore"}

    project: str | None = None
    stack: str | None = None
    preview: bool | None = None
    resources: list[ResourceRule] = Field(default_factory=list)
    calls: list[CallRule] = Field(default_factory=list)
    steps: list[ScenarioStep] = Field(default_factory=list, max_length=MAX_SCENARIO_STEPS)


# =============================================================================
# Rule-driven Mocks
# =============================================================================


class ScenarioMocks(Mocks):
    """Mocks answering from ResourceRule and CallRule lists.

    Resource rules match on exact type first, then on the "*" wildcard.
    Unmatched resources get an id of "{name}_id" and their inputs as state.
    Unmatched calls raise KeyError.
    """

    def __init__(
        self,
        resources: list[ResourceRule] | None = None,
        calls: list[CallRule] | None = None,
    ) -> None:
        self._resources = {rule.type: rule for rule in resources or []}
        self._calls = {rule.token: rule for rule in calls or []}

    @classmethod
    def from_scenario(cls, scenario: Scenario) -> ScenarioMocks:
        return cls(resources=scenario.resources, calls=scenario.calls)

    def resolve_call(
        self,
        token: str,
        args: dict[str, Any],
        provider: str | None = None,
    ) -> dict[str, Any]:
        rule = self._calls.get(token)
        if rule is None:
            raise KeyError(f"no mock registered for call '{token}'")
        if rule.error:
            raise RuntimeError(rule.error)
        return copy.deepcopy(rule.result)

    def resolve_resource(
        self,
        type_: str,
        name: str,
        inputs: dict[str, Any],
        provider: str | None = None,
        id_: str | None = None,
        custom: bool | None = None,
    ) -> MockResourceResult:
        rule = self._resources.get(type_) or self._resources.get(WILDCARD_TYPE) or ResourceRule()

        state: dict[str, Any] = dict(inputs) if rule.echo_inputs else {}
        state.update(_format_values(rule.state, name=name, type_=type_))

        if id_:
            resource_id: str | None = id_
        elif custom is False or rule.id is None:
            resource_id = None
        else:
            resource_id = _substitute(rule.id, name=name, type_=type_)

        return MockResourceResult(id=resource_id, state=state)


def _format_values(value: Any, *, name: str, type_: str) -> Any:
    if isinstance(value, str):
        return _substitute(value, name=name, type_=type_)
    if isinstance(value, Mapping):
        return {k: _format_values(v, name=name, type_=type_) for k, v in value.items()}
    if isinstance(value, list):
        return [_format_values(v, name=name, type_=type_) for v in value]
    return value


def _substitute(template: str, *, name: str, type_: str) -> str:
    # Braces other than the two placeholders are literal text
    return template.replace("{name}", name).replace("{type}", type_)


# =============================================================================
# Loading
# =============================================================================


def load_scenario(path: Path) -> Scenario:
    """Load and validate a scenario from YAML.

    Raises:
        ScenarioLoadError: If the scenario cannot be loaded or fails validation.
    """
    if not path.exists():
        raise ScenarioLoadError(f"Scenario file not found: {path}")

    # SECURITY: Check file size before reading to prevent DoS
    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise ScenarioLoadError(f"Failed to stat scenario file {path}: {e}") from e

    if file_size > MAX_SCENARIO_FILE_SIZE_BYTES:
        raise ScenarioLoadError(
            f"Scenario file exceeds maximum size of {MAX_SCENARIO_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ScenarioLoadError(f"Failed to read scenario file {path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ScenarioLoadError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw_data, dict):
        raise ScenarioLoadError(f"Scenario file must contain a YAML mapping: {path}")

    try:
        scenario = Scenario.model_validate(raw_data)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            errors.append(f"  - {loc}: {error['msg']}")
        error_list = "\n".join(errors)
        raise ScenarioLoadError(f"Validation failed for {path}:\n{error_list}") from e

    logger.info(
        "Loaded scenario from %s",
        path,
        extra={"steps": len(scenario.steps), "resource_rules": len(scenario.resources)},
    )
    return scenario


# =============================================================================
# Replay
# =============================================================================


@dataclass
class StepOutcome:
    """Result of replaying one scenario step."""

    index: int
    op: StepOp
    ok: bool
    expected: bool
    response: dict[str, Any] | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "op": self.op.value,
            "ok": self.ok,
            "expected": self.expected,
            "response": self.response,
            "error": self.error,
        }


async def run_scenario(scenario: Scenario, mocks: Mocks | None = None) -> list[StepOutcome]:
    """Activate mocks and replay a scenario's steps in order.

    Args:
        scenario: Scenario to replay.
        mocks: Mocks to use instead of the scenario's own rules.

    Returns:
        One StepOutcome per step.
    """
    monitor = settings.set_mocks(
        mocks or ScenarioMocks.from_scenario(scenario),
        project=scenario.project,
        stack=scenario.stack,
        preview=scenario.preview,
    )

    urns: dict[str, str] = {}
    outcomes: list[StepOutcome] = []

    for index, step in enumerate(scenario.steps):
        error, response = await _replay_step(monitor, step, urns)

        if error is None and step.op in (StepOp.READ_RESOURCE, StepOp.REGISTER_RESOURCE):
            urns[step.request.get("name", "")] = response.urn

        ok = error is None
        outcome = StepOutcome(
            index=index,
            op=step.op,
            ok=ok,
            expected=ok != step.expect_error,
            response=_to_wire(response) if ok else None,
            error=None if ok else f"{type(error).__name__}: {error}",
        )
        if not outcome.expected:
            logger.warning(
                "Scenario step did not match expectation",
                extra={"index": index, "op": step.op.value, "error": outcome.error},
            )
        outcomes.append(outcome)

    return outcomes


async def _replay_step(
    monitor: MockMonitor, step: ScenarioStep, urns: dict[str, str]
) -> tuple[Exception | None, Any]:
    request = copy.deepcopy(step.request)

    try:
        if step.parent_ref is not None:
            request["parent"] = _lookup_ref(urns, step.parent_ref)
        if step.ref is not None:
            urn = _lookup_ref(urns, step.ref)
            if step.op == StepOp.REGISTER_RESOURCE_OUTPUTS:
                request["urn"] = urn
            elif step.op == StepOp.INVOKE:
                _check_lookup_request(request)
                request["tok"] = GET_RESOURCE_TOKEN
                request["args"] = {**request.get("args", {}), "urn": urn}
    except (KeyError, ValueError) as e:
        return e, None

    handlers: dict[StepOp, Callable[[Any, Any], Awaitable[None]]] = {
        StepOp.INVOKE: monitor.invoke,
        StepOp.READ_RESOURCE: monitor.read_resource,
        StepOp.REGISTER_RESOURCE: monitor.register_resource,
        StepOp.REGISTER_RESOURCE_OUTPUTS: monitor.register_resource_outputs,
        StepOp.SUPPORTS_FEATURE: monitor.supports_feature,
    }

    completion: list[tuple[Exception | None, Any]] = []
    await handlers[step.op](request, lambda err, resp: completion.append((err, resp)))
    return completion[0]


def _lookup_ref(urns: dict[str, str], name: str) -> str:
    urn = urns.get(name)
    if urn is None:
        raise KeyError(f"no earlier step registered a resource named '{name}'")
    return urn


def _check_lookup_request(request: Mapping[str, Any]) -> None:
    """Check that a ref'd invoke request can be turned into a getResource lookup.

    Raises:
        ValueError: If the request names another token or has non-mapping args.
    """
    tok = request.get("tok", GET_RESOURCE_TOKEN)
    if tok != GET_RESOURCE_TOKEN:
        raise ValueError(f"ref is only allowed on '{GET_RESOURCE_TOKEN}' invokes, not '{tok}'")
    args = request.get("args", {})
    if not isinstance(args, Mapping):
        raise ValueError(f"invoke args must be a mapping, got {type(args).__name__}")


def _to_wire(response: Any) -> dict[str, Any]:
    if isinstance(response, BaseModel):
        return response.model_dump(by_alias=True, exclude_none=True)
    return dict(response or {})
