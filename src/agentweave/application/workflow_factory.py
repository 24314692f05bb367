"""
Workflow Factory
================

Builds WorkflowExecutor instances from definition documents (YAML or JSON)
and offers fluent builders for code-defined workflows.

Definition document:

    name: research
    type: Sequential            # Sequential | Parallel | Loop | Conditional
    settings:
      stopOnError: true
      maxDegreeOfParallelism: 4
      waitForAll: true
      maxIterations: 5
      breakOnError: true
      collectResults: true
      continueCondition: "iteration < 3"
      condition: "data.mode == fast"      # Conditional only
      then: quick                         # Conditional only
      else: thorough                      # Conditional only
    steps:
      - name: draft
        target: writer
        input: "{data.initialInput}"
        continueOnError: false
        condition: "lastResult contains TODO"

Conditions use a small expression language: ``<lhs> <op> <rhs>`` where lhs
is ``iteration``, ``lastResult``, ``data.<key>`` or ``<step>.output|success|error``
and op is one of ``== != < <= > >= contains``.
"""

import json
import re
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from agentweave.core.bus.event_bus import EventBus
from agentweave.core.domain.errors import WorkflowDefinitionError
from agentweave.core.domain.executor import Executor
from agentweave.core.domain.workflow import (
    ConditionalFlow,
    ControlFlow,
    LoopFlow,
    ParallelFlow,
    RunContext,
    SequentialFlow,
    StepAction,
    StepCondition,
    WorkflowExecutor,
    WorkflowStep,
)
from agentweave.core.interfaces.executor import ExecutorLookup

logger = structlog.get_logger()


class WorkflowType(str, Enum):
    SEQUENTIAL = "Sequential"
    PARALLEL = "Parallel"
    LOOP = "Loop"
    CONDITIONAL = "Conditional"


class StepDefinition(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    name: str = Field(min_length=1)
    target: str = Field(min_length=1)
    input: str = ""
    continue_on_error: bool = Field(False, alias="continueOnError")
    condition: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class WorkflowSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    stop_on_error: bool = Field(True, alias="stopOnError")
    max_degree_of_parallelism: int = Field(0, ge=0, alias="maxDegreeOfParallelism")
    wait_for_all: bool = Field(True, alias="waitForAll")
    max_iterations: int = Field(10, ge=1, alias="maxIterations")
    break_on_error: bool = Field(True, alias="breakOnError")
    collect_results: bool = Field(True, alias="collectResults")
    continue_condition: str | None = Field(None, alias="continueCondition")
    condition: str | None = None
    then_step: str | None = Field(None, alias="then")
    else_step: str | None = Field(None, alias="else")


class WorkflowDefinition(BaseModel):
    """Validated workflow definition document."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    name: str = Field(min_length=1)
    type: WorkflowType = WorkflowType.SEQUENTIAL
    description: str = ""
    settings: WorkflowSettings = Field(default_factory=WorkflowSettings)
    steps: list[StepDefinition] = Field(min_length=1)

    @model_validator(mode="after")
    def _check_structure(self) -> "WorkflowDefinition":
        names = [step.name for step in self.steps]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"duplicate step names: {duplicates}")

        if self.type == WorkflowType.CONDITIONAL:
            if not self.settings.condition or not self.settings.then_step:
                raise ValueError("Conditional workflows need settings.condition and settings.then")
            for branch in (self.settings.then_step, self.settings.else_step):
                if branch is not None and branch not in names:
                    raise ValueError(f"branch '{branch}' is not a step")
        return self


# ----------------------------------------------------------------------
# Condition expressions
# ----------------------------------------------------------------------

_CONDITION = re.compile(
    r"^\s*(?P<lhs>[A-Za-z_][A-Za-z0-9_.-]*)\s*"
    r"(?P<op>==|!=|<=|>=|<|>|\bcontains\b)\s*"
    r"(?P<rhs>.*?)\s*$"
)

_ORDERING = {
    "<": lambda a, b: a < b,
    "<=": lambda a, b: a <= b,
    ">": lambda a, b: a > b,
    ">=": lambda a, b: a >= b,
}


def _parse_literal(raw: str) -> Any:
    if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in "'\"":
        return raw[1:-1]
    lowered = raw.lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    try:
        return int(raw)
    except ValueError:
        pass
    try:
        return float(raw)
    except ValueError:
        return raw


def _operand(lhs: str, context: RunContext) -> Any:
    if lhs == "iteration":
        return context.iteration
    if lhs == "lastResult":
        return context.get_last_result() or ""
    head, _, field = lhs.partition(".")
    if head == "data" and field:
        return context.data.get(field)
    step = context.step_results.get(head)
    if step is None:
        return None
    if field in ("", "output"):
        return step.output
    if field == "success":
        return step.success
    if field == "error":
        return step.error or ""
    return None


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return "" if value is None else str(value)


def parse_condition(expression: str) -> StepCondition:
    """
    Compile a condition expression into a predicate over the run context.

    Raises:
        WorkflowDefinitionError: If the expression does not parse
    """
    match = _CONDITION.match(expression or "")
    if match is None or not match.group("rhs"):
        raise WorkflowDefinitionError(f"Invalid condition expression: {expression!r}")

    lhs, op = match.group("lhs"), match.group("op")
    expected = _parse_literal(match.group("rhs"))

    def predicate(context: RunContext) -> bool:
        actual = _operand(lhs, context)
        if op == "contains":
            return _as_text(expected) in _as_text(actual)
        if op in _ORDERING:
            a, b = _as_number(actual), _as_number(expected)
            return a is not None and b is not None and _ORDERING[op](a, b)

        a, b = _as_number(actual), _as_number(expected)
        if a is not None and b is not None:
            equal = a == b
        else:
            equal = _as_text(actual) == _as_text(expected)
        return equal if op == "==" else not equal

    predicate.__name__ = f"condition({expression})"
    return predicate


# ----------------------------------------------------------------------
# Loading and building
# ----------------------------------------------------------------------


def parse_definition(data: Mapping[str, Any] | str) -> WorkflowDefinition:
    """
    Validate a definition from a dict or from YAML/JSON text.

    Raises:
        WorkflowDefinitionError: If the document is malformed
    """
    if isinstance(data, str):
        try:
            data = yaml.safe_load(data)
        except yaml.YAMLError as e:
            raise WorkflowDefinitionError(f"Invalid workflow document: {e}") from e
    if not isinstance(data, Mapping):
        raise WorkflowDefinitionError("Workflow document must be a mapping")
    try:
        return WorkflowDefinition.model_validate(dict(data))
    except ValidationError as e:
        raise WorkflowDefinitionError(f"Invalid workflow definition: {e}") from e


def load_definition(path: str | Path) -> WorkflowDefinition:
    path = Path(path)
    if not path.exists():
        raise WorkflowDefinitionError(f"Workflow file not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        return parse_definition(f.read())


def save_definition(definition: WorkflowDefinition, path: str | Path) -> None:
    """Write a definition as JSON (.json) or YAML (anything else)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = definition.model_dump(by_alias=True, exclude_none=True, mode="json")
    with open(path, "w", encoding="utf-8") as f:
        if path.suffix == ".json":
            json.dump(data, f, indent=2)
        else:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)


class WorkflowFactory:
    """
    Creates WorkflowExecutors from definitions.

    Args:
        executors: Step target lookup (a dict or ExecutorRuntime)
        event_bus: Bus for created workflows, defaults to the lookup's bus
    """

    def __init__(
        self,
        executors: ExecutorLookup | Mapping[str, Executor],
        event_bus: EventBus | None = None,
    ):
        self.executors = executors
        self.event_bus = event_bus or getattr(executors, "event_bus", None)
        self.logger = logger.bind(component="workflow_factory")

    def create(
        self,
        definition: WorkflowDefinition | Mapping[str, Any] | str,
        initial_data: dict[str, Any] | None = None,
        validate_targets: bool = True,
    ) -> WorkflowExecutor:
        """
        Build a workflow from a definition.

        Args:
            definition: Parsed definition, dict, or YAML/JSON text
            initial_data: Values seeded into each run's data map
            validate_targets: Fail fast when a step target is not registered

        Raises:
            WorkflowDefinitionError: For malformed definitions or unknown targets
        """
        if not isinstance(definition, WorkflowDefinition):
            definition = parse_definition(definition)

        if validate_targets:
            missing = [s.target for s in definition.steps if self.executors.get(s.target) is None]
            if missing:
                raise WorkflowDefinitionError(
                    f"Workflow '{definition.name}' references unknown targets: {missing}"
                )

        steps = [
            WorkflowStep(
                name=s.name,
                target=s.target,
                input=s.input,
                continue_on_error=s.continue_on_error,
                condition=parse_condition(s.condition) if s.condition else None,
                metadata=dict(s.metadata),
            )
            for s in definition.steps
        ]
        try:
            workflow = WorkflowExecutor(
                definition.name,
                steps,
                flow=self._build_flow(definition),
                executors=self.executors,
                event_bus=self.event_bus,
                initial_data=initial_data,
                configuration={"type": definition.type.value, "description": definition.description},
            )
        except ValueError as e:
            raise WorkflowDefinitionError(f"Invalid workflow '{definition.name}': {e}") from e
        self.logger.info(
            "workflow.created",
            workflow=definition.name,
            type=definition.type.value,
            steps=len(steps),
        )
        return workflow

    def create_from_file(
        self, path: str | Path, initial_data: dict[str, Any] | None = None
    ) -> WorkflowExecutor:
        return self.create(load_definition(path), initial_data=initial_data)

    @staticmethod
    def _build_flow(definition: WorkflowDefinition) -> ControlFlow:
        settings = definition.settings
        if definition.type == WorkflowType.PARALLEL:
            return ParallelFlow(
                max_concurrency=settings.max_degree_of_parallelism,
                wait_for_all=settings.wait_for_all,
            )
        if definition.type == WorkflowType.LOOP:
            return LoopFlow(
                max_iterations=settings.max_iterations,
                continue_condition=(
                    parse_condition(settings.continue_condition)
                    if settings.continue_condition
                    else None
                ),
                break_on_error=settings.break_on_error,
                collect_results=settings.collect_results,
            )
        if definition.type == WorkflowType.CONDITIONAL:
            return ConditionalFlow(
                condition=parse_condition(settings.condition),
                then_step=settings.then_step,
                else_step=settings.else_step,
            )
        return SequentialFlow(stop_on_error=settings.stop_on_error)


class WorkflowBuilder:
    """
    Fluent construction of code-defined workflows.

    Example:
        >>> workflow = (
        ...     WorkflowBuilder.sequential("pipeline", executors=runtime)
        ...     .add_step("draft", target="writer")
        ...     .add_step("review", target="critic", input="{lastResult}")
        ...     .build()
        ... )
    """

    def __init__(
        self,
        name: str,
        flow: ControlFlow,
        executors: ExecutorLookup | Mapping[str, Executor] | None = None,
        event_bus: EventBus | None = None,
    ):
        self.name = name
        self.flow = flow
        self.executors = executors
        self.event_bus = event_bus or getattr(executors, "event_bus", None)
        self._steps: list[WorkflowStep] = []
        self._initial_data: dict[str, Any] = {}

    @classmethod
    def sequential(cls, name: str, stop_on_error: bool = True, **kwargs: Any) -> "WorkflowBuilder":
        return cls(name, SequentialFlow(stop_on_error=stop_on_error), **kwargs)

    @classmethod
    def parallel(
        cls, name: str, max_concurrency: int = 0, wait_for_all: bool = True, **kwargs: Any
    ) -> "WorkflowBuilder":
        return cls(name, ParallelFlow(max_concurrency, wait_for_all), **kwargs)

    @classmethod
    def loop(
        cls,
        name: str,
        max_iterations: int = 10,
        continue_condition: StepCondition | None = None,
        break_on_error: bool = True,
        collect_results: bool = True,
        **kwargs: Any,
    ) -> "WorkflowBuilder":
        flow = LoopFlow(max_iterations, continue_condition, break_on_error, collect_results)
        return cls(name, flow, **kwargs)

    @classmethod
    def conditional(
        cls,
        name: str,
        condition: StepCondition,
        then_step: str,
        else_step: str | None = None,
        **kwargs: Any,
    ) -> "WorkflowBuilder":
        return cls(name, ConditionalFlow(condition, then_step, else_step), **kwargs)

    def add_step(
        self,
        name: str,
        target: str | None = None,
        action: StepAction | None = None,
        input: str = "",
        continue_on_error: bool = False,
        condition: StepCondition | str | None = None,
        **metadata: Any,
    ) -> "WorkflowBuilder":
        if isinstance(condition, str):
            condition = parse_condition(condition)
        self._steps.append(
            WorkflowStep(
                name=name,
                target=target,
                action=action,
                input=input,
                continue_on_error=continue_on_error,
                condition=condition,
                metadata=metadata,
            )
        )
        return self

    def with_data(self, **data: Any) -> "WorkflowBuilder":
        self._initial_data.update(data)
        return self

    def build(self) -> WorkflowExecutor:
        return WorkflowExecutor(
            self.name,
            self._steps,
            flow=self.flow,
            executors=self.executors,
            event_bus=self.event_bus,
            initial_data=self._initial_data,
        )
