"""
Workflow Executor
=================

Composes steps into a workflow that is itself an Executor, so workflows nest
inside other workflows and register in the runtime like any agent.

A workflow is one step list plus one control-flow value:

- SequentialFlow: steps in declaration order
- ParallelFlow: all steps concurrently, bounded by max_concurrency
- LoopFlow: the step group repeated until a condition or an iteration cap
- ConditionalFlow: a predicate picks a "then" or an "else" step

Each invocation gets a fresh RunContext that holds step results, the last
completed result, a data map (seeded with initialInput) and the iteration
counter. Step inputs are templates resolved against it (see template.py).
Every step publishes ToolCalledEvent before and ToolResultEvent after it runs.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping

from agentweave.core.bus.event_bus import EventBus
from agentweave.core.domain.cancellation import CancellationToken
from agentweave.core.domain.events import ToolCalledEvent, ToolResultEvent
from agentweave.core.domain.executor import Executor
from agentweave.core.domain.models import AgentResult
from agentweave.core.domain.template import TemplateResolver
from agentweave.core.interfaces.executor import ExecutorLookup


@dataclass
class StepResult:
    """
    Outcome of one step execution.

    Attributes:
        step_name: Name of the step
        success: Whether the step produced its output
        output: Output text (empty on failure)
        error: Failure description
        error_type: Exception class name when the step raised
        input: Resolved input the step ran with
        duration: Seconds spent in the step
        iteration: Loop iteration (0 outside loops)
        metadata: Metadata of the underlying AgentResult
    """

    step_name: str
    success: bool
    output: str = ""
    error: str | None = None
    error_type: str | None = None
    input: str = ""
    duration: float = 0.0
    iteration: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)


StepAction = Callable[[str, "RunContext"], Awaitable[AgentResult | str]]
StepCondition = Callable[["RunContext"], bool]


@dataclass(frozen=True)
class WorkflowStep:
    """
    One unit of work inside a workflow.

    Exactly one of target (an executor id or name resolved at run time) or
    action (an inline async callable receiving the resolved input and the
    run context) must be set.

    Attributes:
        name: Unique name within the workflow, usable in templates
        target: Executor id or name
        action: Inline async callable
        input: Input template. Empty means the workflow input.
        continue_on_error: Keep going when this step fails
        condition: Guard; the step is skipped when it returns False
        metadata: Free-form annotations
    """

    name: str
    target: str | None = None
    action: StepAction | None = None
    input: str = ""
    continue_on_error: bool = False
    condition: StepCondition | None = None
    metadata: dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Workflow step name must not be empty")
        if (self.target is None) == (self.action is None):
            raise ValueError(
                f"Step '{self.name}' needs exactly one of target or action"
            )


@dataclass
class RunContext:
    """Per-invocation scratch state. Discarded when the invocation ends."""

    data: dict[str, Any] = field(default_factory=dict)
    step_results: dict[str, StepResult] = field(default_factory=dict)
    last_result: StepResult | None = None
    iteration: int = 0
    steps_executed: int = 0
    errors: list[str] = field(default_factory=list)
    skipped_steps: list[str] = field(default_factory=list)
    iteration_results: list[dict[str, StepResult]] = field(default_factory=list)

    def record(self, result: StepResult) -> None:
        """
        Store a finished step result.

        Only successful results become last_result; failures are kept in
        step_results and errors.
        """
        self.step_results[result.step_name] = result
        self.steps_executed += 1
        if result.success:
            self.last_result = result
        else:
            self.errors.append(f"{result.step_name}: {result.error}")

    def get_last_result(self) -> str | None:
        return self.last_result.output if self.last_result else None

    def fork(self) -> "RunContext":
        """Read-only view handed to concurrent steps."""
        return RunContext(
            data=dict(self.data),
            step_results=dict(self.step_results),
            last_result=self.last_result,
            iteration=self.iteration,
        )


@dataclass(frozen=True)
class SequentialFlow:
    """
    Steps run in declaration order.

    A failed step aborts the run unless the step sets continue_on_error or
    stop_on_error is False.
    """

    stop_on_error: bool = True


@dataclass(frozen=True)
class ParallelFlow:
    """
    Steps run concurrently.

    Attributes:
        max_concurrency: Upper bound on in-flight steps (0 = unbounded)
        wait_for_all: True joins every step and succeeds only if all did.
            False returns on the first finished step, cancels the rest and
            succeeds regardless of individual outcomes.
    """

    max_concurrency: int = 0
    wait_for_all: bool = True

    def __post_init__(self) -> None:
        if self.max_concurrency < 0:
            raise ValueError("max_concurrency must be >= 0")


@dataclass(frozen=True)
class LoopFlow:
    """
    The step group repeats until continue_condition returns False (checked
    after each iteration) or max_iterations is reached.
    """

    max_iterations: int = 10
    continue_condition: StepCondition | None = None
    break_on_error: bool = True
    collect_results: bool = True

    def __post_init__(self) -> None:
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be >= 1")


@dataclass(frozen=True)
class ConditionalFlow:
    """condition(ctx) selects then_step, otherwise else_step (or nothing)."""

    condition: StepCondition
    then_step: str
    else_step: str | None = None


ControlFlow = SequentialFlow | ParallelFlow | LoopFlow | ConditionalFlow


@dataclass
class WorkflowResult:
    """Full outcome of one workflow invocation."""

    success: bool
    output: str
    step_results: dict[str, StepResult]
    duration: float
    steps_executed: int
    errors: list[str] = field(default_factory=list)
    iterations: int = 0
    iteration_results: list[dict[str, StepResult]] = field(default_factory=list)
    skipped_steps: list[str] = field(default_factory=list)
    cancelled_steps: list[str] = field(default_factory=list)


@dataclass
class _Outcome:
    success: bool
    output: str
    error: str | None = None
    cancelled_steps: list[str] = field(default_factory=list)


class WorkflowExecutor(Executor):
    """
    Executor running a fixed list of steps under one control flow.

    The step list is immutable after construction. Each call to execute()
    builds a fresh RunContext, so one workflow definition can serve many
    (sequential) invocations; use separate instances for concurrent runs.

    Args:
        name: Workflow name
        steps: Steps in declaration order (names must be unique)
        flow: Control-flow value, SequentialFlow() by default
        executors: Lookup for step targets (a dict or ExecutorRuntime)
        event_bus: Bus for workflow and step events
        initial_data: Values copied into every run's data map
        template_resolver: Resolver for step input templates

    Raises:
        ValueError: For empty step lists, duplicate names, or conditional
            branches that do not name a step
    """

    def __init__(
        self,
        name: str,
        steps: list[WorkflowStep],
        flow: ControlFlow | None = None,
        executors: ExecutorLookup | Mapping[str, Executor] | None = None,
        event_bus: EventBus | None = None,
        initial_data: dict[str, Any] | None = None,
        template_resolver: TemplateResolver | None = None,
        **kwargs: Any,
    ):
        super().__init__(name, event_bus=event_bus, **kwargs)
        self.steps: tuple[WorkflowStep, ...] = tuple(steps)
        self.flow: ControlFlow = flow or SequentialFlow()
        self.executors = executors if executors is not None else {}
        self.initial_data = dict(initial_data or {})
        self.template_resolver = template_resolver or TemplateResolver()
        self.last_run: WorkflowResult | None = None
        self._steps_by_name = {step.name: step for step in self.steps}
        self._validate()
        self.logger = self.logger.bind(
            component="workflow_executor", flow=type(self.flow).__name__
        )

    def _validate(self) -> None:
        if not self.steps:
            raise ValueError(f"Workflow '{self.name}' has no steps")
        if len(self._steps_by_name) != len(self.steps):
            names = [step.name for step in self.steps]
            duplicates = sorted({n for n in names if names.count(n) > 1})
            raise ValueError(f"Duplicate step names in '{self.name}': {duplicates}")
        if isinstance(self.flow, ConditionalFlow):
            branches = {self.flow.then_step, self.flow.else_step} - {None}
            missing = branches - set(self._steps_by_name)
            if missing:
                raise ValueError(f"Conditional branches not defined: {sorted(missing)}")
            unused = set(self._steps_by_name) - branches
            if unused:
                raise ValueError(
                    f"Conditional workflow has unreachable steps: {sorted(unused)}"
                )

    async def _on_execute(
        self, input: str, cancel_token: CancellationToken | None
    ) -> AgentResult:
        start = time.monotonic()
        context = RunContext(data={**self.initial_data, "initialInput": input})

        runners = {
            SequentialFlow: self._run_sequential,
            ParallelFlow: self._run_parallel,
            LoopFlow: self._run_loop,
            ConditionalFlow: self._run_conditional,
        }
        outcome = await runners[type(self.flow)](context, input, cancel_token)

        result = WorkflowResult(
            success=outcome.success,
            output=outcome.output,
            step_results=dict(context.step_results),
            duration=time.monotonic() - start,
            steps_executed=context.steps_executed,
            errors=list(context.errors),
            iterations=context.iteration,
            iteration_results=list(context.iteration_results),
            skipped_steps=list(context.skipped_steps),
            cancelled_steps=outcome.cancelled_steps,
        )
        self.last_run = result
        self.logger.info(
            "workflow.completed",
            success=result.success,
            steps_executed=result.steps_executed,
            errors=len(result.errors),
            duration=result.duration,
        )
        return AgentResult(
            success=outcome.success,
            output=outcome.output,
            error=outcome.error,
            metadata={
                "workflow_result": result,
                "steps_executed": result.steps_executed,
                "total_steps": len(self.steps),
                "errors": list(result.errors),
                "iterations": result.iterations,
            },
        )

    # ------------------------------------------------------------------
    # Control flows
    # ------------------------------------------------------------------

    async def _run_sequential(
        self, context: RunContext, input: str, cancel_token: CancellationToken | None
    ) -> _Outcome:
        for step in self.steps:
            await self._checkpoint(cancel_token)
            if self._skip(step, context):
                continue

            result = await self._run_step(
                step, context, self._resolve_input(step, context, input), cancel_token
            )
            context.record(result)
            if (
                not result.success
                and not step.continue_on_error
                and self.flow.stop_on_error
            ):
                return _Outcome(
                    success=False,
                    output=context.get_last_result() or "",
                    error=f"Step '{step.name}' failed: {result.error}",
                )

        return _Outcome(success=True, output=context.get_last_result() or "")

    async def _run_parallel(
        self, context: RunContext, input: str, cancel_token: CancellationToken | None
    ) -> _Outcome:
        await self._checkpoint(cancel_token)

        batch: list[tuple[WorkflowStep, str]] = []
        for step in self.steps:
            if not self._skip(step, context):
                batch.append((step, self._resolve_input(step, context, input)))
        if not batch:
            return _Outcome(success=True, output="")

        view = context.fork()
        limit = self.flow.max_concurrency
        semaphore = asyncio.Semaphore(limit) if limit > 0 else None

        async def launch(step: WorkflowStep, text: str) -> StepResult:
            if semaphore is None:
                if cancel_token is not None:
                    cancel_token.raise_if_cancelled()
                return await self._run_step(step, view, text, cancel_token)
            async with semaphore:
                if cancel_token is not None:
                    cancel_token.raise_if_cancelled()
                return await self._run_step(step, view, text, cancel_token)

        tasks = {
            asyncio.create_task(launch(step, text)): step for step, text in batch
        }
        finished: dict[str, StepResult] = {}
        cancelled: list[str] = []
        try:
            if self.flow.wait_for_all:
                await asyncio.wait(tasks)
            else:
                await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            pending = [task for task in tasks if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        for task, step in tasks.items():
            if task.cancelled():
                cancelled.append(step.name)
                continue
            error = task.exception()
            if error is not None:
                raise error
            finished[step.name] = task.result()

        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        for step, _ in batch:
            if step.name in finished:
                context.record(finished[step.name])

        output = "\n".join(
            f"[{step.name}]: {finished[step.name].output}"
            for step, _ in batch
            if step.name in finished and finished[step.name].success
        )
        if not self.flow.wait_for_all:
            return _Outcome(success=True, output=output, cancelled_steps=cancelled)

        failed = [name for name, r in finished.items() if not r.success]
        if failed:
            return _Outcome(
                success=False,
                output=output,
                error=f"Parallel steps failed: {', '.join(failed)}",
            )
        return _Outcome(success=True, output=output)

    async def _run_loop(
        self, context: RunContext, input: str, cancel_token: CancellationToken | None
    ) -> _Outcome:
        flow: LoopFlow = self.flow
        for iteration in range(1, flow.max_iterations + 1):
            context.iteration = iteration
            context.data["iteration"] = iteration
            iteration_results: dict[str, StepResult] = {}
            failed_step: WorkflowStep | None = None

            for step in self.steps:
                await self._checkpoint(cancel_token)
                if self._skip(step, context):
                    continue
                result = await self._run_step(
                    step,
                    context,
                    self._resolve_input(step, context, input),
                    cancel_token,
                    iteration=iteration,
                )
                context.record(result)
                iteration_results[step.name] = result
                if (
                    not result.success
                    and flow.break_on_error
                    and not step.continue_on_error
                ):
                    failed_step = step
                    break

            if flow.collect_results:
                context.iteration_results.append(iteration_results)

            if failed_step is not None:
                error = context.step_results[failed_step.name].error
                return _Outcome(
                    success=False,
                    output=context.get_last_result() or "",
                    error=(
                        f"Step '{failed_step.name}' failed in iteration "
                        f"{iteration}: {error}"
                    ),
                )

            if flow.continue_condition is not None and not flow.continue_condition(
                context
            ):
                break

        return _Outcome(success=True, output=context.get_last_result() or "")

    async def _run_conditional(
        self, context: RunContext, input: str, cancel_token: CancellationToken | None
    ) -> _Outcome:
        flow: ConditionalFlow = self.flow
        await self._checkpoint(cancel_token)

        branch = flow.then_step if flow.condition(context) else flow.else_step
        self.logger.debug("workflow.branch.selected", branch=branch)
        if branch is None:
            context.skipped_steps.append(flow.then_step)
            return _Outcome(success=True, output="")

        step = self._steps_by_name[branch]
        if self._skip(step, context):
            return _Outcome(success=True, output="")

        result = await self._run_step(
            step, context, self._resolve_input(step, context, input), cancel_token
        )
        context.record(result)
        if not result.success:
            return _Outcome(
                success=False,
                output="",
                error=f"Step '{step.name}' failed: {result.error}",
            )
        return _Outcome(success=True, output=result.output)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _skip(self, step: WorkflowStep, context: RunContext) -> bool:
        if step.condition is None or step.condition(context):
            return False
        context.skipped_steps.append(step.name)
        self.logger.debug("workflow.step.skipped", step=step.name)
        return True

    def _resolve_input(self, step: WorkflowStep, context: RunContext, input: str) -> str:
        if not step.input:
            return input
        return self.template_resolver.resolve(step.input, context)

    async def _run_step(
        self,
        step: WorkflowStep,
        context: RunContext,
        text: str,
        cancel_token: CancellationToken | None,
        iteration: int = 0,
    ) -> StepResult:
        """
        Run one step and convert its outcome into a StepResult.

        Exceptions raised by the step become failed results so the control
        flow can apply continue_on_error. Cancellation propagates.
        """
        self.emit(
            ToolCalledEvent(
                tool_name=step.name,
                arguments={"input": text, "target": step.target, "iteration": iteration},
            )
        )
        self.logger.info("workflow.step.started", step=step.name, iteration=iteration)
        start = time.monotonic()

        try:
            if step.action is not None:
                value = step.action(text, context)
                if asyncio.iscoroutine(value) or isinstance(value, asyncio.Future):
                    value = await value
                outcome = (
                    value
                    if isinstance(value, AgentResult)
                    else AgentResult.create_success(str(value))
                )
            else:
                executor = self.executors.get(step.target)
                if executor is None:
                    raise LookupError(f"No executor registered for '{step.target}'")
                outcome = await executor.execute(text, cancel_token)
        except asyncio.CancelledError:
            self.logger.warning("workflow.step.cancelled", step=step.name)
            raise
        except Exception as e:
            result = StepResult(
                step_name=step.name,
                success=False,
                error=str(e),
                error_type=type(e).__name__,
                input=text,
                duration=time.monotonic() - start,
                iteration=iteration,
            )
        else:
            result = StepResult(
                step_name=step.name,
                success=outcome.success,
                output=outcome.output if outcome.success else "",
                error=None if outcome.success else (outcome.error or "step reported failure"),
                input=text,
                duration=time.monotonic() - start,
                iteration=iteration,
                metadata=dict(outcome.metadata),
            )

        self.emit(
            ToolResultEvent(
                tool_name=step.name,
                result=result.output if result.success else (result.error or ""),
                success=result.success,
                duration=result.duration,
            )
        )
        if result.success:
            self.logger.info(
                "workflow.step.completed", step=step.name, duration=result.duration
            )
        else:
            self.logger.warning(
                "workflow.step.failed",
                step=step.name,
                error=result.error,
                error_type=result.error_type,
            )
        return result
