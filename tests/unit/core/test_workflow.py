"""
Unit Tests for WorkflowExecutor

Covers the four control flows, step templates, error policies, step guards,
cancellation, step events and construction-time validation. Steps run
against FunctionExecutors or inline actions, so no I/O is involved.
"""

import asyncio

import pytest

from agentweave.core.bus.event_bus import EventBus
from agentweave.core.domain.cancellation import CancellationToken
from agentweave.core.domain.events import AgentEvent, ToolCalledEvent, ToolResultEvent
from agentweave.core.domain.executor import FunctionExecutor
from agentweave.core.domain.models import AgentResult, ExecutorStatus
from agentweave.core.domain.workflow import (
    ConditionalFlow,
    LoopFlow,
    ParallelFlow,
    RunContext,
    SequentialFlow,
    WorkflowExecutor,
    WorkflowStep,
)


def fail(text):
    raise RuntimeError(f"failed on {text}")


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def executors(bus):
    return {
        "upper": FunctionExecutor("upper", lambda text: text.upper(), event_bus=bus),
        "echo": FunctionExecutor("echo", lambda text: text, event_bus=bus),
        "reverse": FunctionExecutor("reverse", lambda text: text[::-1], event_bus=bus),
        "fail": FunctionExecutor("fail", fail, event_bus=bus),
    }


def workflow(steps, flow=None, executors=None, **kwargs):
    return WorkflowExecutor("wf", steps, flow=flow, executors=executors or {}, **kwargs)


class TestValidation:
    def test_requires_steps(self):
        with pytest.raises(ValueError):
            workflow([])

    def test_rejects_duplicate_step_names(self):
        with pytest.raises(ValueError, match="Duplicate"):
            workflow([WorkflowStep("a", target="x"), WorkflowStep("a", target="y")])

    def test_step_needs_exactly_one_of_target_or_action(self):
        with pytest.raises(ValueError):
            WorkflowStep("a")
        with pytest.raises(ValueError):
            WorkflowStep("a", target="x", action=lambda text, ctx: text)

    def test_conditional_branches_must_exist(self):
        flow = ConditionalFlow(condition=lambda ctx: True, then_step="missing")
        with pytest.raises(ValueError):
            workflow([WorkflowStep("a", target="x")], flow)

    def test_conditional_rejects_unreachable_steps(self):
        flow = ConditionalFlow(condition=lambda ctx: True, then_step="a")
        with pytest.raises(ValueError, match="unreachable"):
            workflow([WorkflowStep("a", target="x"), WorkflowStep("b", target="x")], flow)

    def test_invalid_flow_settings(self):
        with pytest.raises(ValueError):
            LoopFlow(max_iterations=0)
        with pytest.raises(ValueError):
            ParallelFlow(max_concurrency=-1)


class TestSequential:
    @pytest.mark.asyncio
    async def test_pipeline_threads_last_result(self, executors):
        wf = workflow(
            [
                WorkflowStep("shout", target="upper"),
                WorkflowStep("greet", target="echo", input="{lastResult} World"),
            ],
            executors=executors,
        )

        result = await wf.execute("Hello")

        assert result.success is True
        assert result.output == "HELLO World"
        assert result.metadata["steps_executed"] == 2
        assert result.metadata["total_steps"] == 2
        assert wf.status == ExecutorStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_empty_input_means_workflow_input(self, executors):
        wf = workflow(
            [WorkflowStep("a", target="upper"), WorkflowStep("b", target="reverse")],
            executors=executors,
        )

        result = await wf.execute("abc")

        assert result.output == "cba"
        assert wf.last_run.step_results["a"].output == "ABC"

    @pytest.mark.asyncio
    async def test_templates_reference_steps_and_data(self, executors):
        wf = workflow(
            [
                WorkflowStep("a", target="upper"),
                WorkflowStep("b", target="echo", input="{a} / {data.initialInput} / {data.lang}"),
            ],
            executors=executors,
            initial_data={"lang": "en"},
        )

        result = await wf.execute("hi")

        assert result.output == "HI / hi / en"

    @pytest.mark.asyncio
    async def test_failure_stops_workflow(self, executors):
        wf = workflow(
            [
                WorkflowStep("a", target="upper"),
                WorkflowStep("b", target="fail"),
                WorkflowStep("c", target="reverse"),
            ],
            executors=executors,
        )

        result = await wf.execute("x")

        assert result.success is False
        assert "Step 'b' failed" in result.error
        assert set(wf.last_run.step_results) == {"a", "b"}
        assert wf.last_run.step_results["b"].error_type == "RuntimeError"
        assert result.metadata["errors"] == ["b: failed on x"]

    @pytest.mark.asyncio
    async def test_continue_on_error_step(self, executors):
        wf = workflow(
            [
                WorkflowStep("a", target="upper"),
                WorkflowStep("b", target="fail", continue_on_error=True),
                WorkflowStep("c", target="echo", input="{lastResult}!"),
            ],
            executors=executors,
        )

        result = await wf.execute("x")

        assert result.success is True
        assert result.output == "X!"
        assert len(wf.last_run.errors) == 1

    @pytest.mark.asyncio
    async def test_stop_on_error_disabled(self, executors):
        wf = workflow(
            [WorkflowStep("a", target="fail"), WorkflowStep("b", target="upper")],
            SequentialFlow(stop_on_error=False),
            executors=executors,
        )

        result = await wf.execute("x")

        assert result.success is True
        assert result.output == "X"

    @pytest.mark.asyncio
    async def test_failed_agent_result_is_step_failure(self):
        async def refuse(text, ctx):
            return AgentResult.create_failure("refused")

        wf = workflow([WorkflowStep("a", action=refuse)])

        result = await wf.execute("x")

        assert result.success is False
        assert wf.last_run.step_results["a"].error == "refused"

    @pytest.mark.asyncio
    async def test_unknown_target_is_step_failure(self):
        wf = workflow([WorkflowStep("a", target="ghost")])

        result = await wf.execute("x")

        assert result.success is False
        assert wf.last_run.step_results["a"].error_type == "LookupError"

    @pytest.mark.asyncio
    async def test_step_condition_skips_step(self, executors):
        wf = workflow(
            [
                WorkflowStep("a", target="upper"),
                WorkflowStep(
                    "b", target="reverse", condition=lambda ctx: ctx.get_last_result() == "NO"
                ),
            ],
            executors=executors,
        )

        result = await wf.execute("yes")

        assert result.output == "YES"
        assert wf.last_run.skipped_steps == ["b"]
        assert wf.last_run.steps_executed == 1

    @pytest.mark.asyncio
    async def test_inline_action_receives_context(self):
        seen = []

        def action(text, ctx):
            seen.append((text, ctx.data["initialInput"]))
            return text * 2

        wf = workflow([WorkflowStep("a", action=action, input="{data.initialInput}")])

        result = await wf.execute("ab")

        assert result.output == "abab"
        assert seen == [("ab", "ab")]

    @pytest.mark.asyncio
    async def test_each_run_gets_fresh_context(self, executors):
        wf = workflow([WorkflowStep("a", target="upper")], executors=executors)

        await wf.execute("one")
        await wf.execute("two")

        assert wf.last_run.steps_executed == 1
        assert wf.last_run.step_results["a"].output == "TWO"


class TestParallel:
    @pytest.mark.asyncio
    async def test_all_steps_reported(self, executors):
        wf = workflow(
            [
                WorkflowStep("a", target="upper"),
                WorkflowStep("b", target="reverse"),
                WorkflowStep("c", target="echo"),
            ],
            ParallelFlow(),
            executors=executors,
        )

        result = await wf.execute("abc")

        assert result.success is True
        assert result.output.splitlines() == ["[a]: ABC", "[b]: cba", "[c]: abc"]
        assert len(wf.last_run.step_results) == 3

    @pytest.mark.asyncio
    async def test_concurrency_bound(self):
        running = 0
        peak = 0

        async def slow(text, ctx):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return text

        steps = [WorkflowStep(f"s{i}", action=slow) for i in range(6)]
        wf = workflow(steps, ParallelFlow(max_concurrency=2))

        result = await wf.execute("x")

        assert result.success is True
        assert len(wf.last_run.step_results) == 6
        assert peak == 2

    @pytest.mark.asyncio
    async def test_steps_actually_overlap(self):
        started = asyncio.Event()
        both = []

        async def first(text, ctx):
            started.set()
            await asyncio.sleep(0.01)
            return "first"

        async def second(text, ctx):
            await asyncio.wait_for(started.wait(), timeout=1)
            both.append(True)
            return "second"

        wf = workflow(
            [WorkflowStep("a", action=first), WorkflowStep("b", action=second)], ParallelFlow()
        )

        result = await wf.execute("x")

        assert result.success is True
        assert both == [True]

    @pytest.mark.asyncio
    async def test_failure_with_wait_for_all(self, executors):
        wf = workflow(
            [WorkflowStep("a", target="upper"), WorkflowStep("b", target="fail")],
            ParallelFlow(),
            executors=executors,
        )

        result = await wf.execute("x")

        assert result.success is False
        assert result.output == "[a]: X"
        assert "b" in result.error

    @pytest.mark.asyncio
    async def test_first_completion_cancels_the_rest(self):
        async def fast(text, ctx):
            return "fast"

        async def slow(text, ctx):
            await asyncio.sleep(10)
            return "slow"

        wf = workflow(
            [WorkflowStep("slow", action=slow), WorkflowStep("fast", action=fast)],
            ParallelFlow(wait_for_all=False),
        )

        result = await asyncio.wait_for(wf.execute("x"), timeout=1)

        assert result.success is True
        assert result.output == "[fast]: fast"
        assert wf.last_run.cancelled_steps == ["slow"]

    @pytest.mark.asyncio
    async def test_steps_see_pre_batch_context(self):
        seen = []

        def action(text, ctx):
            seen.append(ctx.get_last_result())
            return text

        wf = workflow(
            [WorkflowStep("a", action=action), WorkflowStep("b", action=action)],
            ParallelFlow(),
        )

        await wf.execute("x")

        assert seen == [None, None]

    @pytest.mark.asyncio
    async def test_token_cancellation(self):
        token = CancellationToken()

        async def cancel_then_wait(text, ctx):
            token.cancel()
            await asyncio.sleep(0)
            return text

        wf = workflow([WorkflowStep("a", action=cancel_then_wait)], ParallelFlow())

        with pytest.raises(asyncio.CancelledError):
            await wf.execute("x", token)
        assert wf.status == ExecutorStatus.CANCELLED


class TestLoop:
    @pytest.mark.asyncio
    async def test_runs_exactly_max_iterations(self):
        wf = workflow(
            [WorkflowStep("tick", action=lambda text, ctx: f"iteration {ctx.iteration}")],
            LoopFlow(max_iterations=5, continue_condition=lambda ctx: True),
        )

        result = await wf.execute("x")

        assert result.success is True
        assert result.metadata["iterations"] == 5
        assert result.output == "iteration 5"
        assert len(wf.last_run.iteration_results) == 5

    @pytest.mark.asyncio
    async def test_continue_condition_stops_loop(self):
        wf = workflow(
            [WorkflowStep("tick", action=lambda text, ctx: str(ctx.iteration))],
            LoopFlow(max_iterations=10, continue_condition=lambda ctx: ctx.iteration < 3),
        )

        result = await wf.execute("x")

        assert result.metadata["iterations"] == 3
        assert result.output == "3"

    @pytest.mark.asyncio
    async def test_refinement_feeds_previous_iteration(self):
        wf = workflow(
            [WorkflowStep("grow", action=lambda text, ctx: text + "+", input="{lastResult}")],
            LoopFlow(max_iterations=3),
        )

        result = await wf.execute("x")

        # First iteration has no lastResult, so the placeholder stays in place
        assert result.output == "{lastResult}+++"

    @pytest.mark.asyncio
    async def test_iteration_available_in_templates(self):
        wf = workflow(
            [WorkflowStep("tick", action=lambda text, ctx: text, input="round {data.iteration}")],
            LoopFlow(max_iterations=2),
        )

        result = await wf.execute("x")

        assert result.output == "round 2"
        assert wf.last_run.step_results["tick"].iteration == 2

    @pytest.mark.asyncio
    async def test_break_on_error(self):
        def flaky(text, ctx):
            if ctx.iteration == 2:
                raise RuntimeError("flaky")
            return "ok"

        wf = workflow([WorkflowStep("flaky", action=flaky)], LoopFlow(max_iterations=5))

        result = await wf.execute("x")

        assert result.success is False
        assert "iteration 2" in result.error
        assert result.metadata["iterations"] == 2

    @pytest.mark.asyncio
    async def test_errors_tolerated_without_break_on_error(self):
        def flaky(text, ctx):
            if ctx.iteration == 2:
                raise RuntimeError("flaky")
            return "ok"

        wf = workflow(
            [WorkflowStep("flaky", action=flaky)],
            LoopFlow(max_iterations=3, break_on_error=False),
        )

        result = await wf.execute("x")

        assert result.success is True
        assert result.metadata["iterations"] == 3
        assert len(result.metadata["errors"]) == 1

    @pytest.mark.asyncio
    async def test_collect_results_disabled(self):
        wf = workflow(
            [WorkflowStep("tick", action=lambda text, ctx: "ok")],
            LoopFlow(max_iterations=3, collect_results=False),
        )

        await wf.execute("x")

        assert wf.last_run.iteration_results == []


class TestConditional:
    @pytest.mark.asyncio
    async def test_then_branch(self, executors):
        wf = workflow(
            [WorkflowStep("loud", target="upper"), WorkflowStep("quiet", target="echo")],
            ConditionalFlow(
                condition=lambda ctx: ctx.data["initialInput"].startswith("!"),
                then_step="loud",
                else_step="quiet",
            ),
            executors=executors,
        )

        assert (await wf.execute("!hey")).output == "!HEY"
        assert (await wf.execute("hey")).output == "hey"
        assert set(wf.last_run.step_results) == {"quiet"}

    @pytest.mark.asyncio
    async def test_false_without_else_succeeds_empty(self, executors):
        wf = workflow(
            [WorkflowStep("loud", target="upper")],
            ConditionalFlow(condition=lambda ctx: False, then_step="loud"),
            executors=executors,
        )

        result = await wf.execute("x")

        assert result.success is True
        assert result.output == ""
        assert wf.last_run.steps_executed == 0
        assert wf.last_run.skipped_steps == ["loud"]

    @pytest.mark.asyncio
    async def test_failed_branch(self, executors):
        wf = workflow(
            [WorkflowStep("boom", target="fail")],
            ConditionalFlow(condition=lambda ctx: True, then_step="boom"),
            executors=executors,
        )

        result = await wf.execute("x")

        assert result.success is False


class TestEventsAndNesting:
    @pytest.mark.asyncio
    async def test_step_events(self, bus, executors):
        received = []
        bus.subscribe(AgentEvent, received.append)
        wf = workflow(
            [WorkflowStep("a", target="upper"), WorkflowStep("b", target="fail")],
            SequentialFlow(stop_on_error=False),
            executors=executors,
            event_bus=bus,
        )

        await wf.execute("x")

        calls = [e for e in received if isinstance(e, ToolCalledEvent)]
        results = [e for e in received if isinstance(e, ToolResultEvent)]
        assert [e.tool_name for e in calls] == ["a", "b"]
        assert calls[0].arguments["input"] == "x"
        assert calls[0].arguments["target"] == "upper"
        assert [(e.tool_name, e.success) for e in results] == [("a", True), ("b", False)]
        assert all(e.agent_id == wf.agent_id for e in calls + results)

    @pytest.mark.asyncio
    async def test_workflow_as_step_target(self, executors):
        inner = WorkflowExecutor(
            "inner",
            [
                WorkflowStep("a", target="upper"),
                WorkflowStep("b", target="reverse", input="{lastResult}"),
            ],
            executors=executors,
        )
        outer = workflow(
            [
                WorkflowStep("nested", target="inner"),
                WorkflowStep("tag", target="echo", input="<{lastResult}>"),
            ],
            executors={**executors, "inner": inner},
        )

        result = await outer.execute("abc")

        assert result.output == "<CBA>"

    @pytest.mark.asyncio
    async def test_cancelled_sequential_run(self):
        token = CancellationToken()

        def cancel(text, ctx):
            token.cancel()
            return text

        wf = workflow(
            [WorkflowStep("a", action=cancel), WorkflowStep("b", action=lambda t, c: t)]
        )

        with pytest.raises(asyncio.CancelledError):
            await wf.execute("x", token)
        assert wf.status == ExecutorStatus.CANCELLED


class TestRunContext:
    def test_failures_do_not_replace_last_result(self):
        from agentweave.core.domain.workflow import StepResult

        ctx = RunContext()
        ctx.record(StepResult(step_name="a", success=True, output="A"))
        ctx.record(StepResult(step_name="b", success=False, error="bad"))

        assert ctx.get_last_result() == "A"
        assert ctx.errors == ["b: bad"]
        assert ctx.steps_executed == 2

    def test_fork_is_isolated(self):
        ctx = RunContext(data={"k": 1})
        view = ctx.fork()
        view.data["k"] = 2

        assert ctx.data["k"] == 1
