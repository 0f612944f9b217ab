from unittest.mock import AsyncMock

import pytest

from conftest import FakeOracle, FakeSurface, ok, parse_fault, snapshot
from navagent.config import AgentConfig
from navagent.core import AgentLoop, LoopPhase, LoopState
from navagent.exceptions import (
    ConfigError,
    IterationBudgetExceeded,
    StartLocationError,
    SurfaceUnavailableError,
)
from navagent.models import (
    Action,
    ActionKind,
    ActionOutcome,
    ExecutionResult,
    FeedbackResult,
    GoalCheckResult,
    PlanStep,
    StartLocation,
    ToolsetPlan,
)
from navagent.planner import OpenAIOracle
from navagent.schemas import OracleResult


def make_loop(oracle, surface, **kwargs):
    kwargs.setdefault("action_delay", 0)
    kwargs.setdefault("fault_delay", 0)
    return AgentLoop(oracle, surface, **kwargs)


@pytest.mark.asyncio
async def test_price_lookup_reaches_goal_and_filters_data():
    search = Action(ActionKind.TYPE, "search box", "search for product X", value="product X price")
    click = Action(ActionKind.CLICK, "top result", "open the first result")
    oracle = FakeOracle(
        start=ok(StartLocation("https://www.bing.com")),
        actions=[search, click],
        feedback=[
            ok(FeedbackResult(True, "results page loaded", "3 results")),
            ok(FeedbackResult(True, "product page loaded", "price is $19.99")),
        ],
        goals=[
            ok(GoalCheckResult(False)),
            ok(GoalCheckResult(True, [("Product X", "$19.99"), ("", "orphan"), ("Label", "")])),
        ],
    )
    s0, s1, s2 = snapshot("https://www.bing.com"), snapshot("https://www.bing.com/search"), snapshot("https://shop/x")
    surface = FakeSurface([s0, s1, s2])
    loop = make_loop(oracle, surface)

    state = await loop.run_state(LoopState(goal="find the price of product X"))

    assert state.phase is LoopPhase.DONE
    assert list(state.relevant_data) == [("Product X", "$19.99")]
    assert surface.opened == ["https://www.bing.com"]
    assert [a.outcome for a in state.history] == [ActionOutcome.SUCCESS, ActionOutcome.SUCCESS]
    # second prediction reasons over the post-action snapshot of the first step
    assert oracle.predict_calls[1][0] is s1
    assert oracle.goal_calls[1] == (s2, "price is $19.99")


@pytest.mark.asyncio
async def test_run_returns_only_relevant_data():
    oracle = FakeOracle(goals=[ok(GoalCheckResult(True, [("a", "1")]))])
    loop = make_loop(oracle, FakeSurface([snapshot("u0"), snapshot("u1")]))
    assert await loop.run("goal") == [("a", "1")]


@pytest.mark.asyncio
async def test_code_failure_marks_action_failed_and_repredicts():
    oracle = FakeOracle(actions=[
        Action(ActionKind.CLICK, "#missing", "click a selector that never matches"),
        Action(ActionKind.CLICK, "text=Buy", "click the buy button"),
    ])
    fail = ExecutionResult(success=False, fault="TimeoutError: selector not found")
    s0 = snapshot("u0")
    surface = FakeSurface([s0, snapshot("u1")], results=[fail, fail, fail, ExecutionResult(success=True)])
    loop = make_loop(oracle, surface, max_code_retries=3)

    state = await loop.run_state(LoopState(goal="buy"))

    assert len(surface.executed) == 4
    assert state.history[0].outcome is ActionOutcome.FAILURE
    assert state.history[1].outcome is ActionOutcome.SUCCESS
    # the failed action is visible to the next prediction, which still sees the same snapshot
    snap, history = oracle.predict_calls[1]
    assert snap is s0
    assert history[0].target == "#missing"
    assert history[0].outcome is ActionOutcome.FAILURE
    assert oracle.feedback_calls[0][2].target == "text=Buy"


@pytest.mark.asyncio
async def test_negative_feedback_keeps_pre_action_snapshot():
    s0, s1, s2 = snapshot("u0"), snapshot("u0", "unchanged?"), snapshot("u2")
    oracle = FakeOracle(feedback=[
        ok(FeedbackResult(False, "nothing happened", "")),
        ok(FeedbackResult(True, "navigated", "")),
    ])
    surface = FakeSurface([s0, s1, s2])
    loop = make_loop(oracle, surface)

    state = await loop.run_state(LoopState(goal="g"))

    assert state.history[0].outcome is ActionOutcome.FAILURE
    assert oracle.predict_calls[1][0] is s0
    assert oracle.feedback_calls[1][0] is s0
    assert surface.restored == []


@pytest.mark.asyncio
async def test_missing_feedback_verdict_counts_as_failure():
    oracle = FakeOracle(feedback=[parse_fault(), ok(FeedbackResult(True))])
    loop = make_loop(oracle, FakeSurface([snapshot("u0"), snapshot("u1"), snapshot("u2")]))

    state = await loop.run_state(LoopState(goal="g"))

    assert [a.outcome for a in state.history] == [ActionOutcome.FAILURE, ActionOutcome.SUCCESS]


@pytest.mark.asyncio
async def test_backtrack_restores_pre_action_snapshot():
    s0 = snapshot("u0")
    oracle = FakeOracle(feedback=[ok(FeedbackResult(False)), ok(FeedbackResult(True))])
    surface = FakeSurface([s0, snapshot("u1"), snapshot("u2")])
    loop = make_loop(oracle, surface, backtrack_on_failure=True)

    await loop.run("g")

    assert surface.restored == [s0]


@pytest.mark.asyncio
async def test_malformed_goal_check_continues_with_post_action_snapshot():
    s0, s1, s2 = snapshot("u0"), snapshot("u1"), snapshot("u2")
    oracle = FakeOracle(goals=[parse_fault(), ok(GoalCheckResult(True, [("x", "y")]))])
    loop = make_loop(oracle, FakeSurface([s0, s1, s2]))

    state = await loop.run_state(LoopState(goal="g"))

    assert state.phase is LoopPhase.DONE
    assert oracle.predict_calls[1][0] is s1


@pytest.mark.asyncio
async def test_start_location_transport_fault_aborts_run():
    oracle = FakeOracle(start=OracleResult.failed("transport", "connection reset"))
    surface = FakeSurface([snapshot("u0")])
    loop = make_loop(oracle, surface)

    with pytest.raises(StartLocationError):
        await loop.run("g")
    assert surface.opened == []
    assert oracle.predict_calls == []


@pytest.mark.asyncio
async def test_start_location_receives_surface_candidates():
    captured = {}

    class Oracle(FakeOracle):
        async def classify_start_location(self, goal, surface_kind="web", candidates=()):
            captured["args"] = (surface_kind, list(candidates))
            return ok(StartLocation("Word"))

    surface = FakeSurface([snapshot("u0"), snapshot("u1")], candidates=["Edge", "Word"])
    await make_loop(Oracle(), surface).run("write a letter")
    assert captured["args"] == ("web", ["Edge", "Word"])
    assert surface.opened == ["Word"]


@pytest.mark.asyncio
async def test_unreachable_surface_is_fatal():
    loop = make_loop(FakeOracle(), FakeSurface([]))
    with pytest.raises(SurfaceUnavailableError):
        await loop.run("g")


@pytest.mark.asyncio
async def test_history_grows_by_one_per_iteration_and_outcomes_are_terminal():
    oracle = FakeOracle(
        feedback=[ok(FeedbackResult(False)), ok(FeedbackResult(True))],
        goals=[ok(GoalCheckResult(False)), ok(GoalCheckResult(False)), ok(GoalCheckResult(True, [("a", "b")]))],
    )
    surface = FakeSurface(
        [snapshot(f"u{i}") for i in range(6)],
        results=[ExecutionResult(False, fault="boom")] * 3 + [ExecutionResult(True)],
    )
    loop = make_loop(oracle, surface)
    state = LoopState(goal="g")

    lengths = []
    while not state.terminal:
        before = len(state.history)
        state = await loop.step(state)
        if state.phase is LoopPhase.SYNTHESIZE_EXECUTE:
            lengths.append(len(state.history) - before)
        if state.phase is LoopPhase.PREDICT and state.history.last is not None:
            assert state.history.last.outcome is not ActionOutcome.UNKNOWN

    assert lengths and all(n == 1 for n in lengths)
    assert len(state.history) == len(lengths)
    assert all(a.outcome is not ActionOutcome.UNKNOWN for a in state.history)


@pytest.mark.asyncio
async def test_done_only_after_positive_goal_verdict():
    oracle = FakeOracle(goals=[ok(GoalCheckResult(False, [("early", "data")])), ok(GoalCheckResult(True))])
    loop = make_loop(oracle, FakeSurface([snapshot(f"u{i}") for i in range(3)]))

    state = await loop.run_state(LoopState(goal="g"))

    assert len(oracle.goal_calls) == 2
    assert state.relevant_data == ()


@pytest.mark.asyncio
async def test_prediction_fault_appends_nothing_and_counts_against_budget():
    oracle = FakeOracle(actions=[parse_fault()])
    loop = make_loop(oracle, FakeSurface([snapshot("u0")]), max_iterations=3)

    with pytest.raises(IterationBudgetExceeded) as exc_info:
        await loop.run("g")
    assert len(oracle.predict_calls) == 3
    assert exc_info.value.history == []


@pytest.mark.asyncio
async def test_iteration_budget_exhausted_carries_history():
    oracle = FakeOracle(goals=[ok(GoalCheckResult(False))])
    loop = make_loop(oracle, FakeSurface([snapshot(f"u{i}") for i in range(5)]), max_iterations=2)

    with pytest.raises(IterationBudgetExceeded) as exc_info:
        await loop.run("g")
    assert len(exc_info.value.history) == 2


@pytest.mark.asyncio
async def test_step_on_terminal_state_is_a_no_op():
    loop = make_loop(FakeOracle(), FakeSurface([snapshot("u0")]))
    state = LoopState(goal="g", phase=LoopPhase.DONE)
    assert await loop.step(state) is state


@pytest.mark.asyncio
async def test_run_from_plan_opens_each_tool_without_classifying():
    class Oracle(FakeOracle):
        async def classify_start_location(self, goal, surface_kind="web", candidates=()):
            raise AssertionError("plan steps must not classify")

    oracle = Oracle(goals=[ok(GoalCheckResult(True, [("movie", "The Matrix")])),
                           ok(GoalCheckResult(True, [("order", "pizza")]))])
    surface = FakeSurface([snapshot(f"u{i}") for i in range(4)])
    plan = ToolsetPlan("movie night", [
        PlanStep("Microsoft.ZuneVideo_8wekyb3d8bbwe", "download a movie"),
        PlanStep("Edge", "open deliveroo.ie and order some pizza"),
    ])

    results = await make_loop(oracle, surface).run_from_plan(plan)

    assert surface.opened == ["Microsoft.ZuneVideo_8wekyb3d8bbwe", "Edge"]
    assert [r.relevant_data for r in results] == [[("movie", "The Matrix")], [("order", "pizza")]]
    assert results[1].task_prompt == "open deliveroo.ie and order some pizza"


@pytest.mark.asyncio
async def test_prediction_fault_waits_before_predicting_again(monkeypatch):
    sleep = AsyncMock()
    monkeypatch.setattr("navagent.core.asyncio.sleep", sleep)
    oracle = FakeOracle(actions=[parse_fault()])
    loop = make_loop(oracle, FakeSurface([snapshot("u0")]), max_iterations=2, fault_delay=2.0)

    with pytest.raises(IterationBudgetExceeded):
        await loop.run("g")

    assert sleep.await_count == 2
    sleep.assert_awaited_with(2.0)


@pytest.mark.parametrize("kwargs", [{"max_code_retries": 0}, {"max_iterations": 0}])
def test_loop_rejects_invalid_bounds(kwargs):
    with pytest.raises(ConfigError):
        AgentLoop(FakeOracle(), FakeSurface([snapshot("u0")]), **kwargs)


def test_from_config_carries_delays(fake_client):
    config = AgentConfig(api_key="sk-test", action_delay=0.5, fault_delay=3.0)
    loop = AgentLoop.from_config(config, FakeSurface([snapshot("u0")]), client=fake_client)
    assert isinstance(loop.oracle, OpenAIOracle)
    assert (loop.action_delay, loop.fault_delay) == (0.5, 3.0)


@pytest.mark.asyncio
async def test_goal_reply_with_scalar_relevant_data_returns_to_predict(fake_client):
    click = {"actionType": "click", "actionTarget": "a.price", "actionDescription": "open the price tab"}
    fake_client.reply(
        {"startPage": "https://www.bing.com"},
        click,
        {"codeSet": ["await page.click('a.price')"]},
        {"actionSuccess": True, "pageStateChanges": "tab opened"},
        {"endGoalMet": True, "relevantData": 5},
        click,
        {"codeSet": ["await page.click('a.price')"]},
        {"actionSuccess": True, "pageStateChanges": "price shown"},
        {"endGoalMet": True, "relevantData": [["price", "$5"]]},
    )
    oracle = OpenAIOracle(fake_client, "gpt-4o", rank_code=False)
    surface = FakeSurface([snapshot("u0"), snapshot("u1"), snapshot("u2")])

    state = await make_loop(oracle, surface).run_state(LoopState(goal="find the price"))

    assert state.phase is LoopPhase.DONE
    assert list(state.relevant_data) == [("price", "$5")]
    assert len(state.history) == 2
