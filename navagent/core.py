"""Agent 核心：预测 → 合成执行 → 验证 → 目标检查 的状态机"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional, Tuple

from openai import AsyncOpenAI

from .config import AgentConfig
from .exceptions import ConfigError, IterationBudgetExceeded, NavAgentError, StartLocationError
from .memory import ActionHistory
from .models import (
    Action,
    ActionOutcome,
    StepResult,
    SurfaceSnapshot,
    ToolsetPlan,
    filter_relevant_data,
)
from .planner import OpenAIOracle, ReasoningOracle
from .surface import Surface

logger = logging.getLogger(__name__)


class LoopPhase(str, Enum):
    START = "start"
    PREDICT = "predict"
    SYNTHESIZE_EXECUTE = "synthesize_execute"
    VERIFY = "verify"
    GOAL_CHECK = "goal_check"
    DONE = "done"
    ABORTED = "aborted"


TERMINAL_PHASES = (LoopPhase.DONE, LoopPhase.ABORTED)


@dataclass(frozen=True)
class LoopState:
    """
    循环状态，每次转移返回一个新的 LoopState。

    current 是推理用的当前快照，整体替换而不是原地修改；
    history 只追加，跨状态共享同一个对象。
    """
    goal: str
    phase: LoopPhase = LoopPhase.START
    start_location: Optional[str] = None  # plan 模式下预先给定
    iteration: int = 0
    current: Optional[SurfaceSnapshot] = None
    after: Optional[SurfaceSnapshot] = None
    action: Optional[Action] = None
    new_information: str = ""
    history: ActionHistory = field(default_factory=ActionHistory)
    relevant_data: Tuple[Tuple[str, str], ...] = ()
    error: Optional[NavAgentError] = None

    @property
    def terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES


class AgentLoop:
    """
    驱动 surface 朝目标前进的主循环。

    除了起始位置解析失败、surface 不可用和超出迭代上限之外，
    所有失败都记录在 Action.outcome 上并回到 PREDICT，不会抛给调用方。
    """

    def __init__(self, oracle: ReasoningOracle, surface: Surface, max_code_retries: int = 3,
                 max_iterations: Optional[int] = None, action_delay: float = 1.0,
                 backtrack_on_failure: bool = False, fault_delay: float = 2.0):
        if max_code_retries < 1:
            raise ConfigError("max_code_retries must be at least 1")
        if max_iterations is not None and max_iterations < 1:
            raise ConfigError("max_iterations must be at least 1")
        self.oracle = oracle
        self.surface = surface
        self.max_code_retries = max_code_retries
        self.max_iterations = max_iterations
        self.action_delay = action_delay
        self.backtrack_on_failure = backtrack_on_failure
        self.fault_delay = fault_delay

    @classmethod
    def from_config(cls, config: AgentConfig, surface: Surface,
                    client: Optional[AsyncOpenAI] = None) -> "AgentLoop":
        if client is None:
            client = AsyncOpenAI(api_key=config.require_api_key(), base_url=config.base_url)
        oracle = OpenAIOracle(
            client,
            config.model,
            temperature=config.temperature,
            visual_mode=config.visual_mode,
            rank_code=config.rank_code,
        )
        return cls(
            oracle,
            surface,
            max_code_retries=config.max_code_retries,
            max_iterations=config.max_iterations,
            action_delay=config.action_delay,
            backtrack_on_failure=config.backtrack_on_failure,
            fault_delay=config.fault_delay,
        )

    async def run(self, goal: str) -> List[Tuple[str, str]]:
        """执行到目标达成，返回 (label, value) 列表；致命错误直接抛出"""
        state = await self.run_state(LoopState(goal=goal))
        return list(state.relevant_data)

    async def run_from_plan(self, plan: ToolsetPlan) -> List[StepResult]:
        """按顺序执行预先声明的 (tool, prompt) 步骤，每一步单独跑一遍循环"""
        logger.info("执行计划: %s (%d 步)", plan.description, len(plan.steps))
        results = []
        for num, step in enumerate(plan.steps, start=1):
            logger.info("计划第 %d 步: [%s] %s", num, step.tool_id, step.task_prompt)
            state = await self.run_state(LoopState(goal=step.task_prompt, start_location=step.tool_id))
            results.append(StepResult(step.tool_id, step.task_prompt, list(state.relevant_data)))
        return results

    async def run_state(self, state: LoopState) -> LoopState:
        while not state.terminal:
            state = await self.step(state)
        if state.phase is LoopPhase.ABORTED:
            logger.error("任务中止: %s", state.error)
            raise state.error
        return state

    async def step(self, state: LoopState) -> LoopState:
        """执行一次状态转移"""
        handlers = {
            LoopPhase.START: self._start,
            LoopPhase.PREDICT: self._predict,
            LoopPhase.SYNTHESIZE_EXECUTE: self._synthesize_execute,
            LoopPhase.VERIFY: self._verify,
            LoopPhase.GOAL_CHECK: self._goal_check,
        }
        handler = handlers.get(state.phase)
        if handler is None:
            return state
        try:
            return await handler(state)
        except NavAgentError as e:
            return replace(state, phase=LoopPhase.ABORTED, error=e)

    async def _capture(self, state: LoopState) -> SurfaceSnapshot:
        snapshot = await self.surface.capture()
        state.history.record_location(snapshot.location)
        return snapshot

    async def _start(self, state: LoopState) -> LoopState:
        location = state.start_location
        if location is None:
            candidates = await self.surface.candidate_locations()
            result = await self.oracle.classify_start_location(
                state.goal, surface_kind=self.surface.kind, candidates=candidates
            )
            if not result.ok:
                raise StartLocationError(f"cannot resolve start location ({result.fault}): {result.detail}")
            location = result.value.location

        logger.info("起始位置: %s", location)
        await self.surface.open(location)
        current = await self._capture(state)
        return replace(state, phase=LoopPhase.PREDICT, start_location=location, current=current)

    async def _predict(self, state: LoopState) -> LoopState:
        if self.max_iterations is not None and state.iteration >= self.max_iterations:
            raise IterationBudgetExceeded(self.max_iterations, state.history.snapshot())

        iteration = state.iteration + 1
        logger.info("%s Step %d %s", "=" * 20, iteration, "=" * 20)
        logger.debug("最近的动作:\n%s", state.history.format_history())
        result = await self.oracle.predict_next_action(
            state.current, state.goal, state.history.snapshot(), self.surface.action_kinds
        )
        if not result.ok:
            # 没有产生动作，不追加历史，重新预测
            logger.warning("预测动作失败 (%s): %s", result.fault, result.detail)
            if self.fault_delay:
                await asyncio.sleep(self.fault_delay)
            return replace(state, iteration=iteration)

        action = result.value
        logger.info("预测下一步: %s %s (%s)", action.kind.value, action.target, action.description)
        if state.history.is_repeated_action(action, threshold=3):
            logger.warning("⚠ 检测到重复操作: %s %s", action.kind.value, action.target)
        state.history.append(action)
        return replace(state, phase=LoopPhase.SYNTHESIZE_EXECUTE, iteration=iteration, action=action)

    async def _synthesize_execute(self, state: LoopState) -> LoopState:
        action = state.action
        code_result = await self.oracle.synthesize_and_run_code(
            state.current, state.goal, action, self.max_code_retries, self.surface.execute
        )
        if not code_result.success:
            action.mark(ActionOutcome.FAILURE)
            logger.info("❌ 代码动作在 %d 次尝试后仍失败: %s", code_result.attempts, code_result.failure_detail)
            return replace(state, phase=LoopPhase.PREDICT, action=None)

        logger.info("✓ 代码动作成功（第 %d 次尝试）", code_result.attempts)
        if self.action_delay:
            await asyncio.sleep(self.action_delay)
        after = await self._capture(state)
        return replace(state, phase=LoopPhase.VERIFY, after=after)

    async def _verify(self, state: LoopState) -> LoopState:
        action = state.action
        result = await self.oracle.evaluate_action_feedback(state.current, state.after, action)
        feedback = result.value if result.ok else None

        if feedback is None or not feedback.action_success:
            action.mark(ActionOutcome.FAILURE)
            if feedback is None:
                logger.warning("动作反馈无法解析 (%s): %s", result.fault, result.detail)
            else:
                logger.info("❌ 动作未达到预期效果: %s", feedback.page_state_changes or "(无变化)")
            if self.backtrack_on_failure:
                restored = await self.surface.restore(state.current)
                logger.info("回退到操作前状态: %s", "成功" if restored else "不支持或无需回退")
            # 丢弃操作后的快照，继续用操作前的快照推理
            return replace(state, phase=LoopPhase.PREDICT, action=None, after=None)

        action.mark(ActionOutcome.SUCCESS)
        logger.info("✓ 动作达到预期效果: %s", feedback.page_state_changes)
        return replace(state, phase=LoopPhase.GOAL_CHECK, new_information=feedback.new_information)

    async def _goal_check(self, state: LoopState) -> LoopState:
        result = await self.oracle.evaluate_goal_completion(state.after, state.goal, state.new_information)
        if not result.ok:
            logger.warning("目标检查无法解析 (%s): %s，视为未完成", result.fault, result.detail)
        elif result.value.end_goal_met:
            relevant_data = filter_relevant_data(result.value.relevant_data)
            logger.info("✓✓✓ 目标达成 ✓✓✓")
            for label, value in relevant_data:
                logger.info("%s - %s", label, value)
            return replace(
                state,
                phase=LoopPhase.DONE,
                current=state.after,
                after=None,
                action=None,
                relevant_data=tuple(relevant_data),
            )

        logger.info("目标未达成，继续下一步")
        return replace(state, phase=LoopPhase.PREDICT, current=state.after, after=None, action=None,
                       new_information="")
