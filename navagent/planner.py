"""规划模块：调用 LLM 预测动作、合成代码、评估反馈与目标"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple, Type

from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel, ValidationError

from . import prompts
from .models import (
    Action,
    ActionKind,
    CodeActionResult,
    ExecutionResult,
    FeedbackResult,
    GoalCheckResult,
    StartLocation,
    SurfaceSnapshot,
    filter_relevant_data,
)
from .schemas import (
    ActionFeedbackResponse,
    CodeRankingResponse,
    CodeSetResponse,
    GoalCheckResponse,
    NextActionResponse,
    OracleResult,
    StartTaskResponse,
)

logger = logging.getLogger(__name__)

RunFn = Callable[[str], Awaitable[ExecutionResult]]


class ReasoningOracle(ABC):
    """
    AgentLoop 依赖的 oracle 契约。

    oracle 对循环状态无副作用：历史每次显式传入，所有状态修改都在循环里完成。
    除 synthesize_and_run_code 外，每个操作都返回 OracleResult，
    传输错误和格式错误都以 fault 的形式返回。
    """

    @abstractmethod
    async def classify_start_location(self, goal: str, surface_kind: str = "web",
                                      candidates: Sequence[str] = ()) -> OracleResult[StartLocation]:
        ...

    @abstractmethod
    async def predict_next_action(self, snapshot: SurfaceSnapshot, goal: str, history: List[Action],
                                  action_kinds: Sequence[ActionKind] = tuple(ActionKind)) -> OracleResult[Action]:
        ...

    @abstractmethod
    async def generate_code(self, snapshot: SurfaceSnapshot, goal: str, action: Action,
                            previous_attempts: List[Tuple[str, str]]) -> OracleResult[List[str]]:
        """返回候选代码片段，previous_attempts 为 (code, error) 列表"""

    async def rank_code(self, snapshot: SurfaceSnapshot, goal: str, action: Action,
                        candidates: List[str]) -> List[str]:
        return candidates

    @abstractmethod
    async def evaluate_action_feedback(self, before: SurfaceSnapshot, after: SurfaceSnapshot,
                                       action: Action) -> OracleResult[FeedbackResult]:
        ...

    @abstractmethod
    async def evaluate_goal_completion(self, snapshot: SurfaceSnapshot, goal: str,
                                       new_information: str) -> OracleResult[GoalCheckResult]:
        ...

    async def synthesize_and_run_code(self, snapshot: SurfaceSnapshot, goal: str, action: Action,
                                      max_retries: int, run_fn: RunFn) -> CodeActionResult:
        """
        最多尝试 max_retries 次：生成代码 -> 执行。

        每次尝试最多调用一次 run_fn；失败原因会反馈给下一次生成。
        返回第一次成功的结果，或耗尽重试后的最后一次失败。
        """
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")

        attempts: List[Tuple[str, str]] = []
        last = CodeActionResult(success=False, failure_detail="no attempt made")
        for attempt in range(1, max_retries + 1):
            generated = await self.generate_code(snapshot, goal, action, list(attempts))
            if not generated.ok:
                detail = f"code generation {generated.fault} fault: {generated.detail}"
                logger.warning("第 %d 次生成代码失败: %s", attempt, detail)
                attempts.append(("", detail))
                last = CodeActionResult(success=False, failure_detail=detail, attempts=attempt)
                continue

            tried = {code for code, _ in attempts}
            candidates = [c for c in generated.value if c not in tried] or generated.value
            if len(candidates) > 1:
                candidates = await self.rank_code(snapshot, goal, action, candidates)
            code = candidates[0]

            logger.debug("第 %d 次尝试执行:\n%s", attempt, code)
            result = await run_fn(code)
            if result.success:
                return CodeActionResult(success=True, code=code, attempts=attempt)

            fault = result.fault or "execution failed"
            attempts.append((code, fault))
            last = CodeActionResult(success=False, code=code, failure_detail=fault, attempts=attempt)
        return last


class OpenAIOracle(ReasoningOracle):
    """基于 OpenAI Chat Completions（JSON 模式）的 oracle"""

    def __init__(self, client: AsyncOpenAI, model: str, temperature: float = 0.0,
                 visual_mode: bool = False, rank_code: bool = True, max_candidates: int = 3):
        self.client = client
        self.model = model
        self.temperature = temperature
        self.visual_mode = visual_mode
        self.rank_candidates = rank_code
        self.max_candidates = max_candidates

    async def _complete(self, system_prompt: str, payload: dict, schema: Type[BaseModel],
                        screenshot: Optional[str] = None) -> OracleResult:
        text = json.dumps(payload, ensure_ascii=False)
        if self.visual_mode and screenshot:
            content = [
                {"type": "text", "text": text},
                {"type": "image_url", "image_url": {"url": f"data:image/png;base64,{screenshot}"}},
            ]
        else:
            content = text

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                temperature=self.temperature,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": system_prompt.strip()},
                    {"role": "user", "content": content},
                ],
            )
        except OpenAIError as e:
            logger.warning("LLM 调用失败: %s", e)
            return OracleResult.failed("transport", str(e))

        if not response.choices:
            return OracleResult.failed("parse", "empty response")
        output_str = response.choices[0].message.content or ""
        try:
            return OracleResult.success(schema.model_validate_json(output_str))
        except (ValidationError, TypeError, ValueError) as e:
            logger.warning("JSON 解析失败: %s, 原始输出: %s", e, output_str)
            return OracleResult.failed("parse", str(e))

    async def classify_start_location(self, goal, surface_kind="web", candidates=()):
        payload = {"endGoal": goal, "surfaceKind": surface_kind, "candidates": list(candidates)}
        result = await self._complete(prompts.CLASSIFY_START_LOCATION, payload, StartTaskResponse)
        if not result.ok:
            return result
        location = result.value.start_location.strip()
        if candidates and location not in candidates:
            return OracleResult.failed("parse", f"{location!r} is not one of the candidate locations")
        return OracleResult.success(StartLocation(location=location, rationale=result.value.rationale))

    async def predict_next_action(self, snapshot, goal, history, action_kinds=tuple(ActionKind)):
        payload = {
            "endGoal": goal,
            "surface": snapshot.summary(),
            "previousActions": [a.to_prompt() for a in history],
            "allowedActionTypes": [k.value for k in action_kinds],
        }
        result = await self._complete(prompts.PREDICT_NEXT_ACTION, payload, NextActionResponse,
                                      screenshot=snapshot.screenshot)
        if not result.ok:
            return result
        resp = result.value
        if resp.action_type not in action_kinds:
            return OracleResult.failed("parse", f"action type {resp.action_type.value} not allowed here")
        return OracleResult.success(Action(
            kind=resp.action_type,
            target=resp.action_target or "",
            description=resp.action_description,
            value=resp.action_value,
        ))

    async def generate_code(self, snapshot, goal, action, previous_attempts):
        system_prompt = prompts.GENERATE_CODE.format(
            dialect=prompts.CODE_DIALECTS.get(snapshot.surface_kind, prompts.CODE_DIALECTS["web"]),
            max_candidates=self.max_candidates,
        )
        payload = {
            "endGoal": goal,
            "surface": snapshot.summary(),
            "nextAction": action.to_prompt(),
            "previousAttempts": [{"code": code, "error": error} for code, error in previous_attempts],
        }
        result = await self._complete(system_prompt, payload, CodeSetResponse, screenshot=snapshot.screenshot)
        if not result.ok:
            return result
        return OracleResult.success(result.value.code_set[:self.max_candidates])

    async def rank_code(self, snapshot, goal, action, candidates):
        if not self.rank_candidates:
            return candidates
        payload = {
            "endGoal": goal,
            "currentLocation": snapshot.location,
            "nextAction": action.to_prompt(),
            "codeSet": candidates,
        }
        result = await self._complete(prompts.SORT_CODE_BY_RELEVANCE, payload, CodeRankingResponse)
        if not result.ok:
            return candidates
        # 只接受原有的候选，漏掉的按原顺序补在后面
        ranked = [c for c in result.value.code_set_by_relevance if c in candidates]
        ranked = list(dict.fromkeys(ranked))
        return ranked + [c for c in candidates if c not in ranked]

    async def evaluate_action_feedback(self, before, after, action):
        if before.same_state_as(after):
            return OracleResult.success(FeedbackResult(action_success=False))
        payload = {
            "takenAction": action.to_prompt(),
            "beforeSurface": before.summary(),
            "afterSurface": after.summary(),
        }
        result = await self._complete(prompts.ACTION_FEEDBACK, payload, ActionFeedbackResponse,
                                      screenshot=after.screenshot)
        if not result.ok:
            return result
        resp = result.value
        return OracleResult.success(FeedbackResult(
            action_success=resp.action_success,
            page_state_changes=resp.page_state_changes,
            new_information=resp.new_information,
        ))

    async def evaluate_goal_completion(self, snapshot, goal, new_information):
        payload = {"endGoal": goal, "surface": snapshot.summary(), "newInformation": new_information}
        result = await self._complete(prompts.GOAL_CHECK, payload, GoalCheckResponse,
                                      screenshot=snapshot.screenshot)
        if not result.ok:
            return result
        return OracleResult.success(GoalCheckResult(
            end_goal_met=result.value.end_goal_met,
            relevant_data=filter_relevant_data(result.value.relevant_data),
        ))
