"""数据模型定义"""

import hashlib
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple


class ActionKind(str, Enum):
    """封闭的动作类型集合，surface 与 oracle 共用"""
    CLICK = "click"
    TYPE = "type"
    SCROLL = "scroll"
    ENTER = "enter"

    @classmethod
    def parse(cls, raw: str) -> "ActionKind":
        """兼容模型常见的别名（left-click / fill / submit / press）"""
        key = (raw or "").strip().lower()
        key = _ACTION_KIND_ALIASES.get(key, key)
        return cls(key)


_ACTION_KIND_ALIASES = {
    "left-click": "click",
    "left_click": "click",
    "tap": "click",
    "fill": "type",
    "input": "type",
    "submit": "enter",
    "press": "enter",
}


class ActionOutcome(str, Enum):
    UNKNOWN = "unknown"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class ElementSnapshot:
    """单个可交互元素的快照"""
    id: int
    tag: str
    role: Optional[str]
    label: str
    name: Optional[str] = None
    input_type: Optional[str] = None
    disabled: bool = False
    context: Optional[str] = None  # 上下文（如最近的 form legend 或父级文本）

    def describe(self) -> str:
        context_str = f" ({self.context})" if self.context else ""
        disabled_str = " [DISABLED]" if self.disabled else ""
        return f"[{self.id}] {self.tag}: \"{self.label}\"{disabled_str}{context_str}"


@dataclass(frozen=True)
class SurfaceSnapshot:
    """
    某一时刻 surface 的结构化快照。

    快照不可变：每轮循环整体替换，前后两个快照只做比较，不做修改。
    """
    surface_kind: str  # web|windows
    location: str  # URL 或窗口标识
    title: str = ""
    content: str = ""
    elements: Tuple[ElementSnapshot, ...] = ()
    screenshot: Optional[str] = None  # base64 PNG

    def summary(self) -> str:
        """生成给 LLM 看的文本摘要"""
        lines = [f"location: {self.location}"]
        if self.title:
            lines.append(f"title: {self.title}")
        if self.elements:
            lines.append("interactive elements:")
            lines.extend(e.describe() for e in self.elements)
        if self.content:
            lines.append("content:")
            lines.append(self.content)
        return "\n".join(lines)

    def fingerprint(self) -> str:
        # 截图不参与比较，像素抖动不算状态变化
        payload = json.dumps(
            [self.surface_kind, self.location, self.title, self.content,
             [e.describe() for e in self.elements]],
            ensure_ascii=False,
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def same_state_as(self, other: "SurfaceSnapshot") -> bool:
        return self.fingerprint() == other.fingerprint()


@dataclass
class Action:
    """
    oracle 预测的一步动作。

    outcome 每轮只由循环写入一次，之后保持不变。
    """
    kind: ActionKind
    target: str
    description: str
    value: Optional[str] = None
    outcome: ActionOutcome = ActionOutcome.UNKNOWN

    def mark(self, outcome: ActionOutcome) -> None:
        if self.outcome is not ActionOutcome.UNKNOWN:
            raise ValueError(f"action outcome already set to {self.outcome.value}")
        if outcome is ActionOutcome.UNKNOWN:
            raise ValueError("cannot reset an action outcome to unknown")
        self.outcome = outcome

    def to_prompt(self) -> Dict:
        return {
            "actionType": self.kind.value,
            "actionTarget": self.target,
            "actionDescription": self.description,
            "actionValue": self.value,
            "actionSuccess": {
                ActionOutcome.SUCCESS: True,
                ActionOutcome.FAILURE: False,
            }.get(self.outcome),
        }


@dataclass(frozen=True)
class StartLocation:
    location: str
    rationale: str = ""


@dataclass(frozen=True)
class ExecutionResult:
    """ActionExecutor 的返回：异常以数据形式返回，不抛出"""
    success: bool
    output: Optional[str] = None
    fault: Optional[str] = None


@dataclass(frozen=True)
class CodeActionResult:
    success: bool
    code: str = ""
    failure_detail: Optional[str] = None
    attempts: int = 0


@dataclass(frozen=True)
class FeedbackResult:
    action_success: bool
    page_state_changes: str = ""
    new_information: str = ""


@dataclass(frozen=True)
class GoalCheckResult:
    end_goal_met: bool
    relevant_data: List[Tuple[str, str]] = field(default_factory=list)


@dataclass(frozen=True)
class PlanStep:
    tool_id: str
    task_prompt: str


@dataclass(frozen=True)
class ToolsetPlan:
    description: str
    steps: List[PlanStep]


@dataclass(frozen=True)
class StepResult:
    """plan 模式下单个步骤的结果"""
    tool_id: str
    task_prompt: str
    relevant_data: List[Tuple[str, str]]


def filter_relevant_data(pairs) -> List[Tuple[str, str]]:
    """丢弃 label 或 value 为空的条目"""
    result = []
    for pair in pairs or []:
        if not isinstance(pair, (list, tuple)) or len(pair) < 2:
            continue
        label, value = pair[0], pair[1]
        if label is None or value is None:
            continue
        label, value = str(label).strip(), str(value).strip()
        if label and value:
            result.append((label, value))
    return result
