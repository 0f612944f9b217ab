"""
oracle 响应的结构校验。

每个 oracle 操作返回 OracleResult：要么 ok（带解析后的值），
要么 fault（parse 或 transport），调用方不会看到原始解析异常。
"""

from dataclasses import dataclass
from typing import Any, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import ActionKind

T = TypeVar("T")


@dataclass(frozen=True)
class OracleResult(Generic[T]):
    value: Optional[T] = None
    fault: Optional[str] = None  # parse|transport
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.fault is None

    @classmethod
    def success(cls, value: T) -> "OracleResult[T]":
        return cls(value=value)

    @classmethod
    def failed(cls, fault: str, detail: str = "") -> "OracleResult[T]":
        return cls(fault=fault, detail=detail)


class _Response(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class StartTaskResponse(_Response):
    start_location: str = Field(alias="startPage", min_length=1)
    rationale: str = ""


class NextActionResponse(_Response):
    action_type: ActionKind = Field(alias="actionType")
    action_target: Optional[str] = Field(default="", alias="actionTarget")
    action_description: str = Field(alias="actionDescription", min_length=1)
    action_value: Optional[str] = Field(default=None, alias="actionValue")

    @field_validator("action_type", mode="before")
    @classmethod
    def _normalize_kind(cls, v: Any) -> ActionKind:
        if isinstance(v, ActionKind):
            return v
        return ActionKind.parse(str(v))

    @field_validator("action_target", mode="before")
    @classmethod
    def _blank_target(cls, v: Any) -> str:
        # enter / scroll 之类的动作常常没有目标
        return "" if v is None else v


class CodeSetResponse(_Response):
    code_set: List[str] = Field(alias="codeSet", min_length=1)

    @field_validator("code_set")
    @classmethod
    def _drop_blank(cls, v: List[str]) -> List[str]:
        cleaned = [c for c in v if c and c.strip()]
        if not cleaned:
            raise ValueError("codeSet contains no code")
        return cleaned


class CodeRankingResponse(_Response):
    code_set_by_relevance: List[str] = Field(alias="codeSetByRelevance")


class ActionFeedbackResponse(_Response):
    action_success: bool = Field(alias="actionSuccess")
    page_state_changes: str = Field(default="", alias="pageStateChanges")
    new_information: str = Field(default="", alias="newInformation")


class GoalCheckResponse(_Response):
    end_goal_met: bool = Field(alias="endGoalMet")
    relevant_data: List[List[Optional[str]]] = Field(default_factory=list, alias="relevantData")

    @field_validator("relevant_data", mode="before")
    @classmethod
    def _coerce_pairs(cls, v: Any) -> Any:
        if v is None:
            return []
        if not isinstance(v, (list, tuple)):
            raise ValueError("relevantData must be a list")
        # 非列表条目直接丢弃，剩下的交给 filter_relevant_data
        return [
            [None if x is None else str(x) for x in item]
            for item in v
            if isinstance(item, (list, tuple))
        ]
