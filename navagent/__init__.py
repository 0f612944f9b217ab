"""navagent 包

让 oracle（大模型）驱动网页或桌面窗口逐步达成自然语言目标。

包含各个模块：
- models: 数据模型
- schemas: oracle 响应校验
- perception: 网页感知
- planner: oracle 契约与 OpenAI 实现
- controller: 网页代码执行
- windows: 桌面窗口 surface
- memory: 动作历史
- core: AgentLoop 状态机
"""

from .config import AgentConfig
from .controller import PlaywrightExecutor, PlaywrightSurface
from .core import AgentLoop, LoopPhase, LoopState
from .exceptions import (
    ConfigError,
    IterationBudgetExceeded,
    NavAgentError,
    StartLocationError,
    SurfaceUnavailableError,
)
from .logging_config import setup_logging
from .memory import ActionHistory
from .models import (
    Action,
    ActionKind,
    ActionOutcome,
    CodeActionResult,
    ElementSnapshot,
    ExecutionResult,
    FeedbackResult,
    GoalCheckResult,
    PlanStep,
    StartLocation,
    StepResult,
    SurfaceSnapshot,
    ToolsetPlan,
)
from .perception import Perception
from .planner import OpenAIOracle, ReasoningOracle
from .schemas import OracleResult
from .surface import Surface
from .windows import PowerShellRunner, WindowsSurface

__all__ = [
    "AgentConfig",
    "AgentLoop",
    "LoopPhase",
    "LoopState",
    "ConfigError",
    "IterationBudgetExceeded",
    "NavAgentError",
    "StartLocationError",
    "SurfaceUnavailableError",
    "setup_logging",
    "ActionHistory",
    "Action",
    "ActionKind",
    "ActionOutcome",
    "CodeActionResult",
    "ElementSnapshot",
    "ExecutionResult",
    "FeedbackResult",
    "GoalCheckResult",
    "PlanStep",
    "StartLocation",
    "StepResult",
    "SurfaceSnapshot",
    "ToolsetPlan",
    "Perception",
    "OpenAIOracle",
    "ReasoningOracle",
    "OracleResult",
    "Surface",
    "PlaywrightExecutor",
    "PlaywrightSurface",
    "PowerShellRunner",
    "WindowsSurface",
]
