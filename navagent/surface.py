"""surface 能力接口：web 页面与桌面窗口各有一个实现"""

from abc import ABC, abstractmethod
from typing import List, Tuple

from .models import ActionKind, ExecutionResult, SurfaceSnapshot


class Surface(ABC):
    """
    AgentLoop 只依赖这个接口。

    kind 决定 oracle 生成代码时使用的方言（web 为 Playwright，windows 为 UI 自动化原语）。
    """

    kind: str = ""
    action_kinds: Tuple[ActionKind, ...] = tuple(ActionKind)

    @abstractmethod
    async def open(self, location: str) -> None:
        """导航或聚焦到起始位置"""

    @abstractmethod
    async def capture(self) -> SurfaceSnapshot:
        """截取当前快照；无法截取时抛出 SurfaceUnavailableError"""

    @abstractmethod
    async def execute(self, code: str) -> ExecutionResult:
        """执行合成的代码，异常以 ExecutionResult 返回"""

    async def candidate_locations(self) -> List[str]:
        """起始位置的候选项（如已安装的工具），为空表示不限制"""
        return []

    async def restore(self, snapshot: SurfaceSnapshot) -> bool:
        """尽力恢复到 snapshot 对应的状态，默认不支持"""
        return False
