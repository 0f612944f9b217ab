"""执行模块：运行 oracle 合成的自动化代码"""

import asyncio
import logging
import textwrap
from typing import Any, Dict, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from .exceptions import SurfaceUnavailableError
from .models import ExecutionResult, SurfaceSnapshot
from .perception import Perception
from .surface import Surface

logger = logging.getLogger(__name__)


async def run_snippet(code: str, scope: Dict[str, Any], timeout: Optional[float] = None) -> ExecutionResult:
    """
    把代码片段包装成 async 函数执行，scope 中的名字作为参数传入。

    任何异常（包括语法错误和超时）都作为 fault 返回，不会抛出。
    """
    params = ", ".join(scope)
    source = f"async def __navagent_action({params}):\n{textwrap.indent(code.strip(), '    ')}\n"
    try:
        namespace: Dict[str, Any] = {"asyncio": asyncio}
        exec(compile(source, "<synthesized>", "exec"), namespace)
        output = await asyncio.wait_for(namespace["__navagent_action"](**scope), timeout=timeout)
    except asyncio.TimeoutError:
        return ExecutionResult(success=False, fault=f"timed out after {timeout}s")
    except Exception as e:
        return ExecutionResult(success=False, fault=f"{type(e).__name__}: {e}")
    return ExecutionResult(success=True, output=None if output is None else str(output))


class PlaywrightExecutor:
    """在 Playwright 页面上执行合成代码，代码中可使用 page"""

    def __init__(self, page: Page, timeout: float = 30.0):
        self.page = page
        self.timeout = timeout

    async def execute(self, code: str) -> ExecutionResult:
        result = await run_snippet(code, {"page": self.page}, timeout=self.timeout)
        if result.success:
            logger.info("✓ 代码执行成功")
        else:
            logger.info("❌ 代码执行失败: %s", result.fault)
        return result


class PlaywrightSurface(Surface):
    """网页 surface：感知 + 执行 + 导航"""

    kind = "web"

    def __init__(self, page: Page, perception: Optional[Perception] = None,
                 start_timeout_ms: int = 5000, execute_timeout: float = 30.0):
        self.page = page
        self.perception = perception or Perception()
        self.executor = PlaywrightExecutor(page, timeout=execute_timeout)
        self.start_timeout_ms = start_timeout_ms

    async def open(self, location: str) -> None:
        try:
            await self.page.goto(location)
        except PlaywrightError as e:
            raise SurfaceUnavailableError(f"cannot open {location}: {e}") from e
        await self.page.wait_for_timeout(self.start_timeout_ms)

    async def capture(self) -> SurfaceSnapshot:
        return await self.perception.capture(self.page)

    async def execute(self, code: str) -> ExecutionResult:
        return await self.executor.execute(code)

    async def restore(self, snapshot: SurfaceSnapshot) -> bool:
        """返回操作前的 URL；同一 URL 内的状态变化无法恢复"""
        if self.page.url == snapshot.location:
            return False
        try:
            await self.page.goto(snapshot.location)
        except PlaywrightError as e:
            logger.warning("返回 %s 失败: %s", snapshot.location, e)
            return False
        logger.info("✓ 返回 %s", snapshot.location)
        return True
