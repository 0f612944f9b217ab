"""
桌面 surface：通过 PowerShell 自动化模块操作 Windows 窗口树。

所有窗口操作都委托给 WinAutomation.psm1 中的函数，
本模块只负责调用、解析输出，以及把它们包装成 Surface 接口。
"""

import asyncio
import base64
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from .controller import run_snippet
from .exceptions import NavAgentError, SurfaceUnavailableError
from .models import ActionKind, ExecutionResult, SurfaceSnapshot
from .surface import Surface

logger = logging.getLogger(__name__)

DEFAULT_MODULE_PATH = Path(__file__).with_name("WinAutomation.psm1")

_CLIXML_RE = re.compile(r"#< CLIXML\r?\n([\s\S]*?)\r?\n\r?\n<Objs Version=\"1\.1\.0\.1\"")


class PowerShellError(NavAgentError):
    pass


@dataclass(frozen=True)
class Tool:
    id: str
    title: str
    path: str
    metadata: List[str] = field(default_factory=list)
    last_access_time: Optional[datetime] = None


@dataclass(frozen=True)
class Window:
    handle: str
    title: str


def extract_clixml_content(output: str) -> str:
    """PowerShell 在有进度流时会把结果包在 CLIXML 里"""
    match = _CLIXML_RE.search(output)
    if match:
        return match.group(1).strip()
    return output.strip()


def build_command(module_path: Path, function_name: str, named_args: Dict[str, object]) -> str:
    args = " ".join(
        f"-{key} '{str(value).replace(chr(39), chr(39) * 2)}'"
        for key, value in named_args.items()
    )
    script = (
        "& {$ProgressPreference = 'SilentlyContinue'; "
        f"Import-Module -Name '{module_path}'; {function_name} {args} | Out-String}}"
    )
    # -EncodedCommand 需要 UTF-16LE 的 base64
    return base64.b64encode(script.encode("utf-16-le")).decode("ascii")


def _parse_datetime(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        return None


class PowerShellRunner:
    """调用 WinAutomation 模块中的函数"""

    def __init__(self, module_path: Optional[Path] = None, executable: str = "powershell"):
        self.module_path = Path(module_path) if module_path else DEFAULT_MODULE_PATH
        self.executable = executable

    async def call(self, function_name: str, **named_args) -> str:
        encoded = build_command(self.module_path, function_name, named_args)
        try:
            proc = await asyncio.create_subprocess_exec(
                self.executable, "-NonInteractive", "-EncodedCommand", encoded,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            raise PowerShellError(f"cannot start {self.executable}: {e}") from e

        try:
            stdout, _ = await proc.communicate()
        except asyncio.CancelledError:
            # 超时或被取消时不能让 powershell 继续操作窗口
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()
            raise
        text = stdout.decode("utf-8", errors="replace")
        if proc.returncode != 0:
            raise PowerShellError(f"{function_name} exited with {proc.returncode}: {text.strip()}")
        return extract_clixml_content(text)

    async def installed_tools(self) -> Dict[str, Tool]:
        raw = await self.call("Get-AllInstalledApps")
        try:
            apps = json.loads(raw)
        except json.JSONDecodeError as e:
            raise PowerShellError(f"unexpected Get-AllInstalledApps output: {raw[:200]}") from e
        if isinstance(apps, dict):
            apps = [apps]

        tools = {}
        for app in apps:
            tool = Tool(
                id=app["Title"],
                title=app["Title"],
                path=app.get("Path") or "",
                metadata=[app["Type"]] if app.get("Type") else [],
                last_access_time=_parse_datetime(app.get("LastAccessTimeStr")),
            )
            tools[tool.title] = tool
        return tools

    async def launch_tool(self, tool: Tool) -> None:
        await self.call("Start-Application", AppName=tool.title, LaunchPath=tool.path)

    async def active_windows(self) -> List[Window]:
        raw = await self.call("Get-ActiveWindows")
        try:
            items = json.loads(raw) if raw else []
        except json.JSONDecodeError as e:
            raise PowerShellError(f"unexpected Get-ActiveWindows output: {raw[:200]}") from e
        if isinstance(items, dict):
            items = [items]
        return [Window(handle=str(obj["Handle"]), title=obj.get("Title") or "") for obj in items]

    async def ui_tree(self, handle: str) -> str:
        return await self.call("Get-WindowUITree", WindowHandle=handle)

    async def screenshot(self, handle: str) -> str:
        return await self.call("Get-ScreenshotOfAppWindowAsBase64", WindowHandle=handle)

    async def tap(self, handle: str, xpath: str) -> bool:
        result = await self.call("Invoke-UIElementTap", WindowHandle=handle, XPath=xpath)
        return result.strip().lower() == "true"

    async def type_text(self, handle: str, xpath: str, text: str, mode: str = "overwrite") -> bool:
        if mode not in ("overwrite", "append"):
            raise ValueError(f"unknown type mode: {mode}")
        result = await self.call("Set-UIElementText", WindowHandle=handle, XPath=xpath, Text=text, Mode=mode)
        return result.strip().lower() == "true"

    async def scroll(self, handle: str, xpath: str, direction: str = "down") -> bool:
        if direction not in ("up", "down"):
            raise ValueError(f"unknown scroll direction: {direction}")
        result = await self.call("Invoke-UIElementScroll", WindowHandle=handle, XPath=xpath, Direction=direction)
        # 模块的滚动结果不可靠，只要没有报错就视为成功
        logger.debug("scroll result: %s", result)
        return True


class WindowsSurface(Surface):
    """桌面窗口 surface，location 是已安装工具的名称"""

    kind = "windows"
    action_kinds = (ActionKind.CLICK, ActionKind.TYPE, ActionKind.SCROLL)

    def __init__(self, runner: Optional[PowerShellRunner] = None, screenshots: bool = False,
                 launch_wait: float = 3.0, execute_timeout: float = 60.0):
        self.runner = runner or PowerShellRunner()
        self.screenshots = screenshots
        self.launch_wait = launch_wait
        self.execute_timeout = execute_timeout
        self.window: Optional[Window] = None
        self._tools: Optional[Dict[str, Tool]] = None

    async def tools(self) -> Dict[str, Tool]:
        if self._tools is None:
            self._tools = await self.runner.installed_tools()
        return self._tools

    async def candidate_locations(self) -> List[str]:
        try:
            return sorted(await self.tools())
        except PowerShellError as e:
            raise SurfaceUnavailableError(f"cannot list installed tools: {e}") from e

    async def open(self, location: str) -> None:
        try:
            tools = await self.tools()
            tool = tools.get(location) or next(
                (t for t in tools.values() if t.title.lower() == location.lower()), None
            )
            if tool is None:
                raise SurfaceUnavailableError(f"unknown tool: {location}")
            await self.runner.launch_tool(tool)
            await asyncio.sleep(self.launch_wait)
            windows = await self.runner.active_windows()
        except PowerShellError as e:
            raise SurfaceUnavailableError(f"cannot open {location}: {e}") from e

        if not windows:
            raise SurfaceUnavailableError(f"no active window after launching {location}")
        self.window = next((w for w in windows if tool.title.lower() in w.title.lower()), windows[0])
        logger.info("✓ 聚焦窗口 %s (%s)", self.window.title, self.window.handle)

    async def capture(self) -> SurfaceSnapshot:
        if self.window is None:
            raise SurfaceUnavailableError("no window is focused")
        try:
            tree = await self.runner.ui_tree(self.window.handle)
            screenshot = await self.runner.screenshot(self.window.handle) if self.screenshots else None
        except PowerShellError as e:
            raise SurfaceUnavailableError(f"cannot capture window {self.window.handle}: {e}") from e
        return SurfaceSnapshot(
            surface_kind=self.kind,
            location=f"{self.window.title} ({self.window.handle})",
            title=self.window.title,
            content=tree,
            screenshot=screenshot or None,
        )

    async def execute(self, code: str) -> ExecutionResult:
        if self.window is None:
            return ExecutionResult(success=False, fault="no window is focused")
        handle = self.window.handle
        runner = self.runner

        async def tap(xpath):
            if not await runner.tap(handle, xpath):
                raise PowerShellError(f"tap failed: {xpath}")

        async def type_text(xpath, text, mode="overwrite"):
            if not await runner.type_text(handle, xpath, text, mode):
                raise PowerShellError(f"type failed: {xpath}")

        async def scroll(xpath, direction="down"):
            await runner.scroll(handle, xpath, direction)

        scope = {"tap": tap, "type_text": type_text, "scroll": scroll}
        return await run_snippet(code, scope, timeout=self.execute_timeout)
