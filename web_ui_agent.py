"""
navagent 网页示例：打开浏览器，让 Agent 朝目标前进，直到目标达成。

依赖安装：
    pip install -e .
    playwright install chromium

运行示例：
    export OPENAI_API_KEY='sk-...'
    python web_ui_agent.py "find the price of the Raspberry Pi 5 on raspberrypi.com"
"""

import asyncio
import logging
import sys

from playwright.async_api import async_playwright

from navagent import AgentConfig, AgentLoop, NavAgentError, PlaywrightSurface, setup_logging
from navagent.perception import Perception

logger = logging.getLogger("navagent.web_ui_agent")


async def run_agent(goal: str, config: AgentConfig) -> int:
    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=config.headless)
        page = await browser.new_page()
        surface = PlaywrightSurface(
            page,
            perception=Perception(screenshots=config.visual_mode),
            start_timeout_ms=config.start_timeout_ms,
            execute_timeout=config.execute_timeout,
        )
        agent = AgentLoop.from_config(config, surface)
        try:
            relevant_data = await agent.run(goal)
        except NavAgentError as e:
            logger.error("Agent 执行失败: %s", e)
            return 1
        finally:
            await browser.close()

    for label, value in relevant_data:
        print(f"{label} - {value}")
    return 0


if __name__ == "__main__":
    config = AgentConfig.from_env()
    setup_logging(config.log_level)

    # 示例用法：修改为你的目标，或从命令行传入
    user_goal = " ".join(sys.argv[1:]) or "Find the current price of a Raspberry Pi 5 8GB"
    sys.exit(asyncio.run(run_agent(user_goal, config)))
