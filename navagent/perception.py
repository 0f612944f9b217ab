"""感知模块：把 Playwright 页面转换成 SurfaceSnapshot"""

import base64
import logging
from typing import List

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from .exceptions import SurfaceUnavailableError
from .models import ElementSnapshot, SurfaceSnapshot

logger = logging.getLogger(__name__)

# 在页面内执行：给可见可交互元素打上 data-agent-id，并返回元素清单和正文摘录
_EXTRACT_JS = """
([startId, maxText]) => {
    const visible = (el) => {
        const style = window.getComputedStyle(el);
        const rect = el.getBoundingClientRect();
        return style.display !== 'none'
            && style.visibility !== 'hidden'
            && parseFloat(style.opacity) !== 0
            && rect.width > 0 && rect.height > 0;
    };

    const interactive = (el) => {
        if (el.tagName === 'INPUT') {
            return (el.getAttribute('type') || '').toLowerCase() !== 'hidden';
        }
        if (el.tagName === 'A') {
            return el.hasAttribute('href') || el.getAttribute('role') === 'button';
        }
        return true;
    };

    const labelOf = (el) => {
        const candidates = [
            (el.innerText || '').trim(),
            (el.value || '').trim(),
            el.getAttribute('placeholder') || '',
            el.getAttribute('aria-label') || '',
            el.getAttribute('title') || '',
            el.getAttribute('alt') || '',
            el.getAttribute('name') || '',
        ];
        const chosen = candidates.find(c => c.length > 0) || '(no text)';
        return chosen.length > 80 ? chosen.slice(0, 77) + '...' : chosen;
    };

    const contextOf = (el) => {
        const form = el.closest('form');
        const legend = el.closest('fieldset')?.querySelector('legend');
        const parts = [];
        if (legend) parts.push('legend: ' + legend.innerText.trim());
        if (form?.id) parts.push('form: ' + form.id);
        return parts.length > 0 ? parts.join(' | ') : null;
    };

    const elements = [];
    let currentId = startId;
    const selector = 'button, a, input, textarea, select, [role="button"], [role="link"], [contenteditable="true"]';
    for (const el of document.querySelectorAll(selector)) {
        if (!visible(el) || !interactive(el)) continue;
        currentId += 1;
        el.setAttribute('data-agent-id', String(currentId));
        elements.push({
            id: currentId,
            tag: el.tagName.toLowerCase(),
            role: el.getAttribute('role'),
            label: labelOf(el),
            name: el.getAttribute('name') || el.id || null,
            input_type: el.getAttribute('type') || null,
            disabled: !!el.disabled || el.getAttribute('aria-disabled') === 'true',
            context: contextOf(el),
        });
    }

    const text = (document.body?.innerText || '').replace(/\\s+\\n/g, '\\n').trim();
    return { elements, lastId: currentId, text: text.slice(0, maxText) };
}
"""


class Perception:
    """
    提取可见且可交互的元素，生成不可变快照。

    元素 ID 跨轮次单调递增，旧快照里的 ID 不会与新快照混淆。
    """

    def __init__(self, max_text_chars: int = 4000, screenshots: bool = False):
        self.last_element_id = 0
        self.max_text_chars = max_text_chars
        self.screenshots = screenshots

    async def capture(self, page: Page) -> SurfaceSnapshot:
        try:
            result = await page.evaluate(_EXTRACT_JS, [self.last_element_id, self.max_text_chars])
            title = await page.title()
            screenshot = None
            if self.screenshots:
                screenshot = base64.b64encode(await page.screenshot()).decode("ascii")
        except PlaywrightError as e:
            raise SurfaceUnavailableError(f"cannot capture page snapshot: {e}") from e

        self.last_element_id = result["lastId"]
        elements = self._to_elements(result["elements"])
        logger.debug("提取 %d 个可交互元素 (%s)", len(elements), page.url)

        return SurfaceSnapshot(
            surface_kind="web",
            location=page.url,
            title=title,
            content=result.get("text") or "",
            elements=tuple(elements),
            screenshot=screenshot,
        )

    @staticmethod
    def _to_elements(items: List[dict]) -> List[ElementSnapshot]:
        return [
            ElementSnapshot(
                id=item["id"],
                tag=item["tag"],
                role=item.get("role"),
                label=item.get("label") or "(no text)",
                name=item.get("name"),
                input_type=item.get("input_type"),
                disabled=bool(item.get("disabled")),
                context=item.get("context"),
            )
            for item in items
        ]
