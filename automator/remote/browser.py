"""
Gemini Page Adapter

Playwright implementation of the remote action and image feed contracts
for the Gemini web app.
"""

import asyncio
import base64
import logging
from typing import Optional

from playwright.async_api import (
    BrowserContext,
    Error as PlaywrightError,
    Page,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from ..config import Settings, get_settings
from .base import (
    CandidateImage,
    CompletionResult,
    ConnectionLostError,
    ImageFeed,
    RemoteActionAdapter,
    RemoteActionError,
)

logger = logging.getLogger(__name__)

SELECTORS = {
    "prompt_textarea": 'rich-textarea .ql-editor[contenteditable="true"]',
    "generate_btn": 'mat-icon[fonticon="send"]',
    "stop_btn": 'mat-icon[fonticon="stop"]',
    "generated_images": (
        'generated-image img[src*="googleusercontent.com"], '
        '.generated-image-container img[src*="googleusercontent.com"]'
    ),
}

# Rebuild the editor content with DOM nodes (the page enforces Trusted Types).
_FILL_SCRIPT = """
(el, prompt) => {
    while (el.firstChild) el.removeChild(el.firstChild);
    el.focus();
    const p = document.createElement('p');
    p.appendChild(document.createTextNode(prompt));
    el.appendChild(p);
    el.dispatchEvent(new Event('input', { bubbles: true }));
    el.dispatchEvent(new Event('change', { bubbles: true }));
    el.classList.remove('ql-blank');
}
"""

_CLICK_SCRIPT = """
(icon) => {
    const btn = icon.closest('button') || icon.parentElement;
    (btn && btn.tagName === 'BUTTON' ? btn : icon).click();
}
"""

_LIST_IMAGES_SCRIPT = """
(imgs) => imgs.map((img) => img.currentSrc || img.src)
"""

_SUBSTITUTE_SCRIPT = """
([src, dataUrl]) => {
    for (const img of document.querySelectorAll('img')) {
        if ((img.currentSrc || img.src) === src) img.src = dataUrl;
    }
}
"""

_CLOSED_MARKERS = (
    "has been closed",
    "Target closed",
    "Browser has been disconnected",
    "Execution context was destroyed",
)


def _is_connection_lost(error: Exception) -> bool:
    message = str(error)
    return any(marker in message for marker in _CLOSED_MARKERS)


def image_id_for(src: str) -> str:
    """Stable identifier of a generated image, independent of its size suffix."""
    return src.split("=", 1)[0]


class GeminiPageAdapter(RemoteActionAdapter, ImageFeed):
    """Drives one Gemini tab."""

    def __init__(self, page: Page, settings: Optional[Settings] = None):
        self.page = page
        self.settings = settings or get_settings()
        # original srcs already swapped for a processed data: URL
        self._substituted: set[str] = set()

    def _wrap(self, error: PlaywrightError, action: str) -> RemoteActionError:
        if _is_connection_lost(error) or self.page.is_closed():
            return ConnectionLostError(f"{action}: {error}")
        return RemoteActionError(f"{action}: {error}")

    async def probe(self) -> bool:
        """Bring the tab to the front and check it still answers."""
        if self.page.is_closed():
            return False
        try:
            await self.page.bring_to_front()
            await self.page.evaluate("1")
        except PlaywrightError as e:
            logger.warning(f"Gemini page probe failed: {e}")
            return False
        host = self.settings.target_url.split("/")[2]
        return host in self.page.url

    async def fill_input(self, content: str) -> None:
        try:
            textarea = self.page.locator(SELECTORS["prompt_textarea"]).first
            if await textarea.count() == 0:
                raise RemoteActionError("Prompt textarea not found")
            await textarea.evaluate(_FILL_SCRIPT, content)
            await asyncio.sleep(self.settings.post_fill_seconds)
        except PlaywrightError as e:
            raise self._wrap(e, "fill prompt") from e

    async def trigger_action(self) -> None:
        button = self.page.locator(SELECTORS["generate_btn"]).first
        try:
            for _ in range(self.settings.trigger_max_attempts):
                if await button.count() > 0 and await button.is_visible():
                    break
                await asyncio.sleep(self.settings.trigger_retry_interval)
            else:
                raise RemoteActionError(
                    f"Generate button not found after {self.settings.trigger_max_attempts} attempts"
                )
            await button.evaluate(_CLICK_SCRIPT)
            await asyncio.sleep(self.settings.post_click_seconds)
        except PlaywrightError as e:
            raise self._wrap(e, "click generate") from e

    async def await_completion(self) -> CompletionResult:
        await asyncio.sleep(self.settings.generation_start_grace)
        stop_btn = self.page.locator(SELECTORS["stop_btn"]).first
        try:
            if await stop_btn.count() == 0 or not await stop_btn.is_visible():
                return CompletionResult(success=True)
            await stop_btn.wait_for(
                state="hidden", timeout=self.settings.completion_timeout * 1000
            )
        except PlaywrightTimeoutError:
            logger.error("Timeout waiting for completion")
            return CompletionResult(success=False, error="Timeout")
        except PlaywrightError as e:
            raise self._wrap(e, "wait for completion") from e

        await asyncio.sleep(self.settings.completion_settle_seconds)
        return CompletionResult(success=True)

    async def discover(self) -> list[CandidateImage]:
        try:
            sources = await self.page.eval_on_selector_all(
                SELECTORS["generated_images"], _LIST_IMAGES_SCRIPT
            )
        except PlaywrightError as e:
            raise self._wrap(e, "find images") from e
        return [
            CandidateImage(image_id=image_id_for(src), display_url=src)
            for src in sources
            if src and src not in self._substituted
        ]

    async def substitute(self, candidate: CandidateImage, data: bytes) -> None:
        data_url = "data:image/png;base64," + base64.b64encode(data).decode("ascii")
        try:
            await self.page.evaluate(_SUBSTITUTE_SCRIPT, [candidate.display_url, data_url])
        except PlaywrightError as e:
            raise self._wrap(e, "substitute image") from e
        self._substituted.add(candidate.display_url)


class BrowserSession:
    """
    Owns the Playwright browser for a run.

    Attaches over CDP when `browser_cdp_url` is set (reusing the user's
    logged-in Chrome), otherwise launches a persistent profile.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._playwright = None
        self._browser = None
        self._context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None

    async def __aenter__(self) -> GeminiPageAdapter:
        self._playwright = await async_playwright().start()
        chromium = self._playwright.chromium

        if self.settings.browser_cdp_url:
            self._browser = await chromium.connect_over_cdp(self.settings.browser_cdp_url)
            self._context = (
                self._browser.contexts[0] if self._browser.contexts
                else await self._browser.new_context()
            )
            logger.info(f"Attached to browser at {self.settings.browser_cdp_url}")
        else:
            self._context = await chromium.launch_persistent_context(
                self.settings.browser_user_data_dir,
                headless=self.settings.browser_headless,
            )
            logger.info(f"Launched browser with profile {self.settings.browser_user_data_dir}")

        host = self.settings.target_url.split("/")[2]
        self.page = next((p for p in self._context.pages if host in p.url), None)
        if self.page is None:
            self.page = await self._context.new_page()
            await self.page.goto(self.settings.target_url, wait_until="domcontentloaded")
        await self.page.bring_to_front()
        return GeminiPageAdapter(self.page, self.settings)

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if self._browser is not None:
                # Over CDP this only disconnects; the user's browser keeps running.
                await self._browser.close()
            elif self._context is not None:
                await self._context.close()
        except PlaywrightError as e:
            logger.warning(f"Error closing browser: {e}")
        finally:
            if self._playwright is not None:
                await self._playwright.stop()
