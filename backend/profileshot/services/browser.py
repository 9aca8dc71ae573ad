import asyncio
import enum
import logging
import random
from dataclasses import dataclass, field
from typing import Optional

from playwright.async_api import (
    BrowserContext,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from profileshot.config import Settings, settings as default_settings
from profileshot.core.metrics import mode_switches_total
from profileshot.services.stealth import (
    CHROME_USER_AGENTS,
    DOCUMENT_HEADERS,
    build_stealth_script,
    forward_console_message,
    forward_page_error,
    random_viewport,
    route_handler,
)

logger = logging.getLogger(__name__)

# Cheap round trip that fails fast when the page is gone
LIVENESS_PROBE = "() => true"
READY_STATE_COMPLETE = "() => document.readyState === 'complete'"

CAPTURE_STORAGE_JS = """() => {
    const dump = (store) => {
        const out = {};
        for (let i = 0; i < store.length; i++) {
            const key = store.key(i);
            out[key] = store.getItem(key);
        }
        return out;
    };
    return { sessionStorage: dump(window.sessionStorage), localStorage: dump(window.localStorage) };
}"""

RESTORE_STORAGE_JS = """(data) => {
    for (const [k, v] of Object.entries(data.sessionStorage || {})) window.sessionStorage.setItem(k, v);
    for (const [k, v] of Object.entries(data.localStorage || {})) window.localStorage.setItem(k, v);
}"""


class RenderMode(str, enum.Enum):
    UNATTENDED = "unattended"  # headless
    INTERACTIVE = "interactive"  # visible window for an operator


@dataclass
class SessionSnapshot:
    """Browser state carried across a context relaunch."""

    url: str
    cookies: list[dict] = field(default_factory=list)
    session_storage: dict[str, str] = field(default_factory=dict)
    local_storage: dict[str, str] = field(default_factory=dict)

    @property
    def has_storage(self) -> bool:
        return bool(self.session_storage or self.local_storage)


async def _safe_close_page(page: Page) -> None:
    try:
        if not page.is_closed():
            await page.close()
    except Exception:
        pass


class BrowserProvider:
    """Launches persistent Chromium contexts for one login session.

    Each context runs against the session's on-disk profile directory so
    cookies survive process restarts. Chromium locks that directory, so at
    most one context is open per provider at a time: ``switch_mode`` closes
    the old context before launching the new one.
    """

    def __init__(self, config: Optional[Settings] = None):
        self._settings = config or default_settings
        self._playwright: Optional[Playwright] = None
        self._init_lock = asyncio.Lock()
        self._contexts: list[BrowserContext] = []
        # Fingerprint stays fixed for the life of the provider so a relaunch
        # does not look like a different machine.
        self._user_agent = random.choice(CHROME_USER_AGENTS)
        self._viewport = random_viewport(
            self._settings.RANDOMIZE_VIEWPORT,
            self._settings.VIEWPORT_WIDTH,
            self._settings.VIEWPORT_HEIGHT,
        )
        self._hw_concurrency = random.choice([4, 8, 12, 16])
        self._device_memory = random.choice([4, 8, 16])
        self.mode: Optional[RenderMode] = None

    @property
    def open_contexts(self) -> int:
        return len(self._contexts)

    async def _ensure_playwright(self) -> Playwright:
        if self._playwright is not None:
            return self._playwright
        async with self._init_lock:
            if self._playwright is None:
                self._playwright = await async_playwright().start()
        return self._playwright

    async def create(self, mode: RenderMode) -> tuple[BrowserContext, Page]:
        """Launch a persistent context in *mode* and open a hardened page."""
        pw = await self._ensure_playwright()
        s = self._settings

        profile_dir = s.profile_dir
        profile_dir.mkdir(parents=True, exist_ok=True)

        args = list(s.BROWSER_ARGS)
        kwargs = {
            "user_data_dir": str(profile_dir),
            "headless": mode is RenderMode.UNATTENDED and s.BROWSER_HEADLESS,
            "ignore_default_args": ["--enable-automation"],
            "user_agent": self._user_agent,
            "locale": "en-US",
            "ignore_https_errors": True,
        }
        if mode is RenderMode.INTERACTIVE:
            args.append("--start-maximized")
            kwargs["no_viewport"] = True
        else:
            kwargs["viewport"] = self._viewport
        kwargs["args"] = args
        if s.BROWSER_CHANNEL:
            kwargs["channel"] = s.BROWSER_CHANNEL

        logger.info(f"Launching {mode.value} browser context (profile {profile_dir})")
        context = await pw.chromium.launch_persistent_context(**kwargs)
        self._contexts.append(context)
        context.set_default_timeout(s.DEFAULT_TIMEOUT)
        context.set_default_navigation_timeout(s.NAVIGATION_TIMEOUT)

        try:
            page = await self.create_page(context)
            # A persistent context starts with a blank tab of its own
            for stale in list(context.pages):
                if stale is not page:
                    await _safe_close_page(stale)
        except Exception:
            await self.destroy(context)
            raise

        self.mode = mode
        return context, page

    async def create_page(self, context: BrowserContext) -> Page:
        page = await context.new_page()
        await page.set_extra_http_headers(DOCUMENT_HEADERS)
        await page.add_init_script(
            build_stealth_script(self._hw_concurrency, self._device_memory)
        )
        await page.route("**/*", route_handler)
        page.on("console", forward_console_message)
        page.on("pageerror", forward_page_error)
        return page

    async def capture_snapshot(
        self, context: BrowserContext, page: Page
    ) -> SessionSnapshot:
        """Best-effort capture; any part that fails is left empty."""
        snapshot = SessionSnapshot(url=page.url)
        try:
            snapshot.cookies = await context.cookies()
        except Exception as exc:
            logger.warning(f"Could not capture cookies: {exc}")
        try:
            storage = await page.evaluate(CAPTURE_STORAGE_JS) or {}
            snapshot.session_storage = storage.get("sessionStorage") or {}
            snapshot.local_storage = storage.get("localStorage") or {}
        except Exception as exc:
            logger.warning(f"Could not capture page storage: {exc}")
        return snapshot

    async def restore_snapshot(
        self, context: BrowserContext, page: Page, snapshot: SessionSnapshot
    ) -> None:
        """Replay cookies, return to the captured URL, then replay storage."""
        if snapshot.cookies:
            try:
                await context.add_cookies(snapshot.cookies)
            except Exception as exc:
                logger.warning(f"Could not restore cookies: {exc}")

        if not snapshot.url.startswith("http"):
            return

        try:
            await page.goto(
                snapshot.url,
                wait_until="domcontentloaded",
                timeout=self._settings.NAVIGATION_TIMEOUT,
            )
        except PlaywrightTimeoutError:
            logger.warning(f"Timed out returning to {snapshot.url} after mode switch")

        if snapshot.has_storage:
            try:
                await page.evaluate(
                    RESTORE_STORAGE_JS,
                    {
                        "sessionStorage": snapshot.session_storage,
                        "localStorage": snapshot.local_storage,
                    },
                )
            except Exception as exc:
                logger.warning(f"Could not restore page storage: {exc}")

    async def switch_mode(
        self, context: BrowserContext, page: Page, target: RenderMode
    ) -> tuple[BrowserContext, Page]:
        """Relaunch the session in *target* mode, keeping URL, cookies and storage.

        The old context is always closed before the new one is launched.
        """
        logger.info(f"Switching browser to {target.value} mode")
        mode_switches_total.labels(target=target.value).inc()

        snapshot = await self.capture_snapshot(context, page)
        await self.destroy(context)

        new_context, new_page = await self.create(target)
        await self.restore_snapshot(new_context, new_page, snapshot)
        return new_context, new_page

    async def destroy(self, context: Optional[BrowserContext]) -> None:
        """Close *context*. Safe to call twice; close errors are only logged."""
        if context is None:
            return
        if context in self._contexts:
            self._contexts.remove(context)
        try:
            await context.close()
        except Exception as exc:
            logger.warning(f"Error closing browser context: {exc}")

    async def close_all(self) -> None:
        for context in list(self._contexts):
            await self.destroy(context)

    async def verify_setup(self) -> str:
        """Launch and close a throwaway browser. Returns its version string."""
        pw = await self._ensure_playwright()
        browser = await pw.chromium.launch(
            headless=True, args=list(self._settings.BROWSER_ARGS)
        )
        try:
            page = await browser.new_page()
            await page.goto("about:blank")
            return browser.version
        finally:
            await browser.close()

    async def shutdown(self) -> None:
        await self.close_all()
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as exc:
                logger.warning(f"Error stopping Playwright: {exc}")
            self._playwright = None
        logger.info("Browser provider shut down")
