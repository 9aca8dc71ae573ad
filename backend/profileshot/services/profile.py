import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Optional

from playwright.async_api import Page, TimeoutError as PlaywrightTimeoutError

from profileshot.config import Settings, settings as default_settings
from profileshot.core.exceptions import (
    AppError,
    FetchError,
    InvalidInputError,
    ProfileNotFoundError,
    is_session_closed_error,
)
from profileshot.core.metrics import (
    challenge_detected_total,
    profile_fetch_duration_seconds,
    profile_fetch_total,
)
from profileshot.core.rate_limiter import RateLimitWindow
from profileshot.core.retry import RetryPolicy, retry_async
from profileshot.services.auth import AuthManager
from profileshot.services.browser import READY_STATE_COMPLETE, BrowserProvider
from profileshot.services.challenge import ChallengeDetector
from profileshot.services.landmarks import ProfileLandmarks, SiteLandmarks
from profileshot.services.resolver import ChallengeResolver
from profileshot.services.session import SessionManager
from profileshot.services.stealth import human_pause
from profileshot.services.storage import timestamped_path, write_screenshot

logger = logging.getLogger(__name__)

# Clicks "show more"-style controls. Returns how many were clicked.
_EXPAND_JS = """({selectors, patterns}) => {
    const clicked = new Set();
    const click = (el) => {
        if (clicked.has(el) || el.offsetParent === null) return;
        try { el.click(); clicked.add(el); } catch (e) {}
    };
    for (const sel of selectors) {
        document.querySelectorAll(sel).forEach(click);
    }
    const countPattern = /^show \\d+ (more )?skills?/;
    document.querySelectorAll('button, a[role="button"], span[role="button"]').forEach((el) => {
        const text = (el.innerText || '').trim().toLowerCase();
        if (!text || text.length > 60) return;
        if (text === 'more' || countPattern.test(text) || patterns.some((p) => text.includes(p))) {
            click(el);
        }
    });
    return clicked.size;
}"""

# Scroll through the page so lazy sections render, then return to the top.
_SCROLL_JS = """async ({step, pause}) => {
    const sleep = (ms) => new Promise((r) => setTimeout(r, ms));
    let y = 0;
    while (y < document.body.scrollHeight) {
        y += step;
        window.scrollTo(0, y);
        await sleep(pause);
    }
    window.scrollTo(0, 0);
    await sleep(pause);
}"""

# Resolves once the body size stops changing for `checks` consecutive samples.
_DOM_STABLE_JS = """async ({checks, interval}) => {
    const sleep = (ms) => new Promise((r) => setTimeout(r, ms));
    let last = -1, stable = 0;
    for (let i = 0; i < checks * 4 && stable < checks; i++) {
        const size = document.body.innerHTML.length;
        stable = size === last ? stable + 1 : 0;
        last = size;
        await sleep(interval);
    }
    return stable >= checks;
}"""


def normalize_profile_url(profile_url: str, domain_marker: str = "linkedin.com/") -> str:
    """Validate a profile URL and return it as an https URL."""
    url = (profile_url or "").strip()
    if not url:
        raise InvalidInputError("Missing profile URL")
    if domain_marker not in url.lower():
        raise InvalidInputError("Please provide a valid LinkedIn profile URL")
    lowered = url.lower()
    if lowered.startswith("http://"):
        url = "https://" + url[len("http://"):]
    elif not lowered.startswith("https://"):
        url = "https://" + url.lstrip("/")
    return url


@dataclass
class FetchResult:
    success: bool
    screenshot_path: Optional[str] = None
    error: Optional[str] = None
    exception: Optional[AppError] = field(default=None, repr=False)

    @classmethod
    def failed(cls, exc: AppError) -> "FetchResult":
        return cls(success=False, error=exc.message, exception=exc)

    def raise_for_error(self) -> None:
        if not self.success:
            raise self.exception or FetchError(self.error or "")

    def to_dict(self) -> dict:
        if self.success:
            return {"success": True, "screenshotPath": self.screenshot_path}
        return {"success": False, "error": self.error}


class _ProfileNotReady(Exception):
    pass


class ProfileFetcher:
    """Turns a profile URL into a full-page screenshot on disk.

    Requests are spaced by the rate limit window and then run one at a
    time against the shared session page.
    """

    def __init__(
        self,
        session: SessionManager,
        detector: ChallengeDetector,
        rate_limiter: RateLimitWindow,
        config: Optional[Settings] = None,
        landmarks: Optional[ProfileLandmarks] = None,
        *,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.session = session
        self.detector = detector
        self.rate_limiter = rate_limiter
        self._settings = config or default_settings
        self.landmarks = landmarks or ProfileLandmarks()
        self._sleep = sleep or asyncio.sleep
        self._lock = asyncio.Lock()

    async def _pause(self, low: float, high: float) -> None:
        await human_pause(
            low, high, enabled=self._settings.HUMAN_PACING, sleep=self._sleep
        )

    async def fetch_profile_screenshot(self, profile_url: str) -> FetchResult:
        try:
            target = normalize_profile_url(profile_url, self.landmarks.domain_marker)
        except InvalidInputError as exc:
            profile_fetch_total.labels(status="invalid").inc()
            return FetchResult.failed(exc)

        await self.rate_limiter.acquire()

        async with self._lock:
            started = time.perf_counter()
            logger.info(f"Capturing profile {target}")
            try:
                path = await self._run(target)
            except Exception as exc:
                logger.error(f"Profile screenshot failed for {target}: {exc}")
                await self._save_debug_screenshot()
                if is_session_closed_error(exc):
                    error = FetchError("Browser session was lost and could not be rebuilt")
                elif isinstance(exc, AppError):
                    error = exc
                else:
                    error = FetchError(str(exc))
                profile_fetch_total.labels(status="error").inc()
                return FetchResult.failed(error)
            finally:
                profile_fetch_duration_seconds.observe(time.perf_counter() - started)

        profile_fetch_total.labels(status="success").inc()
        return FetchResult(success=True, screenshot_path=str(path))

    async def _attempt(self, target: str) -> Path:
        await self.session.get_page()
        await self.session.ensure_login()
        return await self._capture(target)

    async def _run(self, target: str) -> Path:
        """Capture *target*, rebuilding the session once if the browser dies."""
        try:
            return await self._attempt(target)
        except Exception as exc:
            if not is_session_closed_error(exc):
                raise
            logger.warning(f"Browser session lost while capturing ({exc}), rebuilding")
            await self.session.reset_session()
        return await self._attempt(target)

    async def _navigate(self, page: Page, target: str, timeout: int) -> None:
        try:
            await page.goto(
                target,
                wait_until="domcontentloaded",
                timeout=timeout,
                referer=self.landmarks.referer,
            )
        except PlaywrightTimeoutError:
            logger.warning(f"Navigation to {target} timed out, using partial load")
        await self._pause(2.0, 4.0)
        try:
            await page.wait_for_function(
                READY_STATE_COMPLETE, timeout=self._settings.PAGE_LOAD_WAIT
            )
        except PlaywrightTimeoutError:
            pass

    async def _handle_challenge(self, target: str) -> Page:
        challenge_detected_total.labels(stage="profile").inc()
        page = await self.session.resolve_challenge()
        await self._sleep(self._settings.CHALLENGE_SETTLE_DELAY)
        await self._navigate(page, target, self._settings.NAVIGATION_TIMEOUT)
        return page

    async def _capture(self, target: str) -> Path:
        s = self._settings
        page = self.session.page
        await self._navigate(page, target, s.PROFILE_NAVIGATION_TIMEOUT)

        if await self.detector.detect(page):
            page = await self._handle_challenge(target)
            if await self.detector.detect(page):
                raise FetchError("Security challenge still present after resolution")

        page = await self._wait_for_profile(target)
        await self._expand_sections(page)
        await self._scroll(page)
        await self._wait_for_stable_dom(page)

        path = timestamped_path(s.SCREENSHOTS_DIR, "profile", s.SCREENSHOT_TYPE)
        return await write_screenshot(
            page, path, full_page=s.SCREENSHOT_FULL_PAGE, image_type=s.SCREENSHOT_TYPE
        )

    async def _is_error_page(self, page: Page) -> bool:
        lm = self.landmarks
        if any(pattern in page.url for pattern in lm.error_url_patterns):
            return True
        for selector in lm.error_selectors:
            if await page.query_selector(selector) is not None:
                return True
        return False

    async def _has_profile_content(self, page: Page) -> bool:
        lm = self.landmarks
        for selector in lm.selectors:
            el = await page.query_selector(selector)
            if el is not None and await el.is_visible():
                logger.debug(f"Profile landmark found: {selector}")
                return True
        text = (await page.inner_text("body")).lower()
        if any(keyword in text for keyword in lm.keywords):
            return True
        return any(pattern in page.url for pattern in lm.url_patterns)

    async def _wait_for_profile(self, target: str) -> Page:
        max_attempts = self._settings.PROFILE_DETECT_ATTEMPTS

        async def attempt(n: int) -> Page:
            page = self.session.page
            if await self._is_error_page(page):
                raise ProfileNotFoundError("Profile not found or unavailable")
            if await self._has_profile_content(page):
                return page
            logger.info(f"Profile content not detected ({n}/{max_attempts})")
            if await self.detector.detect(page):
                await self._handle_challenge(target)
            raise _ProfileNotReady(target)

        policy = RetryPolicy(
            max_attempts=max_attempts,
            delay=self._settings.PROFILE_DETECT_DELAY,
            retry_on=lambda exc: isinstance(exc, _ProfileNotReady),
            label="Profile detection",
        )
        try:
            return await retry_async(attempt, policy, sleep=self._sleep)
        except _ProfileNotReady as exc:
            raise FetchError(
                f"Failed to detect profile content after {max_attempts} attempts"
            ) from exc

    async def _expand_sections(self, page: Page) -> None:
        lm = self.landmarks
        # Second pass catches controls revealed by the first (nested skills lists)
        for _ in range(2):
            try:
                clicked = await page.evaluate(
                    _EXPAND_JS,
                    {"selectors": lm.expand_selectors, "patterns": lm.expand_text_patterns},
                )
            except Exception as exc:
                logger.debug(f"Section expansion skipped: {exc}")
                return
            if not clicked:
                return
            logger.debug(f"Expanded {clicked} profile sections")
            await self._pause(1.0, 2.0)

    async def _scroll(self, page: Page) -> None:
        try:
            await page.evaluate(_SCROLL_JS, {"step": 800, "pause": 300})
        except Exception as exc:
            logger.debug(f"Scroll pass skipped: {exc}")

    async def _wait_for_stable_dom(self, page: Page) -> None:
        try:
            await page.evaluate(_DOM_STABLE_JS, {"checks": 3, "interval": 800})
        except Exception as exc:
            logger.debug(f"DOM stability wait skipped: {exc}")

    async def _save_debug_screenshot(self) -> None:
        page = self.session.page
        if page is None or page.is_closed():
            return
        try:
            await write_screenshot(
                page, timestamped_path(self._settings.DEBUG_DIR, "profile-error")
            )
        except Exception as exc:
            logger.warning(f"Could not save debug screenshot: {exc}")

    async def shutdown(self) -> None:
        await self.session.shutdown()


def build_profile_fetcher(config: Optional[Settings] = None) -> ProfileFetcher:
    """Wire the full session stack for *config*."""
    s = config or default_settings
    landmarks = SiteLandmarks.load(s.LANDMARKS_FILE)
    provider = BrowserProvider(s)
    detector = ChallengeDetector(landmarks.challenge)
    resolver = ChallengeResolver(provider, detector, s)
    auth = AuthManager(detector, resolver, s, landmarks.login)
    session = SessionManager(provider, auth, resolver, s)
    return ProfileFetcher(
        session,
        detector,
        RateLimitWindow(s.request_delay_seconds),
        s,
        landmarks.profile,
    )
