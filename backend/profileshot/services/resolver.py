import asyncio
import logging
from typing import Awaitable, Callable, Optional

from playwright.async_api import BrowserContext, Page

from profileshot.config import Settings, settings as default_settings
from profileshot.core.exceptions import (
    ChallengeTimeoutError,
    SessionInvalidError,
    is_session_closed_error,
)
from profileshot.core.metrics import challenge_resolution_total
from profileshot.core.retry import PollStep, RetryExhaustedError, RetryPolicy, poll_until
from profileshot.services.browser import BrowserProvider, RenderMode
from profileshot.services.challenge import ChallengeDetector, ChallengeState

logger = logging.getLogger(__name__)

_SHOW_BANNER_JS = """() => {
    if (document.getElementById('captcha-overlay')) return;
    const el = document.createElement('div');
    el.id = 'captcha-overlay';
    el.style.cssText = 'position:fixed;top:0;left:0;right:0;padding:16px;z-index:2147483647;'
        + 'background:#c0392b;color:#fff;font:bold 18px sans-serif;text-align:center;';
    el.textContent = 'Security verification required: please complete the challenge in this window.';
    document.body.appendChild(el);
}"""

_WAITING_JS = """([attempt, total, minutesLeft]) => {
    let el = document.getElementById('captcha-wait-message');
    if (!el) {
        el = document.createElement('div');
        el.id = 'captcha-wait-message';
        el.style.cssText = 'position:fixed;bottom:16px;right:16px;padding:10px 14px;z-index:2147483647;'
            + 'background:rgba(0,0,0,.75);color:#fff;font:14px sans-serif;border-radius:6px;';
        document.body.appendChild(el);
    }
    el.textContent = `Waiting for verification (check ${attempt}/${total}, about ${minutesLeft} min left)`;
}"""

_SUCCESS_JS = """() => {
    const wait = document.getElementById('captcha-wait-message');
    if (wait) wait.remove();
    const el = document.getElementById('captcha-overlay');
    if (el) {
        el.style.background = '#27ae60';
        el.textContent = 'Verification complete, resuming automatically.';
    }
}"""

_CLEAR_JS = """() => {
    for (const id of ['captcha-overlay', 'captcha-wait-message']) {
        const el = document.getElementById(id);
        if (el) el.remove();
    }
}"""


async def _run_ui(page: Page, script: str, arg=None) -> None:
    """Operator-facing page decoration; failures never affect resolution."""
    try:
        await page.evaluate(script, arg)
    except Exception as exc:
        logger.debug(f"Operator UI update skipped: {exc}")


class ChallengeResolver:
    """Hands a challenge to a human and waits for it to clear.

    The session is relaunched in a visible window, polled until the
    challenge is gone (or the attempt budget runs out), then relaunched
    headless at whatever URL the operator ended up on.
    """

    def __init__(
        self,
        provider: BrowserProvider,
        detector: ChallengeDetector,
        config: Optional[Settings] = None,
        *,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.provider = provider
        self.detector = detector
        self._settings = config or default_settings
        self._sleep = sleep or asyncio.sleep

    def _policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self._settings.CHALLENGE_MAX_ATTEMPTS,
            delay=self._settings.CHALLENGE_POLL_INTERVAL,
            retry_on=lambda exc: not is_session_closed_error(exc),
            label="Challenge check",
        )

    async def _is_submitting(self, page: Page, text: str) -> bool:
        lm = self.detector.landmarks
        for selector in lm.submitting_selectors:
            if await page.query_selector(selector) is not None:
                return True
        return any(keyword in text for keyword in lm.submitting_keywords)

    async def _check(self, page: Page, attempt: int) -> PollStep:
        if page.is_closed():
            raise SessionInvalidError("Challenge window was closed")

        state = await self.detector.state(page)
        if state is not ChallengeState.PRESENT:
            logger.debug(f"Challenge check {attempt}: {state.value}")
            return PollStep(done=True)

        text = (await page.inner_text("body")).lower()

        total = self._settings.CHALLENGE_MAX_ATTEMPTS
        minutes_left = round((total - attempt) * self._settings.CHALLENGE_POLL_INTERVAL / 60)
        await _run_ui(page, _WAITING_JS, [attempt, total, minutes_left])
        if await self._is_submitting(page, text):
            logger.info("Challenge submission in progress, waiting")
            return PollStep(done=False, delay=self._settings.CHALLENGE_SUBMIT_GRACE)
        logger.info(f"Waiting for challenge resolution ({attempt}/{total})")
        return PollStep(done=False)

    async def resolve(
        self, context: BrowserContext, page: Page
    ) -> tuple[BrowserContext, Page]:
        """Wait for an operator to clear the challenge on *page*.

        Returns the new unattended (context, page). Raises
        ChallengeTimeoutError when the attempt budget is spent; the
        interactive context is left open for the caller to dispose of.
        """
        logger.warning("Verification challenge detected, waiting for an operator")
        context, page = await self.provider.switch_mode(
            context, page, RenderMode.INTERACTIVE
        )
        await _run_ui(page, _SHOW_BANNER_JS)

        try:
            attempt = await poll_until(
                lambda n: self._check(page, n),
                self._policy(),
                error_pause=self._settings.CHALLENGE_ERROR_PAUSE,
                sleep=self._sleep,
            )
        except RetryExhaustedError as exc:
            challenge_resolution_total.labels(outcome="timeout").inc()
            await _run_ui(page, _CLEAR_JS)
            raise ChallengeTimeoutError(
                f"Challenge not resolved after {exc.attempts} checks",
                attempts=exc.attempts,
            ) from exc
        except Exception:
            challenge_resolution_total.labels(outcome="error").inc()
            raise

        logger.info(f"Challenge resolved after {attempt} checks")
        challenge_resolution_total.labels(outcome="resolved").inc()
        await _run_ui(page, _SUCCESS_JS)
        await self._sleep(self._settings.CHALLENGE_SETTLE_DELAY)

        return await self.provider.switch_mode(context, page, RenderMode.UNATTENDED)
