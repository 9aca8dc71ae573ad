import asyncio
import enum
import logging
from typing import Awaitable, Callable, Optional

from playwright.async_api import (
    BrowserContext,
    Page,
    TimeoutError as PlaywrightTimeoutError,
)

from profileshot.config import Settings, settings as default_settings
from profileshot.core.exceptions import (
    ChallengeTimeoutError,
    LoginError,
    MissingCredentialsError,
    SessionInvalidError,
    VerificationError,
    is_session_closed_error,
)
from profileshot.core.metrics import challenge_detected_total, login_attempts_total
from profileshot.core.retry import RetryPolicy, retry_async
from profileshot.services.browser import READY_STATE_COMPLETE
from profileshot.services.challenge import ChallengeDetector
from profileshot.services.landmarks import LoginLandmarks
from profileshot.services.resolver import ChallengeResolver
from profileshot.services.stealth import human_pause

logger = logging.getLogger(__name__)


class AuthState(str, enum.Enum):
    ANONYMOUS = "anonymous"
    SUBMITTING = "submitting"
    AWAITING_CHALLENGE = "awaiting_challenge"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


# Failures that another login attempt cannot fix
_FATAL = (MissingCredentialsError, ChallengeTimeoutError, SessionInvalidError)


def _retryable(exc: BaseException) -> bool:
    return not isinstance(exc, _FATAL) and not is_session_closed_error(exc)


class AuthManager:
    """Signs the session in with the configured credentials.

    A challenge that appears after submitting is handed to the resolver,
    which may relaunch the browser; ``login`` therefore returns the
    (context, page) the caller must use from then on.
    """

    def __init__(
        self,
        detector: ChallengeDetector,
        resolver: ChallengeResolver,
        config: Optional[Settings] = None,
        landmarks: Optional[LoginLandmarks] = None,
        *,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.detector = detector
        self.resolver = resolver
        self._settings = config or default_settings
        self.landmarks = landmarks or LoginLandmarks()
        self._sleep = sleep or asyncio.sleep
        self.state = AuthState.ANONYMOUS

    def _credentials(self) -> tuple[str, str]:
        email = self._settings.LINKEDIN_EMAIL
        password = self._settings.LINKEDIN_PASSWORD
        if not email or not password:
            raise MissingCredentialsError(
                "LinkedIn credentials not found: set LINKEDIN_EMAIL and LINKEDIN_PASSWORD"
            )
        return email, password

    def _is_login_url(self, url: str) -> bool:
        return any(p in url for p in self.landmarks.login_path_patterns)

    async def _pause(self, low: float, high: float) -> None:
        await human_pause(
            low, high, enabled=self._settings.HUMAN_PACING, sleep=self._sleep
        )

    async def _handle_challenge(self, live: dict) -> Page:
        """Hand the challenge to the resolver and adopt whatever it returns.

        The resolver relaunches the browser. The new pair goes into *live*
        before anything else in the attempt can fail, so a retry starts
        from the page that is actually open.
        """
        self.state = AuthState.AWAITING_CHALLENGE
        challenge_detected_total.labels(stage="login").inc()
        live["context"], live["page"] = await self.resolver.resolve(
            live["context"], live["page"]
        )
        page = live["page"]
        if self.detector.is_challenge_url(page.url):
            logger.info("Still on a challenge URL after resolution, reloading")
            await page.reload(wait_until="domcontentloaded")
            await self._pause(1.5, 2.5)
        return page

    async def _fill(self, page: Page, selector: str, value: str) -> None:
        s = self._settings
        await page.wait_for_selector(selector, state="visible", timeout=s.DEFAULT_TIMEOUT)
        await page.fill(selector, "")
        await page.type(selector, value, delay=s.TYPING_DELAY_MS)

    async def _login_once(self, live: dict, email: str, password: str) -> None:
        s = self._settings
        lm = self.landmarks
        page = live["page"]

        await page.goto(
            lm.login_url, wait_until="domcontentloaded", timeout=s.NAVIGATION_TIMEOUT
        )
        await self._pause(1.0, 2.0)
        if lm.domain_marker not in page.url:
            raise LoginError(f"Failed to reach login page (landed on {page.url})")

        if await self.detector.detect(page):
            page = await self._handle_challenge(live)

        if not self._is_login_url(page.url):
            # Persisted cookies already carried us past the login form
            logger.info("Login page redirected away, checking existing session")
            await self.verify_login(page)
            return

        await self._fill(page, lm.username_selector, email)
        await self._pause(0.5, 1.5)
        await self._fill(page, lm.password_selector, password)
        await self._pause(0.5, 1.5)

        self.state = AuthState.SUBMITTING
        try:
            async with page.expect_navigation(
                wait_until="domcontentloaded", timeout=s.NAVIGATION_TIMEOUT
            ):
                await page.click(lm.submit_selector)
        except PlaywrightTimeoutError:
            if not self.detector.is_challenge_url(page.url):
                raise LoginError("Navigation timeout and not on challenge page")
            logger.info("Login navigation timed out on a challenge page, continuing")

        await self._pause(2.0, 3.0)
        if await self.detector.detect(page):
            page = await self._handle_challenge(live)

        await self.verify_login(page)

    async def login(
        self, context: BrowserContext, page: Page
    ) -> tuple[BrowserContext, Page]:
        """Log in, retrying with a fixed backoff. Returns the live (context, page).

        Raises MissingCredentialsError before touching the browser,
        ChallengeTimeoutError when an operator never clears a challenge,
        SessionInvalidError when the browser dies underneath us and
        LoginError once every attempt has failed.
        """
        email, password = self._credentials()
        max_attempts = self._settings.LOGIN_MAX_ATTEMPTS
        current = {"context": context, "page": page}

        async def attempt(n: int) -> None:
            logger.info(f"Login attempt {n}/{max_attempts}")
            try:
                await self._login_once(current, email, password)
            except Exception:
                login_attempts_total.labels(outcome="failure").inc()
                raise

        policy = RetryPolicy(
            max_attempts=max_attempts,
            delay=self._settings.LOGIN_RETRY_DELAY,
            retry_on=_retryable,
            label="Login",
        )
        try:
            await retry_async(attempt, policy, sleep=self._sleep)
        except _FATAL:
            self.state = AuthState.FAILED
            raise
        except Exception as exc:
            self.state = AuthState.FAILED
            if is_session_closed_error(exc):
                raise SessionInvalidError(str(exc)) from exc
            raise LoginError(
                f"Login failed after {max_attempts} attempts: {exc}"
            ) from exc

        self.state = AuthState.AUTHENTICATED
        login_attempts_total.labels(outcome="success").inc()
        logger.info("Login successful")
        return current["context"], current["page"]

    async def verify_login(self, page: Page) -> bool:
        """Check that *page* shows an authenticated session.

        Positive landmarks win over negative ones. When neither is found the
        result depends on LOGIN_AMBIGUOUS_IS_AUTHENTICATED.
        """
        lm = self.landmarks
        if lm.domain_marker not in page.url:
            raise VerificationError(f"Not on LinkedIn domain: {page.url}")
        if await self.detector.detect(page):
            raise VerificationError("Security challenge still present")

        try:
            await page.wait_for_function(
                READY_STATE_COMPLETE, timeout=self._settings.DEFAULT_TIMEOUT
            )
        except PlaywrightTimeoutError:
            logger.debug("Page did not finish loading, checking landmarks anyway")
        await self._pause(1.5, 2.5)

        for selector in lm.nav_selectors + lm.content_selectors + lm.identity_selectors:
            if await page.query_selector(selector) is not None:
                logger.debug(f"Authenticated landmark found: {selector}")
                return True

        title = await page.title()
        if any(pattern in title for pattern in lm.title_patterns):
            return True

        for selector in lm.logout_selectors:
            if await page.query_selector(selector) is not None:
                raise VerificationError(f"Sign-in form present ({selector})")

        if self._settings.LOGIN_AMBIGUOUS_IS_AUTHENTICATED:
            logger.warning("No definitive login landmarks found, assuming authenticated")
            return True
        raise VerificationError("Could not confirm login state")
