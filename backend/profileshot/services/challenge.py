"""Recognise verification challenges on the current page.

Probes run cheapest first and stop at the first hit:

1. URL path fragments (checkpoint / security-verification)
2. challenge DOM elements
3. embedded frames whose URL looks like a captcha
4. challenge phrases in the rendered text

A probe that errors gives no signal and the next one runs. If the page
itself is gone, inspection stops and the page is reported clear: a dead
page is the session manager's problem, not a challenge.
"""

import enum
import logging
from typing import Optional

from playwright.async_api import Page

from profileshot.core.exceptions import is_session_closed_error
from profileshot.services.landmarks import ChallengeLandmarks

logger = logging.getLogger(__name__)


class ChallengeState(str, enum.Enum):
    """What a page shows right now. Derived by ``ChallengeDetector.state``."""

    NONE = "none"
    PRESENT = "present"
    # operator is done but the site has not redirected off the checkpoint yet
    RESOLVED_PENDING_REDIRECT = "resolved_pending_redirect"


class ChallengeDetector:
    def __init__(self, landmarks: Optional[ChallengeLandmarks] = None):
        self.landmarks = landmarks or ChallengeLandmarks()

    def is_challenge_url(self, url: str) -> bool:
        return any(pattern in url for pattern in self.landmarks.url_patterns)

    async def _probe_url(self, page: Page) -> bool:
        return self.is_challenge_url(page.url)

    async def _probe_selectors(self, page: Page) -> bool:
        for selector in self.landmarks.selectors:
            if await page.query_selector(selector) is not None:
                logger.info(f"Challenge element found: {selector}")
                return True
        return False

    async def _probe_frames(self, page: Page) -> bool:
        for frame in page.frames:
            url = (frame.url or "").lower()
            if any(pattern in url for pattern in self.landmarks.frame_patterns):
                logger.info(f"Challenge frame found: {frame.url}")
                return True
        return False

    async def _probe_text(self, page: Page) -> bool:
        text = (await page.inner_text("body")).lower()
        for keyword in self.landmarks.keywords:
            if keyword in text:
                logger.info(f"Challenge keyword found: {keyword!r}")
                return True
        return False

    async def detect(self, page: Page) -> bool:
        """True if any probe sees a challenge on *page*."""
        probes = (
            self._probe_url,
            self._probe_selectors,
            self._probe_frames,
            self._probe_text,
        )
        for probe in probes:
            try:
                if await probe(page):
                    return True
            except Exception as exc:
                if is_session_closed_error(exc):
                    logger.info("Page closed during challenge inspection")
                    return False
                logger.debug(f"Challenge probe {probe.__name__} failed: {exc}")
        return False

    async def _shows_success(self, page: Page) -> bool:
        lm = self.landmarks
        if any(pattern in page.url for pattern in lm.success_url_patterns):
            return True
        try:
            text = (await page.inner_text("body")).lower()
        except Exception as exc:
            if is_session_closed_error(exc):
                raise
            logger.debug(f"Challenge success check failed: {exc}")
            return False
        return any(keyword in text for keyword in lm.success_keywords)

    async def state(self, page: Page) -> ChallengeState:
        """Classify *page* as it is now; nothing is remembered between calls."""
        if not await self.detect(page):
            return ChallengeState.NONE
        if await self._shows_success(page):
            return ChallengeState.RESOLVED_PENDING_REDIRECT
        return ChallengeState.PRESENT
