"""End-to-end tests for ProfileFetcher against the scripted fake site."""

import asyncio
import re
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from profileshot.core.exceptions import (
    ChallengeTimeoutError,
    FetchError,
    InvalidInputError,
    ProfileNotFoundError,
    VerificationError,
)
from profileshot.core.rate_limiter import RateLimitWindow
from profileshot.services.auth import AuthManager
from profileshot.services.browser import RenderMode
from profileshot.services.challenge import ChallengeDetector
from profileshot.services.profile import (
    FetchResult,
    ProfileFetcher,
    normalize_profile_url,
)
from profileshot.services.resolver import ChallengeResolver
from profileshot.services.session import SessionManager, SessionState
from profileshot.services.storage import timestamped_path

from conftest import PNG_BYTES, PROFILE_URL, make_settings


def solve_on_second_poll(clock, site, interval=10):
    polls = []

    def hook(seconds):
        if seconds == interval:
            polls.append(seconds)
            if len(polls) == 2:
                site.solve()

    clock.hooks.append(hook)


def build_fetcher(provider, settings, clock, delay=0.0):
    detector = ChallengeDetector()
    resolver = ChallengeResolver(provider, detector, settings, sleep=clock.sleep)
    auth = AuthManager(detector, resolver, settings, sleep=clock.sleep)
    session = SessionManager(provider, auth, resolver, settings)
    window = RateLimitWindow(delay, clock=clock.time, sleep=clock.sleep)
    return ProfileFetcher(session, detector, window, settings, sleep=clock.sleep)


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path, CHALLENGE_MAX_ATTEMPTS=4)


@pytest.fixture
def fetcher(provider, settings, clock):
    return build_fetcher(provider, settings, clock)


class TestNormalizeProfileUrl:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("https://www.linkedin.com/in/jane-doe", "https://www.linkedin.com/in/jane-doe"),
            ("http://www.linkedin.com/in/jane-doe", "https://www.linkedin.com/in/jane-doe"),
            ("  www.linkedin.com/in/jane-doe/ ", "https://www.linkedin.com/in/jane-doe/"),
            ("linkedin.com/in/jane-doe", "https://linkedin.com/in/jane-doe"),
        ],
    )
    def test_accepts(self, raw, expected):
        assert normalize_profile_url(raw) == expected

    @pytest.mark.parametrize("raw", ["jane-doe", "https://example.com/in/jane", "linkedin.com"])
    def test_rejects_non_profile_urls(self, raw):
        with pytest.raises(InvalidInputError, match="valid LinkedIn profile URL"):
            normalize_profile_url(raw)

    @pytest.mark.parametrize("raw", ["", "   ", None])
    def test_missing(self, raw):
        with pytest.raises(InvalidInputError, match="Missing profile URL"):
            normalize_profile_url(raw)


class TestFetchResult:
    def test_success_dict(self):
        result = FetchResult(success=True, screenshot_path="/tmp/p.png")
        assert result.to_dict() == {"success": True, "screenshotPath": "/tmp/p.png"}
        result.raise_for_error()

    def test_failure_raises_original_error(self):
        result = FetchResult.failed(ProfileNotFoundError("gone"))
        assert result.to_dict() == {"success": False, "error": "gone"}
        with pytest.raises(ProfileNotFoundError):
            result.raise_for_error()


class TestScreenshotPaths:
    def test_timestamped_path(self, tmp_path):
        path = timestamped_path(tmp_path / "shots", "profile", "jpeg")
        assert path.parent.is_dir()
        assert re.fullmatch(r"profile-\d{13}\.jpeg", path.name)


class TestValidation:
    @pytest.mark.asyncio
    async def test_invalid_url_never_touches_session(self, settings):
        session = MagicMock()
        session.get_page = AsyncMock()
        session.ensure_login = AsyncMock()
        limiter = MagicMock()
        limiter.acquire = AsyncMock()
        fetcher = ProfileFetcher(session, ChallengeDetector(), limiter, settings)

        result = await fetcher.fetch_profile_screenshot("https://example.com/jane")

        assert not result.success
        assert isinstance(result.exception, InvalidInputError)
        assert result.exception.status_code == 400
        session.get_page.assert_not_awaited()
        limiter.acquire.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unexpected_error_is_wrapped(self, settings):
        session = MagicMock()
        session.page = None
        session.get_page = AsyncMock(side_effect=RuntimeError("browser exploded"))
        limiter = MagicMock()
        limiter.acquire = AsyncMock(return_value=0)
        fetcher = ProfileFetcher(session, ChallengeDetector(), limiter, settings)

        result = await fetcher.fetch_profile_screenshot(PROFILE_URL)

        assert isinstance(result.exception, FetchError)
        assert result.error == "browser exploded"


class TestScenarios:
    @pytest.mark.asyncio
    async def test_cold_start_captures_profile(self, fetcher, provider, settings):
        result = await fetcher.fetch_profile_screenshot(PROFILE_URL)

        assert result.success, result.error
        path = Path(result.screenshot_path)
        assert path.parent == Path(settings.SCREENSHOTS_DIR)
        assert re.fullmatch(r"profile-\d+\.png", path.name)
        assert path.read_bytes() == PNG_BYTES
        assert provider.created == [RenderMode.UNATTENDED]
        assert fetcher.session.state is SessionState.READY

    @pytest.mark.asyncio
    async def test_back_to_back_requests_are_spaced(self, provider, settings, clock):
        fetcher = build_fetcher(provider, settings, clock, delay=72.0)

        first = await fetcher.fetch_profile_screenshot(PROFILE_URL)
        second = await fetcher.fetch_profile_screenshot(PROFILE_URL)

        assert first.success and second.success
        assert clock.sleeps == [pytest.approx(72.0)]
        assert provider.created == [RenderMode.UNATTENDED]

    @pytest.mark.asyncio
    async def test_concurrent_requests_share_session(self, provider, settings, clock):
        fetcher = build_fetcher(provider, settings, clock, delay=72.0)

        results = await asyncio.gather(
            fetcher.fetch_profile_screenshot(PROFILE_URL),
            fetcher.fetch_profile_screenshot(PROFILE_URL),
        )

        assert all(r.success for r in results)
        assert provider.created == [RenderMode.UNATTENDED]
        assert pytest.approx(72.0) in clock.sleeps

    @pytest.mark.asyncio
    async def test_challenge_on_profile_is_resolved(self, fetcher, provider, site, clock):
        site.challenge_on_profile = True
        solve_on_second_poll(clock, site)

        result = await fetcher.fetch_profile_screenshot(PROFILE_URL)

        assert result.success, result.error
        assert provider.modes == [RenderMode.INTERACTIVE, RenderMode.UNATTENDED]
        # two polls, resolver settle, fetcher settle
        assert clock.sleeps == [10, 10, 2, 2]
        assert provider.open_contexts == 1
        page = fetcher.session.page
        assert page.url == PROFILE_URL
        # the relaunched page is navigated back to the profile exactly once
        assert page.goto_calls == [PROFILE_URL]

    @pytest.mark.asyncio
    async def test_unresolved_challenge_fails_and_resets(self, fetcher, provider, site, clock):
        site.challenge_on_profile = True

        result = await fetcher.fetch_profile_screenshot(PROFILE_URL)

        assert not result.success
        assert isinstance(result.exception, ChallengeTimeoutError)
        assert result.exception.status_code == 500
        assert clock.sleeps == [10, 10, 10]
        assert fetcher.session.state is SessionState.UNINITIALIZED
        assert provider.open_contexts == 0

    @pytest.mark.asyncio
    async def test_unresolved_login_challenge_leaves_session_resettable(
        self, fetcher, provider, site, clock
    ):
        site.challenge_on_login = True

        result = await fetcher.fetch_profile_screenshot(PROFILE_URL)

        assert isinstance(result.exception, ChallengeTimeoutError)
        assert result.exception.status_code == 500
        assert clock.sleeps == [10, 10, 10]
        assert fetcher.session.state is SessionState.UNINITIALIZED
        assert provider.open_contexts == 0

        # the operator finishes late; the next request starts from scratch
        site.solve()
        retry = await fetcher.fetch_profile_screenshot(PROFILE_URL)

        assert retry.success, retry.error
        assert provider.created == [
            RenderMode.UNATTENDED,
            RenderMode.INTERACTIVE,
            RenderMode.UNATTENDED,
        ]
        assert fetcher.session.state is SessionState.READY

    @pytest.mark.asyncio
    async def test_login_challenge_then_failed_check_keeps_relaunched_page(
        self, fetcher, provider, site, clock
    ):
        site.challenge_on_login = True
        clock.hooks.append(lambda seconds: site.solve() if seconds == 10 else None)
        auth = fetcher.session.auth
        real_verify = auth.verify_login
        checks = []

        async def sign_in_form_once(page):
            checks.append(page)
            if len(checks) == 1:
                raise VerificationError("Sign-in form present (.sign-in-form)")
            return await real_verify(page)

        auth.verify_login = sign_in_form_once

        result = await fetcher.fetch_profile_screenshot(PROFILE_URL)

        assert result.success, result.error
        # poll, resolver settle, login retry backoff
        assert clock.sleeps == [10, 2, 5.0]
        assert provider.created == [
            RenderMode.UNATTENDED,
            RenderMode.INTERACTIVE,
            RenderMode.UNATTENDED,
        ]
        assert provider.open_contexts == 1

    @pytest.mark.asyncio
    async def test_missing_profile_is_not_found(self, fetcher, site, settings):
        site.profile_missing = True

        result = await fetcher.fetch_profile_screenshot(PROFILE_URL)

        assert isinstance(result.exception, ProfileNotFoundError)
        assert result.exception.status_code == 404
        debug = list(Path(settings.DEBUG_DIR).glob("profile-error-*.png"))
        assert len(debug) == 1

    @pytest.mark.asyncio
    async def test_redirect_away_from_profile_fails_detection(self, fetcher, site, clock):
        site._profile = lambda page, url: page.show(
            "https://www.linkedin.com/authwall?trk=public_profile", text="Join now"
        )

        result = await fetcher.fetch_profile_screenshot(PROFILE_URL)

        assert isinstance(result.exception, FetchError)
        assert result.error == "Failed to detect profile content after 3 attempts"
        assert clock.sleeps == [3.0, 3.0]

    @pytest.mark.asyncio
    async def test_closed_browser_between_requests_recovers(self, fetcher, provider):
        assert (await fetcher.fetch_profile_screenshot(PROFILE_URL)).success
        fetcher.session.page.closed = True

        result = await fetcher.fetch_profile_screenshot(PROFILE_URL)

        assert result.success, result.error
        assert len(provider.created) == 2

    @pytest.mark.asyncio
    async def test_page_closing_mid_capture_is_rebuilt_and_retried(
        self, fetcher, provider, site, settings
    ):
        original_profile = site._profile
        crashed = []

        def profile_then_crash(page, url):
            original_profile(page, url)
            if not crashed:
                crashed.append(page)
                page.closed = True

        site._profile = profile_then_crash

        result = await fetcher.fetch_profile_screenshot(PROFILE_URL)

        assert result.success, result.error
        assert provider.created == [RenderMode.UNATTENDED, RenderMode.UNATTENDED]
        assert provider.open_contexts == 1
        assert fetcher.session.page is not crashed[0]
        assert not list(Path(settings.DEBUG_DIR).glob("profile-error-*.png"))

    @pytest.mark.asyncio
    async def test_browser_that_keeps_dying_fails_after_one_rebuild(
        self, fetcher, provider, site
    ):
        original_profile = site._profile

        def profile_then_crash(page, url):
            original_profile(page, url)
            page.closed = True

        site._profile = profile_then_crash

        result = await fetcher.fetch_profile_screenshot(PROFILE_URL)

        assert not result.success
        assert isinstance(result.exception, FetchError)
        assert result.exception.status_code == 500
        assert result.error == "Browser session was lost and could not be rebuilt"
        assert len(provider.created) == 2

    @pytest.mark.asyncio
    async def test_shutdown_closes_browser(self, fetcher, provider):
        await fetcher.fetch_profile_screenshot(PROFILE_URL)
        await fetcher.shutdown()
        assert provider.shut_down
