"""Shared fixtures and in-memory browser fakes.

No test launches a real browser. ``FakePage``/``FakeContext`` implement the
slice of the Playwright API the services use, and ``FakeSite`` scripts how
LinkedIn answers navigations (login form, feed, profiles, checkpoints).
"""

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from profileshot.config import Settings
from profileshot.services.browser import (
    CAPTURE_STORAGE_JS,
    LIVENESS_PROBE,
    RESTORE_STORAGE_JS,
)
from profileshot.services.session import SessionState

CLOSED_MESSAGE = "Target page, context or browser has been closed"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32

LOGIN_URL = "https://www.linkedin.com/login"
FEED_URL = "https://www.linkedin.com/feed/"
CHALLENGE_URL = "https://www.linkedin.com/checkpoint/challenge/AgHx1xYz"
PROFILE_URL = "https://www.linkedin.com/in/jane-doe"

LOGIN_SELECTORS = {
    'input[name="session_key"]',
    'input[name="session_password"]',
    'button[type="submit"]',
}


def make_settings(tmp_path: Path, **overrides) -> Settings:
    values = {
        "LINKEDIN_EMAIL": "operator@example.com",
        "LINKEDIN_PASSWORD": "hunter2",
        "USER_DATA_DIR": str(tmp_path / "user_data"),
        "SCREENSHOTS_DIR": str(tmp_path / "screenshots"),
        "DEBUG_DIR": str(tmp_path / "debug"),
        "HUMAN_PACING": False,
        "RANDOMIZE_VIEWPORT": False,
        "PROFILE_REQUEST_DELAY_MS": 0,
        "LANDMARKS_FILE": "",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class FakeClock:
    """Virtual time. ``sleep`` advances ``now`` and fires hooks, never blocks."""

    def __init__(self):
        self.now = 1000.0
        self.sleeps: list[float] = []
        self.hooks = []

    def time(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        for hook in list(self.hooks):
            hook(seconds)
        await asyncio.sleep(0)


class FakeElement:
    def __init__(self, visible: bool = True):
        self.visible = visible

    async def is_visible(self) -> bool:
        return self.visible


class FakeFrame:
    def __init__(self, url: str):
        self.url = url


class FakePage:
    def __init__(self, site=None, url: str = "about:blank"):
        self.site = site
        self.url = url
        self.selectors: set[str] = set()
        self.hidden: set[str] = set()
        self.text = ""
        self.page_title = ""
        self.frames: list[FakeFrame] = []
        self.closed = False
        self.session_storage: dict[str, str] = {}
        self.local_storage: dict[str, str] = {}
        self.evaluate_error: Exception | None = None
        self.navigation_timeout = False
        self.goto_calls: list[str] = []
        self.typed: dict[str, str] = {}
        self.clicked: list[str] = []
        self.screenshots: list[str] = []
        self.init_scripts: list[str] = []
        self.routes: list[str] = []
        self.handlers: dict[str, object] = {}
        self.extra_headers: dict[str, str] = {}
        self.reload_count = 0
        if site is not None:
            site.pages.append(self)

    def show(self, url: str, *, selectors=(), text: str = "", title: str = ""):
        self.url = url
        self.selectors = set(selectors)
        self.text = text
        self.page_title = title

    def _ensure_open(self):
        if self.closed:
            raise PlaywrightError(CLOSED_MESSAGE)

    def is_closed(self) -> bool:
        return self.closed

    async def close(self):
        self.closed = True

    async def goto(self, url: str, **kwargs):
        self._ensure_open()
        self.goto_calls.append(url)
        if self.site is not None:
            self.site.land(self, url)
        else:
            self.url = url

    async def reload(self, **kwargs):
        self._ensure_open()
        self.reload_count += 1
        if self.site is not None:
            self.site.land(self, self.url)

    async def query_selector(self, selector: str):
        self._ensure_open()
        if selector in self.selectors:
            return FakeElement(visible=selector not in self.hidden)
        return None

    async def inner_text(self, selector: str) -> str:
        self._ensure_open()
        return self.text

    async def title(self) -> str:
        self._ensure_open()
        return self.page_title

    async def evaluate(self, script: str, arg=None):
        self._ensure_open()
        if self.evaluate_error is not None:
            raise self.evaluate_error
        if script == LIVENESS_PROBE:
            return True
        if script == CAPTURE_STORAGE_JS:
            return {
                "sessionStorage": dict(self.session_storage),
                "localStorage": dict(self.local_storage),
            }
        if script == RESTORE_STORAGE_JS:
            self.session_storage.update(arg["sessionStorage"])
            self.local_storage.update(arg["localStorage"])
        return None

    async def wait_for_function(self, script: str, **kwargs):
        self._ensure_open()
        return True

    async def wait_for_load_state(self, state: str = "load", **kwargs):
        self._ensure_open()

    async def wait_for_selector(self, selector: str, **kwargs):
        self._ensure_open()
        if selector not in self.selectors:
            raise PlaywrightTimeoutError(f"Timeout waiting for selector {selector}")
        return FakeElement()

    async def fill(self, selector: str, value: str):
        self._ensure_open()
        self.typed[selector] = value

    async def type(self, selector: str, value: str, delay: float = 0):
        self._ensure_open()
        self.typed[selector] = self.typed.get(selector, "") + value

    async def click(self, selector: str, **kwargs):
        self._ensure_open()
        self.clicked.append(selector)

    @asynccontextmanager
    async def expect_navigation(self, **kwargs):
        yield
        if self.site is not None:
            self.site.submit(self)
        if self.navigation_timeout:
            raise PlaywrightTimeoutError("Timeout 60000ms exceeded while waiting for navigation")

    async def screenshot(self, path: str | None = None, **kwargs) -> bytes:
        self._ensure_open()
        if path:
            Path(path).write_bytes(PNG_BYTES)
            self.screenshots.append(path)
        return PNG_BYTES

    async def set_extra_http_headers(self, headers: dict):
        self.extra_headers.update(headers)

    async def add_init_script(self, script: str):
        self.init_scripts.append(script)

    async def route(self, pattern: str, handler):
        self.routes.append(pattern)

    def on(self, event: str, handler):
        self.handlers[event] = handler


class FakeContext:
    def __init__(self, page: FakePage | None = None):
        self.pages: list[FakePage] = [page] if page is not None else []
        self.cookie_jar: list[dict] = []
        self.cookie_error: Exception | None = None
        self.close_error: Exception | None = None
        self.closed = False
        self.close_calls = 0

    async def cookies(self):
        if self.closed:
            raise PlaywrightError(CLOSED_MESSAGE)
        if self.cookie_error is not None:
            raise self.cookie_error
        return [dict(c) for c in self.cookie_jar]

    async def add_cookies(self, cookies):
        self.cookie_jar.extend(dict(c) for c in cookies)

    async def new_page(self) -> FakePage:
        page = FakePage()
        self.pages.append(page)
        return page

    async def close(self):
        self.close_calls += 1
        if self.close_error is not None:
            raise self.close_error
        self.closed = True
        for page in self.pages:
            page.closed = True


class FakeSite:
    """Scripted LinkedIn: decides what a page shows after each navigation."""

    def __init__(self):
        self.logged_in = False
        self.reject_login = False
        self.challenge_on_login = False
        self.challenge_on_profile = False
        self.pending_challenge = False
        self.profile_missing = False
        self.pages: list[FakePage] = []

    def _login_form(self, page: FakePage):
        page.show(
            LOGIN_URL,
            selectors=LOGIN_SELECTORS,
            text="Sign in Stay updated on your professional world",
            title="LinkedIn Login, Sign in | LinkedIn",
        )

    def _feed(self, page: FakePage):
        page.show(
            FEED_URL,
            selectors={".global-nav", ".feed-identity-module"},
            text="Start a post",
            title="Feed | LinkedIn",
        )

    def _challenge(self, page: FakePage):
        page.show(
            CHALLENGE_URL,
            selectors={"#captcha-internal"},
            text="Let's do a quick security check",
            title="Security Verification | LinkedIn",
        )

    def _profile(self, page: FakePage, url: str):
        if self.profile_missing:
            page.show(
                url,
                selectors={".profile-unavailable", ".global-nav"},
                text="This profile is not available",
                title="LinkedIn",
            )
        else:
            page.show(
                url,
                selectors={"h1", ".pv-top-card", ".global-nav"},
                text="Jane Doe Experience Education",
                title="Jane Doe | LinkedIn",
            )

    def land(self, page: FakePage, url: str):
        if self.pending_challenge:
            self._challenge(page)
        elif "/login" in url or not self.logged_in:
            if self.logged_in:
                self._feed(page)
            else:
                self._login_form(page)
        elif "/in/" in url:
            if self.challenge_on_profile:
                self.challenge_on_profile = False
                self.pending_challenge = True
                self._challenge(page)
            else:
                self._profile(page, url)
        else:
            self._feed(page)

    def submit(self, page: FakePage):
        if self.reject_login:
            return
        if self.challenge_on_login:
            self.challenge_on_login = False
            self.pending_challenge = True
            self._challenge(page)
            return
        self.logged_in = True
        self._feed(page)

    def solve(self):
        """An operator completes the challenge in the open window."""
        self.pending_challenge = False
        self.logged_in = True
        for page in self.pages:
            if not page.closed and "checkpoint" in page.url:
                self._feed(page)


class FakeProvider:
    """Stands in for BrowserProvider; contexts are FakeContext/FakePage pairs."""

    def __init__(self, site: FakeSite | None = None):
        self.site = site or FakeSite()
        self.created: list = []
        self.modes: list = []
        self.open: list[FakeContext] = []
        self.create_error: Exception | None = None
        self.shut_down = False

    @property
    def open_contexts(self) -> int:
        return len(self.open)

    async def create(self, mode):
        await asyncio.sleep(0)
        if self.create_error is not None:
            raise self.create_error
        page = FakePage(self.site)
        context = FakeContext(page)
        self.created.append(mode)
        self.open.append(context)
        return context, page

    async def switch_mode(self, context, page, target):
        self.modes.append(target)
        url = page.url
        await self.destroy(context)
        new_context, new_page = await self.create(target)
        if url.startswith("http"):
            self.site.land(new_page, url)
        return new_context, new_page

    async def destroy(self, context):
        if context is None:
            return
        if context in self.open:
            self.open.remove(context)
        await context.close()

    async def close_all(self):
        for context in list(self.open):
            await self.destroy(context)

    async def shutdown(self):
        await self.close_all()
        self.shut_down = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def site():
    return FakeSite()


@pytest.fixture
def provider(site):
    return FakeProvider(site)


@pytest.fixture
def test_settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
def fetcher_stub():
    """Replaces the app's ProfileFetcher in API tests."""
    stub = MagicMock()
    stub.fetch_profile_screenshot = AsyncMock()
    stub.session = MagicMock()
    stub.session.state = SessionState.UNINITIALIZED
    stub.session.authenticated = False
    stub.session.provider.open_contexts = 0
    return stub


@pytest_asyncio.fixture
async def client(fetcher_stub):
    from profileshot.api.deps import get_profile_fetcher, get_session_manager
    from profileshot.main import app

    app.dependency_overrides[get_profile_fetcher] = lambda: fetcher_stub
    app.dependency_overrides[get_session_manager] = lambda: fetcher_stub.session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
