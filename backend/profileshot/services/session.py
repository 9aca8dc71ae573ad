"""Owner of the process-wide authenticated browser session.

States:
- UNINITIALIZED: no context (initial, and after any reset)
- INITIALIZING: one shared initialization is in flight
- READY: context open, page live, login completed

Every caller that needs the page goes through ``get_page``; concurrent
callers during initialization all await the same in-flight task, so only
one browser context is ever launched for them. Whenever a page turns out
to be closed or detached the whole session is torn down and rebuilt.
"""

import asyncio
import enum
import logging
from typing import Optional

from playwright.async_api import BrowserContext, Page

from profileshot.config import Settings, settings as default_settings
from profileshot.core.exceptions import (
    SessionInvalidError,
    VerificationError,
    is_session_closed_error,
)
from profileshot.core.metrics import active_session, session_resets_total
from profileshot.services.auth import AuthManager
from profileshot.services.browser import LIVENESS_PROBE, BrowserProvider, RenderMode
from profileshot.services.resolver import ChallengeResolver

logger = logging.getLogger(__name__)


class SessionState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


class SessionManager:
    def __init__(
        self,
        provider: BrowserProvider,
        auth: AuthManager,
        resolver: ChallengeResolver,
        config: Optional[Settings] = None,
    ):
        self.provider = provider
        self.auth = auth
        self.resolver = resolver
        self._settings = config or default_settings
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None
        self._init_task: Optional[asyncio.Task] = None
        self.authenticated = False

    @property
    def state(self) -> SessionState:
        if self._page is not None and self.authenticated:
            return SessionState.READY
        if self._init_task is not None and not self._init_task.done():
            return SessionState.INITIALIZING
        return SessionState.UNINITIALIZED

    @property
    def page(self) -> Optional[Page]:
        """The current page. Only valid until the next session operation."""
        return self._page

    @property
    def context(self) -> Optional[BrowserContext]:
        return self._context

    async def _launch_and_login(self) -> None:
        context, page = await self.provider.create(RenderMode.UNATTENDED)
        self._context, self._page = context, page
        try:
            self._context, self._page = await self.auth.login(context, page)
        except BaseException:
            await self._teardown()
            raise

    async def _initialize(self) -> None:
        logger.info("Initializing browser session")
        try:
            await self._launch_and_login()
        except SessionInvalidError as exc:
            # Browser died during login (e.g. the challenge window was closed)
            logger.warning(f"Browser session lost during login ({exc}), relaunching once")
            session_resets_total.inc()
            await self._launch_and_login()
        self.authenticated = True
        active_session.set(1)
        logger.info("Browser session ready")

    async def init(self) -> None:
        """Bring the session to READY, sharing one initialization among callers."""
        if self.state is SessionState.READY:
            return
        if self._init_task is None or self._init_task.done():
            self._init_task = asyncio.ensure_future(self._initialize())
        task = self._init_task
        try:
            # shield: one caller being cancelled must not cancel the shared init
            await asyncio.shield(task)
        finally:
            if task.done() and self._init_task is task:
                self._init_task = None

    async def _probe(self) -> None:
        try:
            await self._page.evaluate(LIVENESS_PROBE)
        except Exception as exc:
            if is_session_closed_error(exc):
                raise SessionInvalidError(str(exc)) from exc
            raise

    async def get_page(self) -> Page:
        """Return a live page, rebuilding the session if the old one died."""
        await self.init()
        try:
            await self._probe()
        except SessionInvalidError:
            logger.info("Detected closed/detached page, resetting session")
            await self.reset_session()
            await self.init()
        return self._page

    async def _verify(self) -> bool:
        await self._probe()
        try:
            return await self.auth.verify_login(self._page)
        except VerificationError as exc:
            logger.info(f"Login verification failed: {exc}")
            return False

    async def ensure_login(self) -> None:
        """Make sure the session is still logged in, logging in again if not."""
        await self.init()
        try:
            if self.authenticated and await self._verify():
                return
            logger.info("Session is not authenticated, logging in again")
            self.authenticated = False
            active_session.set(0)
            try:
                self._context, self._page = await self.auth.login(
                    self._context, self._page
                )
            except SessionInvalidError:
                raise
            except BaseException:
                await self.reset_session()
                raise
            self.authenticated = True
            active_session.set(1)
        except SessionInvalidError:
            logger.info("Session lost while checking login, rebuilding")
            await self.reset_session()
            await self.init()

    async def resolve_challenge(self) -> Page:
        """Run the resolver on the session's own page and adopt the result."""
        try:
            self._context, self._page = await self.resolver.resolve(
                self._context, self._page
            )
        except BaseException:
            await self.reset_session()
            raise
        return self._page

    async def _teardown(self) -> None:
        self._context = None
        self._page = None
        self.authenticated = False
        active_session.set(0)
        await self.provider.close_all()

    async def reset_session(self) -> None:
        """Close every context and return to UNINITIALIZED."""
        session_resets_total.inc()
        await self._teardown()
        self._init_task = None

    async def shutdown(self) -> None:
        await self._teardown()
        await self.provider.shutdown()
