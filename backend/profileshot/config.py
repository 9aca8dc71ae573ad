import logging
from pathlib import Path
from typing import List

from pydantic_settings import BaseSettings

_logger = logging.getLogger(__name__)

_DEFAULT_BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--disable-gpu",
    "--disable-blink-features=AutomationControlled",
    "--disable-features=IsolateOrigins,site-per-process",
    "--disable-site-isolation-trials",
    "--disable-web-security",
    "--disable-notifications",
    "--no-first-run",
    "--no-default-browser-check",
    "--password-store=basic",
    "--lang=en-US,en",
]


class Settings(BaseSettings):
    # App
    APP_NAME: str = "ProfileShot"
    APP_VERSION: str = "0.1.0"

    # Credentials (only required when a login is actually attempted)
    LINKEDIN_EMAIL: str = ""
    LINKEDIN_PASSWORD: str = ""

    # Session / storage
    SESSION_ID: str = "linkedin-session"
    USER_DATA_DIR: str = "user_data"
    SCREENSHOTS_DIR: str = "screenshots"
    DEBUG_DIR: str = "debug"
    LANDMARKS_FILE: str = ""  # optional JSON override for page landmarks

    # Browser
    BROWSER_HEADLESS: bool = True
    BROWSER_CHANNEL: str = ""  # e.g. "chrome" to use an installed Chrome
    BROWSER_ARGS: List[str] = _DEFAULT_BROWSER_ARGS
    VIEWPORT_WIDTH: int = 1280
    VIEWPORT_HEIGHT: int = 900
    RANDOMIZE_VIEWPORT: bool = True

    # Timeouts
    DEFAULT_TIMEOUT: int = 30000  # ms
    NAVIGATION_TIMEOUT: int = 60000  # ms
    PROFILE_NAVIGATION_TIMEOUT: int = 10000  # ms
    PAGE_LOAD_WAIT: int = 5000  # ms

    # Rate limiting (minimum gap between profile fetches)
    PROFILE_REQUEST_DELAY_MS: int = 72000

    # Login
    LOGIN_MAX_ATTEMPTS: int = 3
    LOGIN_RETRY_DELAY: float = 5.0  # seconds
    TYPING_DELAY_MS: int = 100
    LOGIN_AMBIGUOUS_IS_AUTHENTICATED: bool = True

    # Challenge handling
    CHALLENGE_MAX_ATTEMPTS: int = 60
    CHALLENGE_POLL_INTERVAL: float = 10.0  # seconds
    CHALLENGE_SUBMIT_GRACE: float = 5.0  # seconds
    CHALLENGE_ERROR_PAUSE: float = 1.0  # seconds
    CHALLENGE_SETTLE_DELAY: float = 2.0  # seconds

    # Profile capture
    PROFILE_DETECT_ATTEMPTS: int = 3
    PROFILE_DETECT_DELAY: float = 3.0  # seconds
    SCREENSHOT_FULL_PAGE: bool = True
    SCREENSHOT_TYPE: str = "png"
    HUMAN_PACING: bool = True  # randomized pauses between page actions

    # Logging
    LOG_FORMAT: str = "json"  # "json" or "text"
    LOG_LEVEL: str = "INFO"

    # Metrics
    METRICS_ENABLED: bool = True

    # Sentry
    SENTRY_DSN: str = ""
    SENTRY_TRACES_SAMPLE_RATE: float = 0.1
    SENTRY_ENVIRONMENT: str = "production"

    def model_post_init(self, __context) -> None:
        if self.SCREENSHOT_TYPE not in ("png", "jpeg"):
            _logger.warning(
                "SCREENSHOT_TYPE=%s is not supported, falling back to png",
                self.SCREENSHOT_TYPE,
            )
            object.__setattr__(self, "SCREENSHOT_TYPE", "png")

    @property
    def profile_dir(self) -> Path:
        """Persistent browser profile directory for the configured session."""
        return Path(self.USER_DATA_DIR) / self.SESSION_ID

    @property
    def request_delay_seconds(self) -> float:
        return self.PROFILE_REQUEST_DELAY_MS / 1000

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
