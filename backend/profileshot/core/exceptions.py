"""Application error taxonomy.

Every failure that can leave the service is an ``AppError`` carrying the
HTTP status it maps to, a short ``error`` label and a human readable
``message``. The FastAPI handler registered in ``profileshot.main`` turns
them into ``{"error": ..., "message": ...}`` bodies.
"""

from fastapi import Request
from fastapi.responses import JSONResponse

# Phrases Playwright uses when the page, context or browser behind a handle
# is gone. Matched case-insensitively against the exception text.
_CLOSED_PHRASES = (
    "target page, context or browser has been closed",
    "target closed",
    "session closed",
    "browser has been closed",
    "context has been closed",
    "page has been closed",
    "connection closed",
    "detached frame",
    "frame was detached",
    "execution context was destroyed",
)


class AppError(Exception):
    status_code = 500
    error = "Screenshot operation failed"

    def __init__(self, message: str = "", *, status_code: int | None = None):
        self.message = message or self.error
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.error, "message": self.message}


class InvalidInputError(AppError):
    status_code = 400
    error = "Invalid LinkedIn URL"


class MissingCredentialsError(AppError):
    status_code = 500
    error = "Missing credentials"


class LoginError(AppError):
    status_code = 500
    error = "Login failed"


class VerificationError(AppError):
    status_code = 500
    error = "Login verification failed"


class ChallengeTimeoutError(AppError):
    status_code = 500
    error = "Challenge not resolved"

    def __init__(self, message: str = "", *, attempts: int = 0):
        self.attempts = attempts
        super().__init__(message)


class ProfileNotFoundError(AppError):
    status_code = 404
    error = "Profile not found"


class SessionInvalidError(AppError):
    status_code = 500
    error = "Browser session lost"


class FetchError(AppError):
    status_code = 500
    error = "Screenshot operation failed"


def is_session_closed_error(exc: BaseException) -> bool:
    """True if *exc* means the underlying page/context/browser is gone."""
    if isinstance(exc, SessionInvalidError):
        return True
    text = str(exc).lower()
    return any(phrase in text for phrase in _CLOSED_PHRASES)


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
