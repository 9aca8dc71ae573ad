"""Per-request correlation id.

A screenshot request can run for minutes (rate-limit wait, login, operator
challenge hand-off), and the session logs a lot while it does. The id set
here rides along in a ContextVar so every one of those records can be tied
back to the request, and it is echoed back as ``X-Request-ID``.
"""

import contextvars
import re
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

HEADER = "X-Request-ID"
_MAX_LENGTH = 64
_SAFE_ID = re.compile(r"^[A-Za-z0-9._:-]+$")

request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "request_id", default=""
)


def _incoming_id(request: Request) -> str:
    """Caller-supplied id if it is safe to log, else a fresh one."""
    supplied = request.headers.get(HEADER, "").strip()
    if supplied and len(supplied) <= _MAX_LENGTH and _SAFE_ID.match(supplied):
        return supplied
    return uuid.uuid4().hex


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        rid = _incoming_id(request)
        token = request_id_var.set(rid)
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)
        response.headers[HEADER] = rid
        return response


def get_request_id() -> str:
    """Current request ID, or "-" outside of a request."""
    return request_id_var.get() or "-"
