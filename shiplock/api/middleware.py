from __future__ import annotations

import logging
import re
import time
from typing import Callable, Optional
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

log = logging.getLogger("shiplock.api")

_SAFE_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{1,128}$")

# Path segments after these prefixes are token ids; logged as a placeholder
# so access logs do not become an index of which shipments hold secrets.
_REDACTED_PREFIXES = ("/secrets/",)


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Attach X-Request-ID to every response.

    Security notes:
    - Client-supplied ids are accepted only if short and made of safe
      characters; otherwise a fresh one is generated (log injection).

    """

    header = "X-Request-ID"

    async def dispatch(self, request: Request, call_next: Callable):
        supplied = request.headers.get(self.header) or ""
        request_id = supplied if _SAFE_REQUEST_ID.fullmatch(supplied) else uuid4().hex
        request.state.request_id = request_id
        response: Response = await call_next(request)
        response.headers[self.header] = request_id
        return response


def _log_path(path: str) -> str:
    for prefix in _REDACTED_PREFIXES:
        if path.startswith(prefix) and path != prefix + "generate":
            return prefix + ":token_id"
    return path


class AccessLogMiddleware(BaseHTTPMiddleware):
    """One structured api_request log line per request.

    Security notes:
    - Never logs bodies (they carry plaintext secrets on POST /secrets).

    """

    async def dispatch(self, request: Request, call_next: Callable):
        started = time.monotonic()
        status_code: Optional[int] = None
        try:
            response: Response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            log.info(
                "api_request",
                extra={
                    "request_id": getattr(request.state, "request_id", None),
                    "actor_id": getattr(request.state, "actor_id", None),
                    "method": request.method,
                    "path": _log_path(request.url.path),
                    "status_code": status_code,
                    "duration_ms": int((time.monotonic() - started) * 1000),
                },
            )
