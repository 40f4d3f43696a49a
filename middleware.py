from typing import Optional

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware

from constants import RATE_LIMIT, RATE_LIMIT_ENABLED, RATE_LIMIT_STORAGE_URI


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add the usual hardening headers to every HTTP response."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "0"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Cross-Origin-Resource-Policy"] = "same-origin"
        return response


def build_limiter(rate_limit: Optional[str] = None, enabled: Optional[bool] = None) -> Limiter:
    """Per-client-IP limiter applied to every HTTP route by SlowAPIMiddleware."""
    return Limiter(
        key_func=get_remote_address,
        default_limits=[rate_limit or RATE_LIMIT],
        storage_uri=RATE_LIMIT_STORAGE_URI,
        enabled=RATE_LIMIT_ENABLED if enabled is None else enabled,
    )
