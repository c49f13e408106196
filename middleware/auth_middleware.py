"""
Authentication logging middleware.
Flags protected requests that arrive without a bearer token; actual validation
is done by the FastAPI dependencies in auth/dependencies.py.
"""
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from typing import List, Optional

from core.logger import logger

# Exact paths that never need a token
PUBLIC_PATHS: List[str] = [
    "/",
    "/health",
    "/docs",
    "/openapi.json",
    "/redoc",
    "/auth/register",
    "/auth/verify-email",
    "/auth/login",
    "/auth/forgot-password",
    "/auth/request-password-reset",
    "/auth/reset-password",
    "/auth/confirm-password-change",
    "/auth/resend-otp",
    "/auth/resend-verification",
]

# Prefixes that never need a bearer header (the websocket carries its token in the query)
PUBLIC_PREFIXES: List[str] = [
    "/docs/",
    "/ws",
]


def is_public_path(path: str, public_paths: Optional[List[str]] = None) -> bool:
    paths = public_paths if public_paths is not None else PUBLIC_PATHS
    if path in paths or path.rstrip("/") in paths:
        return True
    return any(path.startswith(prefix) for prefix in PUBLIC_PREFIXES)


class AuthRequiredMiddleware(BaseHTTPMiddleware):
    """
    Log requests to protected routes that carry no Authorization header.

    Does not block: the route dependencies answer with a proper 401.
    """

    def __init__(self, app, public_paths: Optional[List[str]] = None):
        super().__init__(app)
        self.public_paths = public_paths if public_paths is not None else PUBLIC_PATHS

    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        # OPTIONS is the CORS preflight
        if request.method != "OPTIONS" and not is_public_path(path, self.public_paths):
            if not request.headers.get("authorization"):
                client = request.client.host if request.client else "unknown"
                logger.warning(f"Request without authentication headers: {request.method} {path} from {client}")

        return await call_next(request)
