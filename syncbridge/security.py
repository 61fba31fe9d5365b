"""HTTP Basic auth for the admin API.

Auth is opt-in (AUTH_ENABLED). When on, every route except the health check requires the
configured credentials.
"""

from __future__ import annotations

import base64
import binascii
import logging
import secrets
from dataclasses import dataclass
from typing import Iterable

from fastapi import FastAPI
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

PUBLIC_PATHS = frozenset({"/health"})


@dataclass(frozen=True)
class BasicAuthCredentials:
    username: str
    password: str

    def matches(self, username: str, password: str) -> bool:
        # Evaluate both comparisons so timing does not reveal which one failed.
        user_ok = secrets.compare_digest(self.username.encode("utf-8"), username.encode("utf-8"))
        pass_ok = secrets.compare_digest(self.password.encode("utf-8"), password.encode("utf-8"))
        return user_ok and pass_ok


def _parse_basic_auth_header(header_value: str | None) -> BasicAuthCredentials | None:
    """Decode `Authorization: Basic <b64(user:pass)>`; None for anything else."""
    if not header_value:
        return None

    scheme, _, token = header_value.strip().partition(" ")
    token = token.strip()
    if scheme.lower() != "basic" or not token:
        return None

    try:
        decoded = base64.b64decode(token, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None

    if ":" not in decoded:
        return None
    username, _, password = decoded.partition(":")
    return BasicAuthCredentials(username=username, password=password)


class BasicAuthMiddleware(BaseHTTPMiddleware):
    """Reject requests lacking the configured Basic credentials"""

    def __init__(
        self,
        app,
        *,
        username: str,
        password: str,
        allow_paths: Iterable[str] | None = None,
        realm: str = "SyncBridge",
    ):
        super().__init__(app)
        self._expected = BasicAuthCredentials(username=username, password=password)
        self._allow_paths = frozenset(allow_paths) if allow_paths is not None else PUBLIC_PATHS
        self._challenge = f'Basic realm="{realm}", charset="UTF-8"'

    def _challenge_response(self) -> Response:
        return Response(
            content="Unauthorized",
            status_code=401,
            headers={"WWW-Authenticate": self._challenge},
        )

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self._allow_paths:
            return await call_next(request)

        creds = _parse_basic_auth_header(request.headers.get("Authorization"))
        if creds is None or not self._expected.matches(creds.username, creds.password):
            logger.debug(f"Rejected unauthenticated request to {request.url.path}")
            return self._challenge_response()

        return await call_next(request)


def install_basic_auth(app: FastAPI, settings) -> bool:
    """Add the middleware when auth is enabled; returns whether it was installed"""
    if not settings.auth_enabled:
        return False
    if not settings.auth_username or not settings.auth_password:
        raise RuntimeError("AUTH_ENABLED=true requires AUTH_USERNAME and AUTH_PASSWORD to be set")
    app.add_middleware(
        BasicAuthMiddleware,
        username=settings.auth_username,
        password=settings.auth_password,
        allow_paths=PUBLIC_PATHS,
    )
    logger.info("HTTP Basic auth enabled for the admin API")
    return True
