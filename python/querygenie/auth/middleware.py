"""Authentication middleware for FastAPI.

Provides:
- AuthMiddleware: bearer token (+ internal header in staging/prod) verification
- Viewer: the authenticated caller identity
- get_viewer: dependency for route handlers
"""

import hmac
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from fastapi import Depends, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from querygenie.auth.verifier import TokenVerifier
from querygenie.errors import ApiError, ApiErrorCode
from querygenie.middleware.request_id import loggable_path
from querygenie.responses import error_response

logger = logging.getLogger(__name__)

AUTHORIZATION_HEADER = "authorization"
INTERNAL_HEADER = "x-querygenie-internal"

# Paths that don't require authentication
PUBLIC_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}

BootstrapCallback = Callable[[UUID, str | None, str | None], None]


@dataclass
class Viewer:
    """Authenticated viewer identity.

    Attributes:
        user_id: The viewer's user ID (JWT sub claim).
        email: Lowercased email claim, when the token carries one.
    """

    user_id: UUID
    email: str | None = None


def _email_from_claims(claims: dict[str, Any]) -> str | None:
    email = claims.get("email")
    if isinstance(email, str) and email.strip():
        return email.strip().lower()
    return None


class AuthMiddleware(BaseHTTPMiddleware):
    """Authentication middleware.

    Order of checks:
    1. Skip if public path
    2. Verify internal header (if required)
    3. Extract bearer token
    4. Verify token via TokenVerifier
    5. Bootstrap the users row (id, email, name) via callback
    6. Attach Viewer to request state
    """

    def __init__(
        self,
        app: ASGIApp,
        verifier: TokenVerifier,
        requires_internal_header: bool = False,
        internal_secret: str | None = None,
        bootstrap_callback: BootstrapCallback | None = None,
    ):
        super().__init__(app)
        self.verifier = verifier
        self.requires_internal_header = requires_internal_header
        self.internal_secret = internal_secret
        self.bootstrap_callback = bootstrap_callback

    async def dispatch(self, request: Request, call_next) -> JSONResponse:
        if request.url.path in PUBLIC_PATHS:
            return await call_next(request)

        if self.requires_internal_header:
            failure = self._verify_internal_header(request)
            if failure:
                return failure

        token = self._extract_bearer_token(request)
        if token is None:
            return self._error(ApiErrorCode.E_UNAUTHENTICATED, "Authentication required", 401)

        try:
            claims = self.verifier.verify(token)
        except ApiError as e:
            return self._error(e.code, e.message, e.status_code)

        user_id = UUID(claims["sub"])
        email = _email_from_claims(claims)

        if self.bootstrap_callback:
            try:
                self.bootstrap_callback(user_id, email, claims.get("name"))
            except Exception:
                logger.exception("bootstrap_failed", extra={"user_id": str(user_id)})
                return self._error(ApiErrorCode.E_INTERNAL, "Internal server error", 500)

        request.state.viewer = Viewer(user_id=user_id, email=email)
        return await call_next(request)

    def _verify_internal_header(self, request: Request) -> JSONResponse | None:
        """Constant-time check of the internal header. Returns an error response on failure."""
        header_value = request.headers.get(INTERNAL_HEADER)

        if not self.internal_secret:
            logger.error("internal_secret_not_configured")
            return self._error(ApiErrorCode.E_INTERNAL, "Internal server error", 500)

        if header_value is None or not hmac.compare_digest(
            header_value.encode(), self.internal_secret.encode()
        ):
            logger.warning(
                "auth_failure",
                extra={
                    "reason": "internal_header_invalid",
                    "request_path": loggable_path(request.url.path),
                },
            )
            return self._error(ApiErrorCode.E_INTERNAL_ONLY, "Internal API access required", 403)

        return None

    def _extract_bearer_token(self, request: Request) -> str | None:
        """Return the bearer token, or None when the header is missing or malformed."""
        auth_header = request.headers.get(AUTHORIZATION_HEADER)
        if not auth_header or not auth_header.lower().startswith("bearer "):
            logger.warning(
                "auth_failure",
                extra={
                    "reason": "missing_or_malformed_header",
                    "request_path": loggable_path(request.url.path),
                },
            )
            return None

        token = auth_header[7:].strip()
        return token or None

    def _error(self, code: ApiErrorCode, message: str, status_code: int) -> JSONResponse:
        return JSONResponse(status_code=status_code, content=error_response(code, message))


def get_viewer(request: Request) -> Viewer:
    """FastAPI dependency to get the authenticated viewer.

    Raises:
        ApiError: If viewer is not set (middleware didn't run or path is public).
    """
    viewer = getattr(request.state, "viewer", None)
    if viewer is None:
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Authentication required")
    return viewer


# Type alias for dependency injection
ViewerDep = Depends(get_viewer)
