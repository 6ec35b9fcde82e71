"""X-Request-ID middleware for request correlation and access logging.

This middleware:
- Accepts a caller-supplied request ID when it is well-formed, else mints one
- Attaches the ID and the client network identity to request state
- Binds request_id, path (secrets masked) and method into the logging context
- Echoes the ID in response headers
- Emits one access log entry per request

Middleware Ordering:
- Must be added LAST so it runs FIRST (outermost)
- Auth failures therefore still carry X-Request-ID
"""

import re
import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from querygenie.logging import (
    clear_request_context,
    get_logger,
    set_request_context,
    set_route_template,
)

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LENGTH = 128

# Alphanumeric, dots, hyphens, underscores
VALID_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,128}$")

# Paths whose segments carry bearer secrets; the secret is replaced before logging
SECRET_PATH_PATTERNS = (re.compile(r"^(/invitations/)[^/]+(/accept/?)$"),)

logger = get_logger(__name__)


def is_valid_request_id(value: str) -> bool:
    """Return True if value may be used verbatim as a request ID."""
    if len(value.encode("utf-8")) > MAX_REQUEST_ID_LENGTH:
        return False
    return bool(VALID_REQUEST_ID_PATTERN.match(value))


def normalize_request_id(value: str) -> str:
    """Canonicalize UUID-shaped IDs to lowercase; keep other IDs as-is."""
    try:
        return str(uuid.UUID(value))
    except ValueError:
        return value


def loggable_path(path: str) -> str:
    """Return the request path with secret-bearing segments replaced by a placeholder."""
    for pattern in SECRET_PATH_PATTERNS:
        path = pattern.sub(r"\1{token}\2", path)
    return path


def generate_request_id() -> str:
    """Generate a new UUID v4 request ID."""
    return str(uuid.uuid4())


def client_ip(request: Request) -> str | None:
    """Best-effort client IP for audit records.

    Prefers the first hop of X-Forwarded-For, then X-Real-IP, then the
    socket peer.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client:
        return request.client.host
    return None


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Middleware for X-Request-ID handling and access logging.

    Args:
        app: The ASGI application.
        log_requests: If True, log access entries for each request.
    """

    def __init__(self, app, log_requests: bool = True):
        super().__init__(app)
        self.log_requests = log_requests

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        start_time = time.monotonic()

        incoming_id = request.headers.get(REQUEST_ID_HEADER)
        if incoming_id and is_valid_request_id(incoming_id):
            request_id = normalize_request_id(incoming_id)
        else:
            request_id = generate_request_id()

        request.state.request_id = request_id
        request.state.client_ip = client_ip(request)
        request.state.user_agent = request.headers.get("user-agent")

        set_request_context(request_id, path=loggable_path(request.url.path), method=request.method)

        try:
            response = await call_next(request)

            route = request.scope.get("route")
            if route is not None:
                set_route_template(getattr(route, "path", None))

            viewer = getattr(request.state, "viewer", None)
            if viewer is not None:
                set_request_context(request_id, user_id=str(viewer.user_id))

            response.headers[REQUEST_ID_HEADER] = request_id

            if self.log_requests:
                duration_ms = (time.monotonic() - start_time) * 1000
                logger.info(
                    "request_completed",
                    status_code=response.status_code,
                    duration_ms=round(duration_ms, 2),
                )

            return response

        except Exception:
            # unhandled_exception_handler renders the response
            logger.error("request_failed")
            raise

        finally:
            clear_request_context()


def get_request_id_from_request(request: Request) -> str | None:
    """Get the request ID from request state."""
    return getattr(request.state, "request_id", None)
