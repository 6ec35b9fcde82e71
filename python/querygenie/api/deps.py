"""FastAPI dependencies for route handlers.

Common dependencies like database sessions, the email sender and the
caller's network identity for audit records.
"""

from fastapi import Request

from querygenie.db.session import get_db, get_session_factory
from querygenie.services.audit import RequestMeta
from querygenie.services.email import EmailSender

__all__ = ["get_db", "get_email_sender", "get_request_meta", "get_session_factory"]


def get_email_sender(request: Request) -> EmailSender:
    """Get the shared email sender from app state.

    The sender is chosen once at app creation: Resend when RESEND_API_KEY is
    set, otherwise the log-only sender.
    """
    return request.app.state.email_sender


def get_request_meta(request: Request) -> RequestMeta:
    """IP address and user agent of the caller, for audit entries."""
    return RequestMeta.from_request(request)
