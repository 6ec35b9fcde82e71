"""Outbound email.

Two senders implement the EmailSender protocol:
- LogEmailSender: logs that an email would have been sent. Used in local
  and test, the only environments where RESEND_API_KEY may be unset. It
  never logs the body, which carries redemption links.
- ResendEmailSender: POSTs to the Resend HTTP API with httpx.

send() never raises on delivery failure; it logs and returns False.
Callers treat delivery as best-effort notification.
"""

from dataclasses import dataclass, field
from typing import Protocol

import httpx

from querygenie.config import Settings, get_settings
from querygenie.logging import get_logger
from querygenie.services.redact import hash_prefix

logger = get_logger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"

INVITATION_SUBJECT = "You've been invited to join a QueryGenie workspace"


@dataclass
class EmailMessage:
    to: str
    subject: str
    text: str
    html: str | None = None
    tags: dict[str, str] = field(default_factory=dict)


class EmailSender(Protocol):
    def send(self, message: EmailMessage) -> bool: ...


class LogEmailSender:
    """Sender that only logs metadata. Nothing is kept after send() returns."""

    def send(self, message: EmailMessage) -> bool:
        logger.info(
            "email_logged",
            to_hash_prefix=hash_prefix(message.to),
            subject=message.subject,
            template=message.tags.get("template"),
        )
        return True


class ResendEmailSender:
    """Sender backed by the Resend API."""

    def __init__(
        self,
        api_key: str,
        from_address: str,
        timeout_s: float = 10.0,
        client: httpx.Client | None = None,
    ):
        self.api_key = api_key
        self.from_address = from_address
        self.timeout_s = timeout_s
        self._client = client

    def send(self, message: EmailMessage) -> bool:
        payload: dict = {
            "from": self.from_address,
            "to": [message.to],
            "subject": message.subject,
            "text": message.text,
        }
        if message.html:
            payload["html"] = message.html
        if message.tags:
            payload["tags"] = [{"name": k, "value": v} for k, v in message.tags.items()]

        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            if self._client is not None:
                response = self._client.post(
                    RESEND_API_URL, json=payload, headers=headers, timeout=self.timeout_s
                )
            else:
                with httpx.Client(timeout=self.timeout_s) as client:
                    response = client.post(RESEND_API_URL, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "email_send_failed",
                to_hash_prefix=hash_prefix(message.to),
                status_code=e.response.status_code,
            )
            return False
        except httpx.HTTPError as e:
            logger.error(
                "email_send_failed",
                to_hash_prefix=hash_prefix(message.to),
                error_type=type(e).__name__,
            )
            return False

        logger.info(
            "email_sent",
            to_hash_prefix=hash_prefix(message.to),
            template=message.tags.get("template"),
        )
        return True


def create_email_sender(settings: Settings | None = None) -> EmailSender:
    """Pick the sender for the current configuration."""
    settings = settings or get_settings()
    if settings.resend_api_key:
        return ResendEmailSender(
            api_key=settings.resend_api_key,
            from_address=settings.email_from,
            timeout_s=settings.email_timeout_s,
        )
    return LogEmailSender()


def build_invitation_email(
    to: str,
    invite_url: str,
    workspace_name: str,
    role: str,
    inviter_name: str | None,
    personal_message: str | None,
    expires_in_days: int,
) -> EmailMessage:
    """Render the workspace invitation email."""
    inviter = inviter_name or "A teammate"
    lines = [
        f"{inviter} has invited you to join the {workspace_name} workspace "
        f"on QueryGenie as {'an' if role in ('admin', 'editor', 'owner') else 'a'} {role}.",
        "",
    ]
    if personal_message:
        lines += [f'"{personal_message}"', ""]
    lines += [
        f"Accept the invitation: {invite_url}",
        "",
        f"This invitation expires in {expires_in_days} days.",
    ]
    return EmailMessage(
        to=to,
        subject=INVITATION_SUBJECT,
        text="\n".join(lines),
        tags={"template": "workspace-invitation"},
    )
