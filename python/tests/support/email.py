"""Email sender that keeps what it sends, for assertions in tests."""

from querygenie.services.email import EmailMessage, LogEmailSender


class RecordingEmailSender(LogEmailSender):
    """LogEmailSender that also appends every message to `outbox`."""

    def __init__(self) -> None:
        self.outbox: list[EmailMessage] = []

    def send(self, message: EmailMessage) -> bool:
        self.outbox.append(message)
        return super().send(message)
