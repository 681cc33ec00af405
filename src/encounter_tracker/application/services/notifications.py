from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, List

from encounter_tracker.application.services.event_bus import EventBus
from encounter_tracker.domain.events import EmailVerificationRequested, PasswordResetRequested, UserRegistered


logger = logging.getLogger(__name__)

DEFAULT_OUTBOX_LIMIT = 500


@dataclass(frozen=True)
class OutboundMessage:
    to: str
    subject: str
    link: str


class NotificationOutbox:
    """Collects account emails until a sender drains them.

    Only the newest ``limit`` messages are kept; older ones are dropped
    with a warning.
    """

    def __init__(self, base_url: str, limit: int = DEFAULT_OUTBOX_LIMIT) -> None:
        if limit < 1:
            raise ValueError("Outbox limit must be at least 1")
        self.base_url = base_url.rstrip("/")
        self.messages: Deque[OutboundMessage] = deque(maxlen=limit)

    def _queue(self, to: str, subject: str, path: str) -> None:
        if len(self.messages) == self.messages.maxlen:
            logger.warning("Outbox full, dropping oldest message", extra={"subject": self.messages[0].subject})
        message = OutboundMessage(to=to, subject=subject, link=f"{self.base_url}{path}")
        self.messages.append(message)
        logger.info("Queued account email", extra={"subject": subject})

    def drain(self) -> List[OutboundMessage]:
        drained = list(self.messages)
        self.messages.clear()
        return drained

    def on_user_registered(self, event: UserRegistered) -> None:
        self._queue(event.email, "Verify your email", f"/verify-email?token={event.verification_token}")

    def on_verification_requested(self, event: EmailVerificationRequested) -> None:
        self._queue(event.email, "Verify your email", f"/verify-email?token={event.verification_token}")

    def on_password_reset_requested(self, event: PasswordResetRequested) -> None:
        self._queue(event.email, "Reset your password", f"/reset-password/{event.reset_token}")


def register_notification_handlers(event_bus: EventBus, outbox: NotificationOutbox) -> None:
    event_bus.subscribe(UserRegistered, outbox.on_user_registered)
    event_bus.subscribe(EmailVerificationRequested, outbox.on_verification_requested)
    event_bus.subscribe(PasswordResetRequested, outbox.on_password_reset_requested)
