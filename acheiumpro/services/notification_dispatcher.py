import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from acheiumpro.models import NotificationChannel, OutboxEntry
from acheiumpro.services.email_sender import EmailSender, email_sender
from acheiumpro.services.notification_store import NotificationStore, notification_store
from acheiumpro.services.push_sender import PushSender, push_sender
from acheiumpro.services.sms_sender import SmsSender, sms_sender
from acheiumpro.services.user_store import UserStore, user_store

logger = logging.getLogger(__name__)


class ChannelUnavailable(Exception):
    """The channel is not configured, or the recipient has no address for it."""


@dataclass
class DispatchSummary:
    delivered: int = 0
    skipped: int = 0
    failed: int = 0
    errors: Dict[int, str] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {"delivered": self.delivered, "skipped": self.skipped, "failed": self.failed}


class NotificationDispatcher:
    """Delivers queued outbox rows through their channel senders.

    Delivery is independent of the state change that queued the row, so a
    failed send is retried on the next run without touching requests or
    proposals again.
    """

    def __init__(
        self,
        store: NotificationStore,
        users: UserStore,
        push: PushSender,
        email: EmailSender,
        sms: SmsSender,
    ):
        self.store = store
        self.users = users
        self.push = push
        self.email = email
        self.sms = sms

    def dispatch_pending(self, limit: int = 100, max_attempts: Optional[int] = None) -> DispatchSummary:
        summary = DispatchSummary()
        for entry in self.store.pending_outbox(limit=limit, max_attempts=max_attempts):
            try:
                self._deliver(entry)
            except ChannelUnavailable as exc:
                self.store.record_delivery(entry.id, "skipped", error=str(exc))
                summary.skipped += 1
            except Exception as exc:  # pylint: disable=broad-except
                logger.exception("Notification delivery failed for outbox %s (%s)", entry.id, entry.channel.value)
                self.store.record_delivery(entry.id, "failed", error=str(exc), max_attempts=max_attempts)
                summary.failed += 1
                summary.errors[entry.id] = str(exc)
            else:
                self.store.record_delivery(entry.id, "delivered")
                summary.delivered += 1
        if summary.delivered or summary.failed or summary.skipped:
            logger.info(
                "Notification dispatch: %s delivered, %s skipped, %s failed",
                summary.delivered,
                summary.skipped,
                summary.failed,
            )
        return summary

    def _deliver(self, entry: OutboxEntry) -> None:
        if entry.channel == NotificationChannel.WEBPUSH:
            self._deliver_push(entry)
        elif entry.channel == NotificationChannel.EMAIL:
            self._deliver_email(entry)
        elif entry.channel == NotificationChannel.SMS:
            self._deliver_sms(entry)
        else:
            raise ChannelUnavailable(f"Channel {entry.channel.value} has no delivery step")

    def _deliver_push(self, entry: OutboxEntry) -> None:
        if not self.push.enabled:
            raise ChannelUnavailable("Push sender disabled")
        tokens = self.store.device_tokens(entry.user_id)
        if not tokens:
            raise ChannelUnavailable("User has no registered devices")
        invalid_tokens = self.push.send_notification(
            tokens=tokens,
            title=entry.title,
            body=entry.body,
            data={
                "notification_id": str(entry.notification_id),
                **{key: str(value) for key, value in entry.metadata.items()},
            },
        )
        if invalid_tokens:
            self.store.remove_device_tokens(entry.user_id, invalid_tokens)

    def _deliver_email(self, entry: OutboxEntry) -> None:
        if not self.email.enabled:
            raise ChannelUnavailable("SMTP not configured")
        user = self.users.get_user(entry.user_id)
        if not user or not user.email:
            raise ChannelUnavailable("User has no email address")
        self.email.send(user.email, entry.title, entry.body)

    def _deliver_sms(self, entry: OutboxEntry) -> None:
        if not self.sms.enabled:
            raise ChannelUnavailable("Twilio not configured")
        user = self.users.get_user(entry.user_id)
        if not user or not user.phone:
            raise ChannelUnavailable("User has no phone number")
        self.sms.send(user.phone, entry.body)


notification_dispatcher = NotificationDispatcher(
    store=notification_store,
    users=user_store,
    push=push_sender,
    email=email_sender,
    sms=sms_sender,
)
