"""Notification relay: persists notifications and pushes them to connected apps."""

import logging
import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session, sessionmaker

from core.exceptions import ConflictError, NotFoundError
from db.repositories import NotificationRepository
from db.schema import Notification as NotificationRow
from db.transaction import transaction
from db.utils import utc_now
from pubsub.channels import CHANNEL_NOTIFICATIONS, NotificationMessage
from redis_client.publisher import RedisPublisher

from .models import (
    Notification,
    NotificationAdapter,
    NotificationStatus,
    OfferOutcome,
    RecipientRole,
)

logger = logging.getLogger(__name__)

OUTBOX_KEY = "outbox"


def queue_publish(session: Session, channel: str, message: dict[str, Any]) -> None:
    """Queue a message to publish once the session's transaction has committed."""
    session.info.setdefault(OUTBOX_KEY, []).append((channel, message))


class NotificationRelay:
    """Stores notifications and relays them over Redis pub/sub.

    Writes go through the caller's session so the notification commits or
    rolls back together with the state change it describes. Publishing is
    deferred to deliver_pending(), which the caller invokes after commit;
    a failed publish is logged and never surfaces to the caller.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Any],
        publisher: RedisPublisher | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._publisher = publisher
        self._clock = clock

    def notify(
        self,
        session: Session,
        recipient_role: RecipientRole,
        recipient_id: str,
        trip_id: str,
        message: str,
        status: NotificationStatus = "info",
        *,
        amount: float | None = None,
        pickup_address: str | None = None,
        destination_address: str | None = None,
        reference_id: str | None = None,
    ) -> str:
        """Persist a notification in session and queue it for delivery.

        Returns:
            The new notification id
        """
        notification_id = str(uuid.uuid4())
        now = self._clock()
        row = NotificationRow(
            notification_id=notification_id,
            recipient_role=recipient_role,
            recipient_id=recipient_id,
            trip_id=trip_id,
            message=message,
            status=status,
            read=False,
            amount=amount,
            pickup_address=pickup_address,
            destination_address=destination_address,
            reference_id=reference_id,
            created_at=now,
        )
        NotificationRepository(session).create(row)

        payload = NotificationMessage(
            notification_id=notification_id,
            recipient_role=recipient_role,
            recipient_id=recipient_id,
            trip_id=trip_id,
            status=status,
            message=message,
            amount=amount,
            timestamp=now.isoformat(),
        )
        queue_publish(session, CHANNEL_NOTIFICATIONS, payload.model_dump())
        logger.debug(f"Queued {status} notification for {recipient_role} {recipient_id}")
        return notification_id

    def mark_resolved(self, session: Session, notification_id: str, outcome: OfferOutcome) -> None:
        """Resolve a pending offer.

        Repeating the outcome already recorded is a no-op; asking for the
        other outcome raises ConflictError.
        """
        repo = NotificationRepository(session)
        if repo.resolve(notification_id, outcome, self._clock()):
            return

        row = repo.get(notification_id)
        if row is None:
            raise NotFoundError(
                f"Notification {notification_id} not found",
                {"notification_id": notification_id},
            )
        if row.status != outcome:
            raise ConflictError(
                f"Offer already resolved as {row.status}",
                {"notification_id": notification_id, "status": row.status, "requested": outcome},
            )

    def mark_read(self, notification_id: str, read: bool = True) -> Notification:
        with self._session_factory() as session:
            with transaction(session):
                repo = NotificationRepository(session)
                row = repo.get(notification_id)
                if row is None:
                    raise NotFoundError(
                        f"Notification {notification_id} not found",
                        {"notification_id": notification_id},
                    )
                repo.set_read(notification_id, read)
                session.refresh(row)
                return self._to_model(row)

    def get(self, notification_id: str) -> Notification:
        with self._session_factory() as session:
            row = NotificationRepository(session).get(notification_id)
            if row is None:
                raise NotFoundError(
                    f"Notification {notification_id} not found",
                    {"notification_id": notification_id},
                )
            return self._to_model(row)

    def list_for_recipient(
        self, recipient_role: RecipientRole, recipient_id: str, unread_only: bool = False
    ) -> list[Notification]:
        with self._session_factory() as session:
            rows = NotificationRepository(session).list_for_recipient(
                recipient_role, recipient_id, unread_only=unread_only
            )
            return [self._to_model(row) for row in rows]

    def purge_older_than(self, cutoff: datetime) -> int:
        with self._session_factory() as session:
            with transaction(session):
                deleted = NotificationRepository(session).delete_older_than(cutoff)
        if deleted:
            logger.info(f"Purged {deleted} notifications created before {cutoff.isoformat()}")
        return deleted

    def deliver_pending(self, session: Session) -> int:
        """Publish everything queued on session. Call only after commit."""
        outbox = session.info.pop(OUTBOX_KEY, [])
        if self._publisher is None:
            return 0

        delivered = 0
        for channel, message in outbox:
            try:
                self._publisher.publish_sync(channel, message)
                delivered += 1
            except Exception:
                logger.exception(f"Failed to relay message on {channel}")
        return delivered

    def _to_model(self, row: NotificationRow) -> Notification:
        data = {
            "notification_id": row.notification_id,
            "recipient_role": row.recipient_role,
            "recipient_id": row.recipient_id,
            "trip_id": row.trip_id,
            "message": row.message,
            "status": row.status,
            "read": row.read,
            "amount": row.amount,
            "created_at": row.created_at,
        }
        if row.status in ("pending", "accepted", "rejected"):
            data.update(
                pickup_address=row.pickup_address,
                destination_address=row.destination_address,
                resolved_at=row.resolved_at,
            )
        elif row.status in ("success", "error"):
            data["reference_id"] = row.reference_id
        return NotificationAdapter.validate_python(data)
