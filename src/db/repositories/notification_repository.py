"""Notification repository."""

from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from ..schema import Notification


class NotificationRepository:
    """Repository for notification rows.

    Rows are returned as ORM objects; the relay converts them into the
    tagged notification models.
    """

    def __init__(self, session: Session):
        self.session = session

    def create(self, notification: Notification) -> None:
        self.session.add(notification)
        self.session.flush()

    def get(self, notification_id: str) -> Notification | None:
        return self.session.get(Notification, notification_id, populate_existing=True)

    def resolve(self, notification_id: str, outcome: str, now: datetime) -> bool:
        """Move a pending offer to outcome; False if it is no longer pending."""
        stmt = (
            update(Notification)
            .where(
                Notification.notification_id == notification_id,
                Notification.status == "pending",
            )
            .values(status=outcome, resolved_at=now)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1

    def set_read(self, notification_id: str, read: bool) -> bool:
        stmt = (
            update(Notification)
            .where(Notification.notification_id == notification_id)
            .values(read=read)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1

    def list_for_recipient(
        self, recipient_role: str, recipient_id: str, unread_only: bool = False
    ) -> list[Notification]:
        """List a recipient's notifications, newest first."""
        stmt = select(Notification).where(
            Notification.recipient_role == recipient_role,
            Notification.recipient_id == recipient_id,
        )
        if unread_only:
            stmt = stmt.where(Notification.read.is_(False))
        stmt = stmt.order_by(Notification.created_at.desc())
        result = self.session.execute(stmt)
        return list(result.scalars().all())

    def delete_older_than(self, cutoff: datetime) -> int:
        """Delete notifications created before cutoff, keeping unresolved offers."""
        stmt = (
            delete(Notification)
            .where(Notification.created_at < cutoff, Notification.status != "pending")
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount or 0
