from typing import Annotated, Literal

from fastapi import APIRouter, Depends, Query

from api.auth import verify_api_key
from api.dependencies import RelayDep
from api.models.notifications import MarkReadRequest, NotificationResponse

router = APIRouter(dependencies=[Depends(verify_api_key)])


@router.get("/{role}/{recipient_id}", response_model=list[NotificationResponse])
def list_notifications(
    role: Literal["client", "driver"],
    recipient_id: str,
    relay: RelayDep,
    unread_only: Annotated[bool, Query()] = False,
) -> list[NotificationResponse]:
    """A recipient's notifications, newest first."""
    return relay.list_for_recipient(role, recipient_id, unread_only=unread_only)


@router.put("/{notification_id}/read", response_model=NotificationResponse)
def mark_read(
    notification_id: str, relay: RelayDep, body: MarkReadRequest | None = None
) -> NotificationResponse:
    return relay.mark_read(notification_id, body.read if body else True)
