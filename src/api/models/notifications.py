from pydantic import BaseModel

from notifications.models import Notification


class MarkReadRequest(BaseModel):
    read: bool = True


NotificationResponse = Notification
