"""Notification Service - in-app notification sink for billing events"""

from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.communication import Notification
from app.models.enums import NotificationType


class NotificationService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def notify(self, recipient_id: UUID, type: NotificationType, message: str) -> Notification:
        """Queue a notification in the caller's unit of work (flush, no commit)."""
        notification = Notification(recipient_id=recipient_id, type=type, message=message)
        self.db.add(notification)
        await self.db.flush()
        return notification
