"""
Notification persistence.

Notifications are created by the reminder run and by booking-action outcomes,
mutated only to flip the read flag, and never deleted here.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.future import select

from models.db_models import Notification

logger = logging.getLogger(__name__)


class NotificationStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create_notification(
        self,
        target_user_id: str,
        title: str,
        message: str,
        type: str = "info",
        category: str = "booking",
        primary_action: Optional[Dict[str, Any]] = None,
        secondary_action: Optional[Dict[str, Any]] = None,
        tags: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        created_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        notification = Notification(
            target_user_id=target_user_id,
            title=title,
            message=message,
            type=type,
            category=category,
            primary_action=primary_action,
            secondary_action=secondary_action,
            tags=tags or [],
            metadata_json=metadata or {},
            created_by=created_by,
        )
        async with self.session_factory() as session:
            session.add(notification)
            await session.commit()
            await session.refresh(notification)
        logger.debug("Created notification %s for %s (%s)", notification.id, target_user_id, created_by)
        return self._to_dict(notification)

    async def get_notification(self, notification_id: str) -> Dict[str, Any] | None:
        async with self.session_factory() as session:
            result = await session.execute(select(Notification).where(Notification.id == notification_id))
            notification = result.scalar_one_or_none()
            return self._to_dict(notification) if notification else None

    async def mark_read(self, notification_id: str) -> bool:
        """
        Idempotent: read_at keeps the first read time and a second call changes nothing.
        Returns True if the notification exists.
        """
        async with self.session_factory() as session:
            await session.execute(
                update(Notification)
                .where(Notification.id == notification_id)
                .where(Notification.is_read == False)  # noqa: E712
                .values(is_read=True, read_at=datetime.utcnow())
            )
            await session.commit()
            result = await session.execute(
                select(Notification.id).where(Notification.id == notification_id)
            )
            return result.scalar_one_or_none() is not None

    async def list_notifications(
        self,
        user_id: str,
        unread_only: bool = False,
        tag: Optional[str] = None,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        stmt = (
            select(Notification)
            .where(Notification.target_user_id == user_id)
            .order_by(Notification.created_at.desc())
        )
        if unread_only:
            stmt = stmt.where(Notification.is_read == False)  # noqa: E712
        if not tag:
            stmt = stmt.limit(limit)
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            rows = [self._to_dict(n) for n in result.scalars().all()]
        # tags is a JSON column; filter in Python to stay portable across MySQL/SQLite
        if tag:
            rows = [r for r in rows if tag in (r["tags"] or [])]
        return rows[:limit]

    @staticmethod
    def _to_dict(n: Notification) -> Dict[str, Any]:
        return {
            "id": n.id,
            "title": n.title,
            "message": n.message,
            "type": n.type,
            "category": n.category,
            "target_user_id": n.target_user_id,
            "is_read": n.is_read,
            "read_at": n.read_at.isoformat() if n.read_at else None,
            "primary_action": n.primary_action,
            "secondary_action": n.secondary_action,
            "tags": n.tags,
            "metadata": n.metadata_json,
            "created_by": n.created_by,
            "created_at": n.created_at.isoformat() if n.created_at else None,
        }
