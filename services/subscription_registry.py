"""
DB-backed push subscription registry using async SQLAlchemy.

- register_subscription   -> INSERT, or re-activate/refresh keys when the endpoint is known
- remove_subscription     -> DELETE
- list_active_subscriptions -> SELECT active rows for one user
- deactivate_subscription -> UPDATE is_active = false (endpoint reported gone by the push service)
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.future import select

from models.db_models import PushSubscription
import logging

logger = logging.getLogger(__name__)


class SubscriptionRegistry:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def register_subscription(
        self,
        user_id: str,
        endpoint: str,
        p256dh_key: str,
        auth_key: str,
        user_type: str = "student",
    ) -> Dict[str, Any]:
        """
        Upsert by endpoint: a browser re-subscribing (or a device changing hands)
        refreshes the keys and owner and re-activates the row.
        """
        async with self.session_factory() as session:
            try:
                result = await session.execute(
                    select(PushSubscription).where(PushSubscription.endpoint == endpoint)
                )
                sub = result.scalar_one_or_none()
                created = sub is None
                if created:
                    sub = PushSubscription(endpoint=endpoint)
                    session.add(sub)
                sub.user_id = user_id
                sub.user_type = user_type
                sub.p256dh_key = p256dh_key
                sub.auth_key = auth_key
                sub.is_active = True
                await session.commit()
                await session.refresh(sub)
            except IntegrityError as ie:
                # Concurrent registration of the same endpoint; the other writer won
                await session.rollback()
                logger.warning("IntegrityError on register_subscription (%s)", ie)
                return {"error": "Subscription already exists", "status_code": 409}

        logger.info("Push subscription %s for user %s (%s)", "created" if created else "refreshed", user_id, sub.id)
        return {
            "message": "Subscribed successfully",
            "subscription": self._to_dict(sub),
            "status_code": 201 if created else 200,
        }

    async def remove_subscription(self, user_id: str, endpoint: str) -> Dict[str, Any]:
        """Hard-delete a subscription when the user disables push on a device."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(PushSubscription)
                .where(PushSubscription.user_id == user_id)
                .where(PushSubscription.endpoint == endpoint)
            )
            sub = result.scalar_one_or_none()
            if not sub:
                return {"error": "Subscription not found", "status_code": 404}
            await session.delete(sub)
            await session.commit()
        return {"message": "Unsubscribed successfully", "status_code": 200}

    async def list_active_subscriptions(
        self,
        user_id: str,
        user_type: Optional[str] = "student",
    ) -> List[Dict[str, Any]]:
        """
        Equivalent to:
        SELECT * FROM push_subscriptions WHERE is_active=1 AND user_id = ? [AND user_type = ?]
        """
        stmt = (
            select(PushSubscription)
            .where(PushSubscription.user_id == user_id)
            .where(PushSubscription.is_active == True)  # noqa: E712
        )
        if user_type:
            stmt = stmt.where(PushSubscription.user_type == user_type)
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [self._to_dict(s) for s in result.scalars().all()]

    async def deactivate_subscription(self, subscription_id: str) -> bool:
        """Flip is_active to false. Returns True when a row was changed."""
        async with self.session_factory() as session:
            result = await session.execute(
                update(PushSubscription)
                .where(PushSubscription.id == subscription_id)
                .where(PushSubscription.is_active == True)  # noqa: E712
                .values(is_active=False)
            )
            await session.commit()
        changed = (result.rowcount or 0) > 0
        if changed:
            logger.info("Deactivated push subscription %s", subscription_id)
        return changed

    @staticmethod
    def _to_dict(sub: PushSubscription) -> Dict[str, Any]:
        return {
            "id": sub.id,
            "user_id": sub.user_id,
            "user_type": sub.user_type,
            "endpoint": sub.endpoint,
            "p256dh_key": sub.p256dh_key,
            "auth_key": sub.auth_key,
            "is_active": sub.is_active,
            "created_at": sub.created_at.isoformat() if sub.created_at else None,
            "updated_at": sub.updated_at.isoformat() if sub.updated_at else None,
        }
