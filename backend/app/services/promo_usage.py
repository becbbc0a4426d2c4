from __future__ import annotations

import logging
from typing import Protocol
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.promo_usage import PromoCodeUsage
from app.schemas.events import PromoCodeAppliedEvent

logger = logging.getLogger(__name__)


class UsageAnalyticsReader(Protocol):
    async def get_user_promo_code_usage_count(self, user_id: UUID, promo_code_id: UUID) -> int: ...


class SqlUsageAnalyticsReader:
    """Reads per-user redemption counts from the analytics read model.

    The read model is filled asynchronously from PromoCodeAppliedEvent, so counts lag the
    primary store and two concurrent redemptions by one user can both see the old count.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_user_promo_code_usage_count(self, user_id: UUID, promo_code_id: UUID) -> int:
        async with self._session_factory() as session:
            count = await session.scalar(
                select(func.count())
                .select_from(PromoCodeUsage)
                .where(PromoCodeUsage.user_id == user_id, PromoCodeUsage.promo_code_id == promo_code_id)
            )
        return int(count or 0)


async def record_promo_code_usage(session: AsyncSession, event: PromoCodeAppliedEvent) -> bool:
    """Materialize one applied promo code; returns False when the event was already recorded.

    ``(order_id, promo_code_id)`` is the dedup key, so redelivered events are no-ops.
    """
    existing = await session.scalar(
        select(PromoCodeUsage.id).where(
            PromoCodeUsage.order_id == event.order_id,
            PromoCodeUsage.promo_code_id == event.promo_code_id,
        )
    )
    if existing is not None:
        return False

    session.add(
        PromoCodeUsage(
            event_date=event.created_at.date(),
            created_at=event.created_at,
            promo_code=event.promo_code,
            promo_code_id=event.promo_code_id,
            user_id=event.user_id,
            order_id=event.order_id,
            order_amount=event.order_amount,
            discount_amount=event.discount_amount,
        )
    )
    try:
        await session.commit()
    except IntegrityError:
        # Another consumer recorded the same delivery between our check and insert.
        await session.rollback()
        return False
    logger.info(
        "promo_code_usage_recorded",
        extra={"promo_code": event.promo_code, "user_id": str(event.user_id), "order_id": str(event.order_id)},
    )
    return True
