from __future__ import annotations

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.promo import PromoCode


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


async def get_promo_code_by_code(session: AsyncSession, *, code: str) -> PromoCode | None:
    cleaned = normalize_code(code)
    if not cleaned:
        return None
    return (await session.execute(select(PromoCode).where(PromoCode.code == cleaned))).scalar_one_or_none()


async def increment_usage_if_within_limit(
    session: AsyncSession, *, promo_code_id: UUID, total_limit: int
) -> PromoCode | None:
    """Bump ``used_count`` by one only while it is below ``total_limit``.

    The predicate and the increment are one UPDATE statement, so the database decides the
    race: at most ``total_limit`` calls can ever succeed. Returns the updated row, or None
    when no row matched because the cap was already reached.
    """
    result = await session.execute(
        update(PromoCode)
        .where(PromoCode.id == promo_code_id, PromoCode.used_count < total_limit)
        .values(used_count=PromoCode.used_count + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return None
    return (
        await session.execute(
            select(PromoCode).where(PromoCode.id == promo_code_id).execution_options(populate_existing=True)
        )
    ).scalar_one()
