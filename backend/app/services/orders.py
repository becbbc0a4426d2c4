from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.order import Order
from app.services.redemption_errors import OrderNotFoundError, PromoCodeInvalidStateError


async def apply_promo_code_to_order(
    session: AsyncSession,
    *,
    order_id: UUID,
    promo_code_id: UUID,
    discount_amount: Decimal,
) -> Order:
    """Attach a promo code and its discount to an order that has none yet.

    Runs in the caller's transaction; raising here aborts everything else done in it.
    """
    result = await session.execute(
        update(Order)
        .where(Order.id == order_id, Order.promo_code_id.is_(None))
        .values(promo_code_id=promo_code_id, discount_amount=discount_amount, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    order = (
        await session.execute(select(Order).where(Order.id == order_id).execution_options(populate_existing=True))
    ).scalar_one_or_none()
    if order is None:
        raise OrderNotFoundError(order_id)
    if result.rowcount != 1:
        raise PromoCodeInvalidStateError("already_applied", "Order already has a promo code applied")
    return order
