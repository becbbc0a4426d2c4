from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import ConfigDict, Field

from app.schemas.promo import CamelModel, Money


class PromoCodeAppliedEvent(CamelModel):
    """Immutable fact: a promo code was applied to an order and the transaction committed."""

    model_config = ConfigDict(frozen=True)

    promo_code_id: UUID
    promo_code: str
    user_id: UUID
    order_id: UUID
    order_amount: Money
    discount_amount: Money
    created_at: datetime


class EventEnvelope(CamelModel):
    """Queue record wrapping an event payload with its delivery bookkeeping."""

    id: UUID
    type: str = Field(min_length=1, max_length=80)
    attempt: int = Field(default=0, ge=0)
    payload: dict[str, Any]
