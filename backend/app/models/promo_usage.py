import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Date, DateTime, Index, Numeric, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import AnalyticsBase


class PromoCodeUsage(AnalyticsBase):
    """One row per applied promo code, materialized from PromoCodeAppliedEvent."""

    __tablename__ = "promo_code_usages_analytics"
    __table_args__ = (
        UniqueConstraint("order_id", "promo_code_id", name="uq_promo_code_usages_order_promo"),
        Index("ix_promo_code_usages_user_promo", "user_id", "promo_code_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    promo_code: Mapped[str] = mapped_column(String(40), nullable=False)
    promo_code_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    order_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    order_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
