"""Promo code redemption.

Applying a code to an order runs as one transaction on the primary store:

1. look the code up (case-insensitive),
2. check it is active, inside its validity window, not used up and under the user's limit,
3. claim one use with a conditional increment on ``used_count``,
4. write the discount onto the order.

Only after that transaction commits is a ``PromoCodeAppliedEvent`` published. A failed
publish is reported but never undoes the committed redemption.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core import metrics
from app.core.sentry import report_exception
from app.db.transactions import TransactionalSessionProvider
from app.models.promo import PromoCode
from app.schemas.events import PromoCodeAppliedEvent
from app.services import orders as orders_service
from app.services import promo_codes as promo_codes_service
from app.services.events import PROMO_CODE_APPLIED, EventPublisher
from app.services.pricing import compute_discount
from app.services.promo_usage import UsageAnalyticsReader
from app.services.redemption_errors import (
    PromoCodeInvalidStateError,
    PromoCodeLimitExceededError,
    PromoCodeNotFoundError,
    RedemptionError,
    RedemptionState,
)

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class RedemptionOutcome:
    discount_amount: Decimal
    final_amount: Decimal
    promo_code: str
    state: RedemptionState = RedemptionState.committed


def check_static_eligibility(promo: PromoCode, *, now: datetime) -> None:
    if not promo.is_active:
        raise PromoCodeInvalidStateError("not_active", "Promo code is not active")
    if promo.starts_at is not None and now < _as_utc(promo.starts_at):
        raise PromoCodeInvalidStateError("outside_window", "Promo code has not started yet")
    if promo.ends_at is not None and now > _as_utc(promo.ends_at):
        raise PromoCodeInvalidStateError("outside_window", "Promo code has expired")
    if promo.used_count >= promo.total_limit:
        raise PromoCodeLimitExceededError("total")


class RedemptionService:
    def __init__(
        self,
        *,
        sessions: TransactionalSessionProvider,
        usage_reader: UsageAnalyticsReader,
        publisher: EventPublisher,
    ) -> None:
        self._sessions = sessions
        self._usage_reader = usage_reader
        self._publisher = publisher

    async def apply(
        self,
        *,
        order_id: UUID,
        code: str,
        user_id: UUID,
        order_amount: Decimal,
    ) -> RedemptionOutcome:
        """Apply ``code`` to ``order_id`` for ``user_id``, discounting ``order_amount``.

        Raises a ``RedemptionError`` subclass for every business rejection; nothing is
        persisted in that case. Store failures (SQLAlchemy errors, transaction timeout)
        propagate unchanged.
        """
        amount = Decimal(order_amount)

        async def _redeem(session: AsyncSession) -> PromoCodeAppliedEvent:
            return await self._redeem_in_transaction(
                session, order_id=order_id, code=code, user_id=user_id, order_amount=amount
            )

        async with self._sessions.start_session() as tx:
            try:
                event = await tx.with_transaction(_redeem)
            except RedemptionError as exc:
                metrics.record_redemption_rejected(exc.state.value)
                logger.info(
                    "promo_redemption_rejected",
                    extra={
                        "promo_code": promo_codes_service.normalize_code(code),
                        "order_id": str(order_id),
                        "user_id": str(user_id),
                        "state": exc.state.value,
                        "reason": exc.message,
                    },
                )
                raise

        metrics.record_redemption_applied()
        logger.info(
            "promo_redemption_committed",
            extra={
                "promo_code": event.promo_code,
                "promo_code_id": str(event.promo_code_id),
                "order_id": str(order_id),
                "user_id": str(user_id),
                "discount_amount": str(event.discount_amount),
            },
        )
        await self._publish(event)
        return RedemptionOutcome(
            discount_amount=event.discount_amount,
            final_amount=event.order_amount - event.discount_amount,
            promo_code=event.promo_code,
        )

    async def _redeem_in_transaction(
        self,
        session: AsyncSession,
        *,
        order_id: UUID,
        code: str,
        user_id: UUID,
        order_amount: Decimal,
    ) -> PromoCodeAppliedEvent:
        promo = await promo_codes_service.get_promo_code_by_code(session, code=code)
        if promo is None:
            raise PromoCodeNotFoundError(promo_codes_service.normalize_code(code))

        check_static_eligibility(promo, now=_now())

        used_by_user = await self._usage_reader.get_user_promo_code_usage_count(user_id, promo.id)
        if used_by_user >= promo.per_user_limit:
            raise PromoCodeLimitExceededError("user")

        # used_count checked above may be stale by now; the increment re-checks the cap atomically.
        claimed = await promo_codes_service.increment_usage_if_within_limit(
            session, promo_code_id=promo.id, total_limit=promo.total_limit
        )
        if claimed is None:
            raise PromoCodeLimitExceededError("total", race=True)

        breakdown = compute_discount(order_amount, promo.discount_percent)
        await orders_service.apply_promo_code_to_order(
            session,
            order_id=order_id,
            promo_code_id=promo.id,
            discount_amount=breakdown.discount_amount,
        )
        return PromoCodeAppliedEvent(
            promo_code_id=promo.id,
            promo_code=promo.code,
            user_id=user_id,
            order_id=order_id,
            order_amount=breakdown.order_amount,
            discount_amount=breakdown.discount_amount,
            created_at=_now(),
        )

    async def _publish(self, event: PromoCodeAppliedEvent) -> None:
        try:
            await self._publisher.publish(event)
        except Exception as exc:
            # The redemption is committed; downstream analytics reconcile missed events separately.
            metrics.record_event_publish_failure()
            logger.exception(
                "promo_event_publish_failed",
                extra={
                    "event_type": PROMO_CODE_APPLIED,
                    "promo_code_id": str(event.promo_code_id),
                    "order_id": str(event.order_id),
                },
            )
            report_exception(exc, event_type=PROMO_CODE_APPLIED)
