from __future__ import annotations

import enum
from typing import Literal
from uuid import UUID


class RedemptionState(str, enum.Enum):
    unvalidated = "unvalidated"
    not_found = "not_found"
    inactive = "inactive"
    out_of_window = "out_of_window"
    user_limit_exceeded = "user_limit_exceeded"
    total_limit_exceeded = "total_limit_exceeded"
    total_limit_exceeded_race = "total_limit_exceeded_race"
    valid = "valid"
    committed = "committed"


InvalidStateReason = Literal["not_active", "outside_window", "already_applied"]
LimitScope = Literal["user", "total"]


class RedemptionError(Exception):
    """A redemption attempt ended in a terminal failure state before anything was committed."""

    status_code = 400
    code = "redemption_failed"
    state = RedemptionState.unvalidated

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class PromoCodeNotFoundError(RedemptionError):
    status_code = 404
    code = "not_found"
    state = RedemptionState.not_found

    def __init__(self, code: str) -> None:
        super().__init__(f"Promo code {code} not found")
        self.promo_code = code


class OrderNotFoundError(RedemptionError):
    status_code = 404
    code = "not_found"
    state = RedemptionState.not_found

    def __init__(self, order_id: UUID) -> None:
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id


_INVALID_STATE_BY_REASON: dict[str, RedemptionState] = {
    "not_active": RedemptionState.inactive,
    "outside_window": RedemptionState.out_of_window,
    # The code itself was valid; the order could not take it.
    "already_applied": RedemptionState.valid,
}


class PromoCodeInvalidStateError(RedemptionError):
    code = "invalid_state"

    def __init__(self, reason: InvalidStateReason, message: str) -> None:
        super().__init__(message)
        self.reason = reason
        self.state = _INVALID_STATE_BY_REASON[reason]


class PromoCodeLimitExceededError(RedemptionError):
    code = "limit_exceeded"

    def __init__(self, scope: LimitScope, *, race: bool = False) -> None:
        if scope == "user":
            message = "User limit exceeded for this promo code"
            state = RedemptionState.user_limit_exceeded
        elif race:
            message = "Promo code total limit reached by a concurrent redemption"
            state = RedemptionState.total_limit_exceeded_race
        else:
            message = "Promo code total limit exceeded"
            state = RedemptionState.total_limit_exceeded
        super().__init__(message)
        self.scope = scope
        self.race = scope == "total" and race
        self.state = state


class EventPublishError(Exception):
    """The event channel did not accept an event."""
