from __future__ import annotations

from fastapi import APIRouter, Depends

from app.core.dependencies import get_redemption_service
from app.schemas.error import ErrorResponse
from app.schemas.promo import ApplyPromoCodeRequest, ApplyPromoCodeResponse
from app.services.redemption import RedemptionService


router = APIRouter(prefix="/promo-codes", tags=["promo-codes"])


@router.post(
    "/apply",
    response_model=ApplyPromoCodeResponse,
    response_model_by_alias=True,
    responses={
        400: {"model": ErrorResponse, "description": "Inactive, expired or over-limit promo code"},
        404: {"model": ErrorResponse, "description": "Unknown promo code or order"},
        503: {"model": ErrorResponse, "description": "The store could not commit the redemption"},
    },
)
async def apply_promo_code(
    payload: ApplyPromoCodeRequest,
    service: RedemptionService = Depends(get_redemption_service),
) -> ApplyPromoCodeResponse:
    outcome = await service.apply(
        order_id=payload.order_id,
        code=payload.promo_code,
        user_id=payload.user_id,
        order_amount=payload.order_amount,
    )
    return ApplyPromoCodeResponse(
        discount_amount=outcome.discount_amount,
        final_amount=outcome.final_amount,
        promo_code=outcome.promo_code,
    )
