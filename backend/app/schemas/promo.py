from decimal import Decimal
from typing import Annotated
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, field_validator
from pydantic.alias_generators import to_camel

# Amounts are Decimal in Python and plain JSON numbers on the wire.
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ApplyPromoCodeRequest(CamelModel):
    order_id: UUID
    promo_code: str = Field(min_length=1, max_length=40)
    user_id: UUID
    order_amount: Money = Field(ge=0, max_digits=12, decimal_places=2)

    @field_validator("promo_code")
    @classmethod
    def strip_code(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("Promo code must not be blank")
        return cleaned


class ApplyPromoCodeResponse(CamelModel):
    discount_amount: Money
    final_amount: Money
    promo_code: str
