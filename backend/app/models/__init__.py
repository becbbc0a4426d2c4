from app.db.base import AnalyticsBase, Base  # noqa: F401
from app.models.promo import PromoCode  # noqa: F401
from app.models.order import Order  # noqa: F401
from app.models.promo_usage import PromoCodeUsage  # noqa: F401

__all__ = [
    "Base",
    "AnalyticsBase",
    "PromoCode",
    "Order",
    "PromoCodeUsage",
]
