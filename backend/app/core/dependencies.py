from functools import lru_cache

from app.core.config import settings
from app.core.redis_client import get_redis
from app.db.session import AnalyticsSessionLocal, SessionLocal
from app.db.transactions import TransactionalSessionProvider
from app.services.events import RedisEventPublisher
from app.services.promo_usage import SqlUsageAnalyticsReader
from app.services.redemption import RedemptionService


@lru_cache
def get_redemption_service() -> RedemptionService:
    """FastAPI dependency wiring the redemption service to the configured stores and queue."""
    return RedemptionService(
        sessions=TransactionalSessionProvider(SessionLocal, timeout_seconds=settings.transaction_timeout_seconds),
        usage_reader=SqlUsageAnalyticsReader(AnalyticsSessionLocal),
        publisher=RedisEventPublisher(get_redis(), queue_key=settings.events_queue_key),
    )
