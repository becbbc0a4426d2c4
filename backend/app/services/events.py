from __future__ import annotations

import logging
import uuid
from typing import Protocol

from pydantic import ValidationError
from redis.asyncio import Redis

from app.core.redis_client import json_dumps, json_loads
from app.schemas.events import EventEnvelope, PromoCodeAppliedEvent
from app.services.redemption_errors import EventPublishError

logger = logging.getLogger(__name__)

PROMO_CODE_APPLIED = "PromoCodeAppliedEvent"


class EventPublisher(Protocol):
    async def publish(self, event: PromoCodeAppliedEvent) -> None: ...


def build_envelope(event: PromoCodeAppliedEvent, *, attempt: int = 0) -> EventEnvelope:
    return EventEnvelope(
        id=uuid.uuid4(),
        type=PROMO_CODE_APPLIED,
        attempt=attempt,
        payload=event.model_dump(mode="json", by_alias=True),
    )


def dump_envelope(envelope: EventEnvelope) -> str:
    return json_dumps(envelope.model_dump(mode="json", by_alias=True))


def parse_envelope(raw: str | bytes) -> EventEnvelope | None:
    """Decode a queue record; malformed records are logged and yield None."""
    try:
        return EventEnvelope.model_validate(json_loads(raw))
    except (ValueError, ValidationError):
        logger.warning("event_envelope_invalid", extra={"raw_repr": repr(raw)[:500]})
        return None


class RedisEventPublisher:
    """Durable channel: events are appended to a Redis list consumed by the analytics worker."""

    def __init__(self, redis: Redis | None, *, queue_key: str) -> None:
        self._redis = redis
        self._queue_key = queue_key

    async def publish(self, event: PromoCodeAppliedEvent) -> None:
        if self._redis is None:
            raise EventPublishError("Event queue is not configured (REDIS_URL is empty)")
        envelope = build_envelope(event)
        try:
            await self._redis.rpush(self._queue_key, dump_envelope(envelope))
        except Exception as exc:
            raise EventPublishError(f"Failed to publish {envelope.type}") from exc
        logger.debug("event_published", extra={"event_type": envelope.type, "event_id": str(envelope.id)})
