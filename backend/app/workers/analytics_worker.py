"""Materializes queued domain events into the analytics read model.

Delivery is at-least-once: a record can arrive more than once (a retry after a partial
failure, a replay from the dead-letter list), so every handler is idempotent.
Failed records are re-queued with ``attempt + 1``; after ``analytics_event_max_attempts``
they move to the dead-letter list for manual follow-up.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from pydantic import ValidationError
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core import metrics
from app.core.config import settings
from app.core.logging_config import configure_logging
from app.core.redis_client import close_redis, get_redis
from app.db.analytics_schema import ensure_analytics_schema
from app.db.session import AnalyticsSessionLocal, analytics_engine
from app.schemas.events import EventEnvelope, PromoCodeAppliedEvent
from app.services import promo_usage
from app.services.events import PROMO_CODE_APPLIED, dump_envelope, parse_envelope


logger = logging.getLogger(__name__)
QUEUE_KEY = settings.events_queue_key
DEAD_LETTER_KEY = settings.events_dead_letter_key
MAX_ATTEMPTS = max(1, int(settings.analytics_event_max_attempts))

EventHandler = Callable[[AsyncSession, EventEnvelope], Awaitable[bool]]


async def _handle_promo_code_applied(session: AsyncSession, envelope: EventEnvelope) -> bool:
    event = PromoCodeAppliedEvent.model_validate(envelope.payload)
    return await promo_usage.record_promo_code_usage(session, event)


HANDLERS: dict[str, EventHandler] = {
    PROMO_CODE_APPLIED: _handle_promo_code_applied,
}


async def process_envelope(
    envelope: EventEnvelope,
    *,
    redis: Redis,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> None:
    handler = HANDLERS.get(envelope.type)
    if handler is None:
        logger.warning("analytics_event_unhandled", extra={"event_type": envelope.type, "event_id": str(envelope.id)})
        return
    factory = session_factory or AnalyticsSessionLocal
    try:
        async with factory() as session:
            recorded = await handler(session, envelope)
    except ValidationError:
        logger.warning("analytics_event_payload_invalid", extra={"event_type": envelope.type, "event_id": str(envelope.id)})
        return
    except Exception:
        logger.exception(
            "analytics_event_failed",
            extra={"event_type": envelope.type, "event_id": str(envelope.id), "attempt": envelope.attempt},
        )
        await _retry_or_dead_letter(envelope, redis=redis)
        return

    if recorded:
        metrics.record_event_consumed()
    else:
        metrics.record_event_duplicate()
        logger.info("analytics_event_duplicate", extra={"event_type": envelope.type, "event_id": str(envelope.id)})


async def _retry_or_dead_letter(envelope: EventEnvelope, *, redis: Redis) -> None:
    next_attempt = envelope.attempt + 1
    if next_attempt >= MAX_ATTEMPTS:
        metrics.record_event_dead_lettered()
        logger.error(
            "analytics_event_dead_lettered",
            extra={"event_type": envelope.type, "event_id": str(envelope.id), "attempts": next_attempt},
        )
        await redis.rpush(DEAD_LETTER_KEY, dump_envelope(envelope))
        return
    retry = envelope.model_copy(update={"attempt": next_attempt})
    await redis.rpush(QUEUE_KEY, dump_envelope(retry))


async def run_once(
    redis: Redis,
    *,
    poll_interval_seconds: float,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> bool:
    """Pop and process at most one record; returns False when the queue was empty."""
    result = await redis.blpop([QUEUE_KEY], timeout=max(1, int(poll_interval_seconds)))
    if not result:
        return False
    _, raw = result
    envelope = parse_envelope(raw)
    if envelope is not None:
        await process_envelope(envelope, redis=redis, session_factory=session_factory)
    return True


async def run_analytics_worker(poll_interval_seconds: float | None = None) -> None:
    redis = get_redis()
    if redis is None:
        raise RuntimeError("REDIS_URL must be set to run the analytics worker")
    interval = float(poll_interval_seconds or settings.analytics_worker_poll_seconds)
    await ensure_analytics_schema(analytics_engine)
    logger.info("analytics_worker_started", extra={"queue": QUEUE_KEY})
    try:
        while True:
            try:
                await run_once(redis, poll_interval_seconds=interval)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("analytics_worker_loop_error")
                await asyncio.sleep(max(0.5, interval))
    finally:
        await close_redis()


def main() -> None:  # pragma: no cover
    configure_logging(settings.log_json)
    asyncio.run(run_analytics_worker())


if __name__ == "__main__":  # pragma: no cover
    main()
