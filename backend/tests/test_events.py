import json
import uuid
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from app.schemas.events import PromoCodeAppliedEvent
from app.services import events
from app.services.redemption_errors import EventPublishError


def _event() -> PromoCodeAppliedEvent:
    return PromoCodeAppliedEvent(
        promo_code_id=uuid.uuid4(),
        promo_code="SUMMER2024",
        user_id=uuid.uuid4(),
        order_id=uuid.uuid4(),
        order_amount=Decimal("500"),
        discount_amount=Decimal("100"),
        created_at=datetime(2024, 7, 1, 12, 0, tzinfo=timezone.utc),
    )


@pytest.mark.anyio
async def test_publish_appends_camel_case_envelope(redis_stub) -> None:
    event = _event()
    publisher = events.RedisEventPublisher(redis_stub, queue_key="events:test")

    await publisher.publish(event)

    (raw,) = redis_stub.lists["events:test"]
    record = json.loads(raw)
    assert record["type"] == "PromoCodeAppliedEvent"
    assert record["attempt"] == 0
    uuid.UUID(record["id"])
    payload = record["payload"]
    assert payload == {
        "promoCodeId": str(event.promo_code_id),
        "promoCode": "SUMMER2024",
        "userId": str(event.user_id),
        "orderId": str(event.order_id),
        "orderAmount": 500.0,
        "discountAmount": 100.0,
        "createdAt": "2024-07-01T12:00:00Z",
    }


@pytest.mark.anyio
async def test_publish_without_redis_raises() -> None:
    publisher = events.RedisEventPublisher(None, queue_key="events:test")

    with pytest.raises(EventPublishError):
        await publisher.publish(_event())


@pytest.mark.anyio
async def test_publish_wraps_transport_errors(redis_stub) -> None:
    redis_stub.fail_with = ConnectionError("redis down")
    publisher = events.RedisEventPublisher(redis_stub, queue_key="events:test")

    with pytest.raises(EventPublishError) as exc_info:
        await publisher.publish(_event())

    assert isinstance(exc_info.value.__cause__, ConnectionError)


def test_envelope_round_trips_payload() -> None:
    event = _event()
    envelope = events.build_envelope(event, attempt=2)

    parsed = events.parse_envelope(events.dump_envelope(envelope))

    assert parsed is not None
    assert parsed.id == envelope.id
    assert parsed.attempt == 2
    assert PromoCodeAppliedEvent.model_validate(parsed.payload) == event


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        json.dumps({"type": "PromoCodeAppliedEvent", "payload": {}}),
        json.dumps({"id": str(uuid.uuid4()), "type": "", "payload": {}}),
        json.dumps({"id": str(uuid.uuid4()), "type": "X", "attempt": -1, "payload": {}}),
    ],
)
def test_parse_envelope_rejects_malformed_records(raw: str) -> None:
    assert events.parse_envelope(raw) is None
