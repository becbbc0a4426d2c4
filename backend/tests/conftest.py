import os
import uuid
from collections import defaultdict
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import datetime
from decimal import Decimal
from pathlib import Path

import pytest

# Keep pytest output high-signal by disabling outbound Sentry capture in tests.
os.environ["SENTRY_DSN"] = ""
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ANALYTICS_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "")

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402

from app.core import metrics  # noqa: E402
from app.db.analytics_schema import ensure_analytics_schema  # noqa: E402
from app.db.base import Base  # noqa: E402
from app.db.session import build_engine, build_sessionmaker  # noqa: E402
from app.db.transactions import TransactionalSessionProvider  # noqa: E402
from app.models.order import Order  # noqa: E402
from app.models.promo import PromoCode  # noqa: E402
from app.schemas.events import PromoCodeAppliedEvent  # noqa: E402
from app.services.promo_usage import SqlUsageAnalyticsReader  # noqa: E402
from app.services.redemption import RedemptionService  # noqa: E402
from app.services.redemption_errors import EventPublishError  # noqa: E402


SessionFactory = async_sessionmaker[AsyncSession]


@pytest.fixture(scope="module")
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


def _sqlite_url(path: Path) -> str:
    return f"sqlite+aiosqlite:///{path}"


@pytest.fixture
def primary_db_path(tmp_path: Path) -> Path:
    return tmp_path / "primary.db"


@pytest.fixture
async def primary_sessions(primary_db_path: Path) -> AsyncIterator[SessionFactory]:
    engine = build_engine(_sqlite_url(primary_db_path))
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield build_sessionmaker(engine)
    await engine.dispose()


@pytest.fixture
async def unserialized_primary_sessions(
    primary_sessions: SessionFactory, primary_db_path: Path
) -> AsyncIterator[SessionFactory]:
    """Second engine on the primary file without eager write locks, so transactions interleave."""
    engine = build_engine(_sqlite_url(primary_db_path), serialize_sqlite_writes=False)
    yield build_sessionmaker(engine)
    await engine.dispose()


@pytest.fixture
async def analytics_sessions(tmp_path: Path) -> AsyncIterator[SessionFactory]:
    engine = build_engine(_sqlite_url(tmp_path / "analytics.db"), serialize_sqlite_writes=False)
    await ensure_analytics_schema(engine)
    yield build_sessionmaker(engine)
    await engine.dispose()


class RecordingPublisher:
    def __init__(self) -> None:
        self.events: list[PromoCodeAppliedEvent] = []
        self.fail_with: Exception | None = None

    async def publish(self, event: PromoCodeAppliedEvent) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.events.append(event)


class StaticUsageReader:
    def __init__(self) -> None:
        self.counts: dict[tuple[uuid.UUID, uuid.UUID], int] = defaultdict(int)

    async def get_user_promo_code_usage_count(self, user_id: uuid.UUID, promo_code_id: uuid.UUID) -> int:
        return self.counts[(user_id, promo_code_id)]


class RedisStub:
    """The slice of redis.asyncio.Redis the publisher and the worker use."""

    def __init__(self) -> None:
        self.lists: dict[str, list[str]] = defaultdict(list)
        self.fail_with: Exception | None = None

    async def rpush(self, key: str, *values: str) -> int:
        if self.fail_with is not None:
            raise self.fail_with
        self.lists[key].extend(values)
        return len(self.lists[key])

    async def blpop(self, keys: list[str], timeout: int = 0):
        for key in keys:
            if self.lists[key]:
                return key, self.lists[key].pop(0)
        return None


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def failing_publisher() -> RecordingPublisher:
    publisher = RecordingPublisher()
    publisher.fail_with = EventPublishError("queue unavailable")
    return publisher


@pytest.fixture
def redis_stub() -> RedisStub:
    return RedisStub()


@pytest.fixture
def usage_reader() -> StaticUsageReader:
    return StaticUsageReader()


@pytest.fixture
def make_service(
    primary_sessions: SessionFactory, analytics_sessions: SessionFactory, publisher: RecordingPublisher
) -> Callable[..., RedemptionService]:
    def _make(
        *,
        publisher=publisher,
        usage_reader=None,
        timeout_seconds: float | None = None,
        sessions: SessionFactory | None = None,
    ) -> RedemptionService:
        return RedemptionService(
            sessions=TransactionalSessionProvider(sessions or primary_sessions, timeout_seconds=timeout_seconds),
            usage_reader=usage_reader or SqlUsageAnalyticsReader(analytics_sessions),
            publisher=publisher,
        )

    return _make


@pytest.fixture
def service(make_service: Callable[..., RedemptionService]) -> RedemptionService:
    return make_service()


@pytest.fixture
def seed_promo_code(primary_sessions: SessionFactory) -> Callable[..., Awaitable[PromoCode]]:
    async def _seed(
        *,
        code: str = "SUMMER2024",
        discount_percent: Decimal | int = 20,
        total_limit: int = 100,
        per_user_limit: int = 1,
        used_count: int = 0,
        is_active: bool = True,
        starts_at: datetime | None = None,
        ends_at: datetime | None = None,
    ) -> PromoCode:
        async with primary_sessions() as session:
            promo = PromoCode(
                code=code.upper(),
                discount_percent=Decimal(discount_percent),
                total_limit=total_limit,
                per_user_limit=per_user_limit,
                used_count=used_count,
                is_active=is_active,
                starts_at=starts_at,
                ends_at=ends_at,
            )
            session.add(promo)
            await session.commit()
            return promo

    return _seed


@pytest.fixture
def seed_order(primary_sessions: SessionFactory) -> Callable[..., Awaitable[Order]]:
    async def _seed(*, amount: Decimal | int = 500, user_id: uuid.UUID | None = None) -> Order:
        async with primary_sessions() as session:
            order = Order(user_id=user_id or uuid.uuid4(), amount=Decimal(amount))
            session.add(order)
            await session.commit()
            return order

    return _seed


@pytest.fixture
def load_promo_code(primary_sessions: SessionFactory) -> Callable[[uuid.UUID], Awaitable[PromoCode]]:
    async def _load(promo_code_id: uuid.UUID) -> PromoCode:
        async with primary_sessions() as session:
            promo = await session.get(PromoCode, promo_code_id)
            assert promo is not None
            return promo

    return _load


@pytest.fixture
def load_order(primary_sessions: SessionFactory) -> Callable[[uuid.UUID], Awaitable[Order]]:
    async def _load(order_id: uuid.UUID) -> Order:
        async with primary_sessions() as session:
            order = await session.get(Order, order_id)
            assert order is not None
            return order

    return _load
