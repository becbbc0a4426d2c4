from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import settings


def _install_sqlite_write_lock(engine: AsyncEngine) -> None:
    # pysqlite/aiosqlite defer BEGIN until the first write, so two transactions can both
    # read and then collide on the upgrade to a write lock. Take the write lock up front
    # and let the busy timeout queue concurrent writers instead.
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record) -> None:  # type: ignore[no-untyped-def]
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn) -> None:  # type: ignore[no-untyped-def]
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: str, *, serialize_sqlite_writes: bool = True) -> AsyncEngine:
    """Create an async engine; SQLite engines get a busy timeout and, optionally, eager write locks."""
    is_sqlite = url.startswith("sqlite")
    connect_args = {"timeout": settings.sqlite_busy_timeout_seconds} if is_sqlite else {}
    engine = create_async_engine(url, future=True, echo=False, connect_args=connect_args)
    if is_sqlite and serialize_sqlite_writes:
        _install_sqlite_write_lock(engine)
    return engine


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False, class_=AsyncSession)


engine = build_engine(settings.database_url)
SessionLocal = build_sessionmaker(engine)

analytics_engine = build_engine(settings.analytics_database_url, serialize_sqlite_writes=False)
AnalyticsSessionLocal = build_sessionmaker(analytics_engine)
