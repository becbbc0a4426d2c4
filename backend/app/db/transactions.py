from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

T = TypeVar("T")


class TransactionalSession:
    """A database session that runs units of work as single all-or-nothing transactions.

    The wrapped ``AsyncSession`` is handed to the unit of work so every repository call
    inside it shares the same transaction.
    """

    def __init__(self, session: AsyncSession, *, timeout_seconds: float | None = None) -> None:
        self.session = session
        self._timeout_seconds = timeout_seconds

    async def with_transaction(self, fn: Callable[[AsyncSession], Awaitable[T]]) -> T:
        """Run ``fn`` in a transaction: commit on return, roll back on any exception.

        When the provider has a timeout and it expires, the transaction is rolled back and
        ``TimeoutError`` is raised.
        """
        async with asyncio.timeout(self._timeout_seconds):
            async with self.session.begin():
                return await fn(self.session)


class TransactionalSessionProvider:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        timeout_seconds: float | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._timeout_seconds = timeout_seconds if timeout_seconds and timeout_seconds > 0 else None

    @asynccontextmanager
    async def start_session(self) -> AsyncIterator[TransactionalSession]:
        async with self._session_factory() as session:
            yield TransactionalSession(session, timeout_seconds=self._timeout_seconds)
