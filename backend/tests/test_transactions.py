import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import select

from app.db.transactions import TransactionalSessionProvider
from app.models.promo import PromoCode


def _promo(code: str) -> PromoCode:
    return PromoCode(code=code, discount_percent=Decimal("10"), total_limit=5, per_user_limit=1)


async def _codes(session_factory) -> list[str]:
    async with session_factory() as session:
        return list((await session.execute(select(PromoCode.code).order_by(PromoCode.code))).scalars())


@pytest.mark.anyio
async def test_with_transaction_commits_on_success(primary_sessions) -> None:
    provider = TransactionalSessionProvider(primary_sessions)

    async def _work(session) -> str:
        session.add(_promo("KEEP"))
        return "done"

    async with provider.start_session() as tx:
        assert await tx.with_transaction(_work) == "done"

    assert await _codes(primary_sessions) == ["KEEP"]


@pytest.mark.anyio
async def test_with_transaction_rolls_back_on_error(primary_sessions) -> None:
    provider = TransactionalSessionProvider(primary_sessions)

    async def _work(session) -> None:
        session.add(_promo("DROP"))
        await session.flush()
        raise ValueError("boom")

    async with provider.start_session() as tx:
        with pytest.raises(ValueError, match="boom"):
            await tx.with_transaction(_work)

    assert await _codes(primary_sessions) == []


@pytest.mark.anyio
async def test_with_transaction_times_out_and_rolls_back(primary_sessions) -> None:
    provider = TransactionalSessionProvider(primary_sessions, timeout_seconds=0.05)

    async def _work(session) -> None:
        session.add(_promo("LATE"))
        await session.flush()
        await asyncio.sleep(5)

    async with provider.start_session() as tx:
        with pytest.raises(TimeoutError):
            await tx.with_transaction(_work)

    assert await _codes(primary_sessions) == []


@pytest.mark.anyio
async def test_session_can_run_several_transactions(primary_sessions) -> None:
    provider = TransactionalSessionProvider(primary_sessions, timeout_seconds=0)

    async with provider.start_session() as tx:
        await tx.with_transaction(lambda session: _add(session, "ONE"))
        await tx.with_transaction(lambda session: _add(session, "TWO"))

    assert await _codes(primary_sessions) == ["ONE", "TWO"]


async def _add(session, code: str) -> None:
    session.add(_promo(code))
