"""Pytest configuration and fixtures."""

from __future__ import annotations

from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from aptos_trade_indexer.ingestor.models import (
    Message,
    MessageCreated,
    MessageUpdated,
    PoolCreated,
    PoolCreation,
    PoolState,
    PoolStateUpdated,
    Swap,
    SwapOccurred,
    Trade,
    TradeCancelled,
    TradeCompleted,
    TradeCreated,
    TradeStatus,
    TradeType,
    TradeUpdated,
)
from aptos_trade_indexer.ingestor.numeric import DecimalString
from aptos_trade_indexer.storage.models import Base

TRADER_A = "0x" + "a" * 64
TRADER_B = "0x" + "b" * 64
POOL_P = "0x" + "c" * 64


# ============================================================================
# Database fixtures
# ============================================================================


@pytest.fixture
async def async_engine():
    """Create an in-memory async SQLite engine shared by every session."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=async_engine, expire_on_commit=False)


@pytest.fixture
async def async_session(session_factory) -> AsyncSession:
    """Create an async session for testing."""
    async with session_factory() as session:
        yield session


# ============================================================================
# Event builders
# ============================================================================


def make_trade(
    trade_obj_addr: str = "0xt1",
    *,
    trader: str = TRADER_A,
    trade_type: int = TradeType.BUY,
    price: int = 100,
    status: int = TradeStatus.PENDING,
    ts: int = 1_700_000_000,
    amount_from: int = 1_000,
    amount_to: int = 10,
    notes: str = "",
) -> Trade:
    return Trade(
        trade_obj_addr=trade_obj_addr,
        trader_addr=trader,
        trade_type=int(trade_type),
        token_from="0x1::aptos_coin::AptosCoin",
        token_to="0xdead::usdc::USDC",
        amount_from=amount_from,
        amount_to=amount_to,
        price=price,
        status=int(status),
        creation_timestamp=ts,
        last_update_timestamp=ts,
        notes=notes,
    )


def trade_created(version: int, idx: int = 0, **kwargs: Any) -> TradeCreated:
    return TradeCreated(version, idx, make_trade(**kwargs))


def trade_updated(version: int, idx: int = 0, **kwargs: Any) -> TradeUpdated:
    return TradeUpdated(version, idx, make_trade(**kwargs))


def trade_completed(version: int, idx: int = 0, **kwargs: Any) -> TradeCompleted:
    kwargs.setdefault("status", TradeStatus.COMPLETED)
    return TradeCompleted(version, idx, make_trade(**kwargs))


def trade_cancelled(version: int, idx: int = 0, **kwargs: Any) -> TradeCancelled:
    kwargs.setdefault("status", TradeStatus.CANCELLED)
    return TradeCancelled(version, idx, make_trade(**kwargs))


def make_message(
    message_obj_addr: str = "0xm1",
    *,
    creator: str = TRADER_A,
    content: str = "gm",
    ts: int = 1_700_000_000,
) -> Message:
    return Message(
        message_obj_addr=message_obj_addr,
        creator_addr=creator,
        content=content,
        creation_timestamp=ts,
        last_update_timestamp=ts,
    )


def message_created(version: int, idx: int = 0, **kwargs: Any) -> MessageCreated:
    return MessageCreated(version, idx, make_message(**kwargs))


def message_updated(version: int, idx: int = 0, **kwargs: Any) -> MessageUpdated:
    return MessageUpdated(version, idx, make_message(**kwargs))


def pool_created(version: int, idx: int = 0, *, pool: str = POOL_P, ts: int = 1_700_000_000) -> PoolCreated:
    return PoolCreated(
        version,
        idx,
        PoolCreation(
            pool_address=pool,
            token0_address="0x1::aptos_coin::AptosCoin",
            token1_address="0xdead::usdc::USDC",
            token0_symbol="APT",
            token1_symbol="USDC",
            fee_tier=3000,
            tick_spacing=60,
            sqrt_price_x96=DecimalString("79228162514264337593543950336"),
            tick=0,
            timestamp=ts,
        ),
    )


def pool_state_updated(
    version: int,
    idx: int = 0,
    *,
    pool: str = POOL_P,
    liquidity: str = "1000",
    tick: int = 0,
    ts: int = 1_700_000_000,
) -> PoolStateUpdated:
    return PoolStateUpdated(
        version,
        idx,
        PoolState(
            pool_address=pool,
            liquidity=DecimalString(liquidity),
            sqrt_price_x96=DecimalString("79228162514264337593543950336"),
            tick=tick,
            timestamp=ts,
        ),
    )


def swap_occurred(
    version: int,
    idx: int = 0,
    *,
    pool: str = POOL_P,
    sender: str = TRADER_A,
    amount_in: str = "1000",
    amount_out: str = "2000",
    ts: int = 1_700_000_000,
) -> SwapOccurred:
    return SwapOccurred(
        version,
        idx,
        Swap(
            pool_address=pool,
            sender=sender,
            recipient=sender,
            token_in="0x1::aptos_coin::AptosCoin",
            token_out="0xdead::usdc::USDC",
            amount_in=DecimalString(amount_in),
            amount_out=DecimalString(amount_out),
            sqrt_price_x96=DecimalString("79228162514264337593543950336"),
            liquidity=DecimalString("340282366920938463463374607431768211455"),
            tick=-12,
            timestamp=ts,
        ),
    )
