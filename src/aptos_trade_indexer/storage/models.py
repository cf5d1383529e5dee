"""SQLAlchemy models for persistent storage.

This module defines the database schema for materialized trades, messages,
pools and swaps, the statistics derived from them, contract upgrade history,
and the processor checkpoint.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    Index,
    Integer,
    LargeBinary,
    SmallInteger,
    String,
    Text,
)
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from aptos_trade_indexer.ingestor.numeric import DecimalString


class DecimalStringType(TypeDecorator[DecimalString]):
    """Stores a ``DecimalString`` as text so values beyond u64 survive unaltered."""

    impl = String(120)
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Dialect) -> str | None:
        if value is None:
            return None
        if isinstance(value, DecimalString):
            return str(value)
        return str(DecimalString(str(value)))

    def process_result_value(self, value: Any, dialect: Dialect) -> DecimalString | None:
        if value is None:
            return None
        return DecimalString(value)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class MessageModel(Base):
    __tablename__ = "messages"

    message_obj_addr: Mapped[str] = mapped_column(String(300), primary_key=True)
    creator_addr: Mapped[str] = mapped_column(String(300), nullable=False)
    creation_timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    last_update_timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    last_update_version: Mapped[int] = mapped_column(BigInteger, nullable=False)
    last_update_event_idx: Mapped[int] = mapped_column(BigInteger, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (Index("idx_messages_creator", "creator_addr"),)


class UserStatModel(Base):
    """Cumulative message-board activity per user."""

    __tablename__ = "user_stats"

    user_addr: Mapped[str] = mapped_column(String(300), primary_key=True)
    creation_timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    last_update_timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_messages: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    updated_messages: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    s1_points: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_points: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class TradeModel(Base):
    """Trade objects, one row per on-chain trade address."""

    __tablename__ = "trades"

    trade_obj_addr: Mapped[str] = mapped_column(String(300), primary_key=True)
    trader_addr: Mapped[str] = mapped_column(String(300), nullable=False)
    trade_type: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    token_from: Mapped[str] = mapped_column(String(100), nullable=False)
    token_to: Mapped[str] = mapped_column(String(100), nullable=False)
    amount_from: Mapped[int] = mapped_column(BigInteger, nullable=False)
    amount_to: Mapped[int] = mapped_column(BigInteger, nullable=False)
    price: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    creation_timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    last_update_timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    # (version, event index) of the last applied event; never moves backwards.
    last_update_version: Mapped[int] = mapped_column(BigInteger, nullable=False)
    last_update_event_idx: Mapped[int] = mapped_column(BigInteger, nullable=False)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")

    __table_args__ = (
        Index("idx_trades_trader", "trader_addr"),
        Index("idx_trades_status", "status"),
    )


class TraderStatModel(Base):
    """Cumulative trading activity per trader."""

    __tablename__ = "trader_stats"

    trader_addr: Mapped[str] = mapped_column(String(300), primary_key=True)
    creation_timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    last_update_timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    total_trades: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    completed_trades: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    cancelled_trades: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_buy_trades: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_sell_trades: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_swap_trades: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_volume: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    points: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    __table_args__ = (Index("idx_trader_stats_points", "points"),)


class HyperionPoolModel(Base):
    """Concentrated-liquidity pool snapshot."""

    __tablename__ = "hyperion_pools"

    pool_address: Mapped[str] = mapped_column(String(300), primary_key=True)
    token0_address: Mapped[str] = mapped_column(String(300), nullable=False)
    token1_address: Mapped[str] = mapped_column(String(300), nullable=False)
    token0_symbol: Mapped[str] = mapped_column(String(100), nullable=False)
    token1_symbol: Mapped[str] = mapped_column(String(100), nullable=False)
    fee_tier: Mapped[int] = mapped_column(Integer, nullable=False)
    tick_spacing: Mapped[int] = mapped_column(Integer, nullable=False)
    liquidity: Mapped[DecimalString] = mapped_column(DecimalStringType, nullable=False)
    sqrt_price_x96: Mapped[DecimalString] = mapped_column(DecimalStringType, nullable=False)
    tick: Mapped[int] = mapped_column(Integer, nullable=False)
    creation_timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    last_update_timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    last_update_version: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __table_args__ = (Index("idx_hyperion_pools_tokens", "token0_address", "token1_address"),)


class HyperionSwapModel(Base):
    """Executed swaps; ``swap_id`` is ``{pool}-{version}-{event_idx}``."""

    __tablename__ = "hyperion_swaps"

    swap_id: Mapped[str] = mapped_column(String(400), primary_key=True)
    pool_address: Mapped[str] = mapped_column(String(300), nullable=False)
    sender: Mapped[str] = mapped_column(String(300), nullable=False)
    recipient: Mapped[str] = mapped_column(String(300), nullable=False)
    token_in: Mapped[str] = mapped_column(String(300), nullable=False)
    token_out: Mapped[str] = mapped_column(String(300), nullable=False)
    amount_in: Mapped[DecimalString] = mapped_column(DecimalStringType, nullable=False)
    amount_out: Mapped[DecimalString] = mapped_column(DecimalStringType, nullable=False)
    sqrt_price_x96_after: Mapped[DecimalString] = mapped_column(DecimalStringType, nullable=False)
    liquidity_after: Mapped[DecimalString] = mapped_column(DecimalStringType, nullable=False)
    tick_after: Mapped[int] = mapped_column(Integer, nullable=False)
    tx_version: Mapped[int] = mapped_column(BigInteger, nullable=False)
    event_idx: Mapped[int] = mapped_column(BigInteger, nullable=False)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __table_args__ = (
        Index("idx_hyperion_swaps_pool_ts", "pool_address", "timestamp"),
        Index("idx_hyperion_swaps_version", "tx_version"),
    )


class HyperionPoolStatModel(Base):
    """Rolling pool statistics derived from ``hyperion_swaps``."""

    __tablename__ = "hyperion_pool_stats"

    pool_address: Mapped[str] = mapped_column(String(300), primary_key=True)
    tvl_usd: Mapped[DecimalString] = mapped_column(DecimalStringType, nullable=False)
    volume_24h: Mapped[DecimalString] = mapped_column(DecimalStringType, nullable=False)
    volume_7d: Mapped[DecimalString] = mapped_column(DecimalStringType, nullable=False)
    fees_24h: Mapped[DecimalString] = mapped_column(DecimalStringType, nullable=False)
    fees_7d: Mapped[DecimalString] = mapped_column(DecimalStringType, nullable=False)
    apr: Mapped[DecimalString] = mapped_column(DecimalStringType, nullable=False)
    swap_count_24h: Mapped[int] = mapped_column(BigInteger, nullable=False)
    swap_count_7d: Mapped[int] = mapped_column(BigInteger, nullable=False)
    unique_traders_24h: Mapped[int] = mapped_column(BigInteger, nullable=False)
    unique_traders_7d: Mapped[int] = mapped_column(BigInteger, nullable=False)
    last_price: Mapped[DecimalString] = mapped_column(DecimalStringType, nullable=False)
    price_change_24h: Mapped[DecimalString] = mapped_column(DecimalStringType, nullable=False)
    last_update_timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)


class ModuleUpgradeModel(Base):
    """Append-only module upgrade history."""

    __tablename__ = "module_upgrade_history"

    module_addr: Mapped[str] = mapped_column(String(300), primary_key=True)
    module_name: Mapped[str] = mapped_column(String(300), primary_key=True)
    upgrade_number: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    module_bytecode: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    module_source_code: Mapped[str] = mapped_column(Text, nullable=False)
    module_abi: Mapped[Any] = mapped_column(JSON, nullable=False)
    tx_version: Mapped[int] = mapped_column(BigInteger, nullable=False)


class PackageUpgradeModel(Base):
    """Append-only package upgrade history."""

    __tablename__ = "package_upgrade_history"

    package_addr: Mapped[str] = mapped_column(String(300), primary_key=True)
    package_name: Mapped[str] = mapped_column(String(300), primary_key=True)
    upgrade_number: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    upgrade_policy: Mapped[int] = mapped_column(BigInteger, nullable=False)
    package_manifest: Mapped[str] = mapped_column(Text, nullable=False)
    source_digest: Mapped[str] = mapped_column(Text, nullable=False)
    tx_version: Mapped[int] = mapped_column(BigInteger, nullable=False)


class ProcessorStatusModel(Base):
    """Resume position per logical consumer."""

    __tablename__ = "processor_status"

    processor: Mapped[str] = mapped_column(String(50), primary_key=True)
    last_success_version: Mapped[int] = mapped_column(BigInteger, nullable=False)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_transaction_timestamp: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class StatWatermarkModel(Base):
    """Highest version whose statistic deltas were committed, per event kind.

    Written in the same transaction as the deltas it covers.
    """

    __tablename__ = "stat_watermarks"

    processor: Mapped[str] = mapped_column(String(50), primary_key=True)
    event_kind: Mapped[str] = mapped_column(String(50), primary_key=True)
    last_applied_version: Mapped[int] = mapped_column(BigInteger, nullable=False)
