"""Repository pattern implementations for data access.

This module provides the row DTOs written by the persister and clean data
access for trades, statistics, pools, checkpoints and stat watermarks.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select, update

from aptos_trade_indexer.ingestor.models import (
    DEFAULT_FEE_TIER,
    DEFAULT_TICK_SPACING,
    MessageEvent,
    ModuleUpgraded,
    PackageUpgraded,
    PoolCreated,
    PoolStateUpdated,
    SwapOccurred,
    TradeCancelled,
    TradeCompleted,
    TradeEvent,
    TradeStatus,
)
from aptos_trade_indexer.ingestor.numeric import DECIMAL_CONTEXT, DecimalString
from aptos_trade_indexer.storage.models import (
    HyperionPoolModel,
    HyperionPoolStatModel,
    HyperionSwapModel,
    MessageModel,
    ProcessorStatusModel,
    StatWatermarkModel,
    TradeModel,
    TraderStatModel,
    UserStatModel,
)
from aptos_trade_indexer.storage.upsert import ConflictPolicy, dialect_insert, upsert_rows

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

SECONDS_24H = 24 * 3600
SECONDS_7D = 7 * SECONDS_24H
FEE_TIER_DENOMINATOR = Decimal(1_000_000)
PRICE_QUANTUM = Decimal("1e-18")


class StaleWatermarkError(Exception):
    """Raised when a stat watermark changed between read and compare-and-set."""


# ============================================================================
# Row DTOs
# ============================================================================


@dataclass
class TradeDTO:
    """Data transfer object for trades."""

    trade_obj_addr: str
    trader_addr: str
    trade_type: int
    token_from: str
    token_to: str
    amount_from: int
    amount_to: int
    price: int
    status: int
    creation_timestamp: int
    last_update_timestamp: int
    last_update_version: int
    last_update_event_idx: int
    notes: str

    @classmethod
    def from_event(cls, event: TradeEvent) -> TradeDTO:
        trade = event.trade
        status = trade.status
        if not status:
            if isinstance(event, TradeCompleted):
                status = TradeStatus.COMPLETED
            elif isinstance(event, TradeCancelled):
                status = TradeStatus.CANCELLED
            else:
                status = TradeStatus.PENDING
        return cls(
            trade_obj_addr=trade.trade_obj_addr,
            trader_addr=trade.trader_addr,
            trade_type=trade.trade_type,
            token_from=trade.token_from,
            token_to=trade.token_to,
            amount_from=trade.amount_from,
            amount_to=trade.amount_to,
            price=trade.price,
            status=int(status),
            creation_timestamp=trade.creation_timestamp,
            last_update_timestamp=trade.last_update_timestamp,
            last_update_version=event.version,
            last_update_event_idx=event.event_index,
            notes=trade.notes,
        )

    @classmethod
    def from_model(cls, model: TradeModel) -> TradeDTO:
        return cls(
            trade_obj_addr=model.trade_obj_addr,
            trader_addr=model.trader_addr,
            trade_type=model.trade_type,
            token_from=model.token_from,
            token_to=model.token_to,
            amount_from=model.amount_from,
            amount_to=model.amount_to,
            price=model.price,
            status=model.status,
            creation_timestamp=model.creation_timestamp,
            last_update_timestamp=model.last_update_timestamp,
            last_update_version=model.last_update_version,
            last_update_event_idx=model.last_update_event_idx,
            notes=model.notes,
        )

    @property
    def key(self) -> str:
        return self.trade_obj_addr

    def to_values(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class MessageDTO:
    """Data transfer object for message board entries."""

    message_obj_addr: str
    creator_addr: str
    creation_timestamp: int
    last_update_timestamp: int
    last_update_version: int
    last_update_event_idx: int
    content: str

    @classmethod
    def from_event(cls, event: MessageEvent) -> MessageDTO:
        message = event.message
        return cls(
            message_obj_addr=message.message_obj_addr,
            creator_addr=message.creator_addr,
            creation_timestamp=message.creation_timestamp,
            last_update_timestamp=message.last_update_timestamp,
            last_update_version=event.version,
            last_update_event_idx=event.event_index,
            content=message.content,
        )

    @classmethod
    def from_model(cls, model: MessageModel) -> MessageDTO:
        return cls(
            message_obj_addr=model.message_obj_addr,
            creator_addr=model.creator_addr,
            creation_timestamp=model.creation_timestamp,
            last_update_timestamp=model.last_update_timestamp,
            last_update_version=model.last_update_version,
            last_update_event_idx=model.last_update_event_idx,
            content=model.content,
        )

    @property
    def key(self) -> str:
        return self.message_obj_addr

    def to_values(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class HyperionPoolDTO:
    """Data transfer object for pools.

    A pool-state update only knows liquidity, price and tick; the remaining
    columns get placeholders that a later pool-created row fills in.
    """

    pool_address: str
    token0_address: str
    token1_address: str
    token0_symbol: str
    token1_symbol: str
    fee_tier: int
    tick_spacing: int
    liquidity: DecimalString
    sqrt_price_x96: DecimalString
    tick: int
    creation_timestamp: int
    last_update_timestamp: int
    last_update_version: int

    @classmethod
    def from_created(cls, event: PoolCreated) -> HyperionPoolDTO:
        pool = event.pool
        return cls(
            pool_address=pool.pool_address,
            token0_address=pool.token0_address,
            token1_address=pool.token1_address,
            token0_symbol=pool.token0_symbol,
            token1_symbol=pool.token1_symbol,
            fee_tier=pool.fee_tier,
            tick_spacing=pool.tick_spacing,
            liquidity=DecimalString.zero(),
            sqrt_price_x96=pool.sqrt_price_x96,
            tick=pool.tick,
            creation_timestamp=pool.timestamp,
            last_update_timestamp=pool.timestamp,
            last_update_version=event.version,
        )

    @classmethod
    def from_state_update(cls, event: PoolStateUpdated) -> HyperionPoolDTO:
        state = event.state
        return cls(
            pool_address=state.pool_address,
            token0_address="",
            token1_address="",
            token0_symbol="",
            token1_symbol="",
            fee_tier=DEFAULT_FEE_TIER,
            tick_spacing=DEFAULT_TICK_SPACING,
            liquidity=state.liquidity,
            sqrt_price_x96=state.sqrt_price_x96,
            tick=state.tick,
            creation_timestamp=state.timestamp,
            last_update_timestamp=state.timestamp,
            last_update_version=event.version,
        )

    @classmethod
    def from_model(cls, model: HyperionPoolModel) -> HyperionPoolDTO:
        return cls(
            pool_address=model.pool_address,
            token0_address=model.token0_address,
            token1_address=model.token1_address,
            token0_symbol=model.token0_symbol,
            token1_symbol=model.token1_symbol,
            fee_tier=model.fee_tier,
            tick_spacing=model.tick_spacing,
            liquidity=model.liquidity,
            sqrt_price_x96=model.sqrt_price_x96,
            tick=model.tick,
            creation_timestamp=model.creation_timestamp,
            last_update_timestamp=model.last_update_timestamp,
            last_update_version=model.last_update_version,
        )

    @property
    def key(self) -> str:
        return self.pool_address

    def to_values(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class HyperionSwapDTO:
    """Data transfer object for swaps."""

    swap_id: str
    pool_address: str
    sender: str
    recipient: str
    token_in: str
    token_out: str
    amount_in: DecimalString
    amount_out: DecimalString
    sqrt_price_x96_after: DecimalString
    liquidity_after: DecimalString
    tick_after: int
    tx_version: int
    event_idx: int
    timestamp: int

    @classmethod
    def from_event(cls, event: SwapOccurred) -> HyperionSwapDTO:
        swap = event.swap
        return cls(
            swap_id=event.swap_id,
            pool_address=swap.pool_address,
            sender=swap.sender,
            recipient=swap.recipient,
            token_in=swap.token_in,
            token_out=swap.token_out,
            amount_in=swap.amount_in,
            amount_out=swap.amount_out,
            sqrt_price_x96_after=swap.sqrt_price_x96,
            liquidity_after=swap.liquidity,
            tick_after=swap.tick,
            tx_version=event.version,
            event_idx=event.event_index,
            timestamp=swap.timestamp,
        )

    @classmethod
    def from_model(cls, model: HyperionSwapModel) -> HyperionSwapDTO:
        return cls(
            swap_id=model.swap_id,
            pool_address=model.pool_address,
            sender=model.sender,
            recipient=model.recipient,
            token_in=model.token_in,
            token_out=model.token_out,
            amount_in=model.amount_in,
            amount_out=model.amount_out,
            sqrt_price_x96_after=model.sqrt_price_x96_after,
            liquidity_after=model.liquidity_after,
            tick_after=model.tick_after,
            tx_version=model.tx_version,
            event_idx=model.event_idx,
            timestamp=model.timestamp,
        )

    @property
    def key(self) -> str:
        return self.swap_id

    def to_values(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ModuleUpgradeDTO:
    module_addr: str
    module_name: str
    upgrade_number: int
    module_bytecode: bytes
    module_source_code: str
    module_abi: Any
    tx_version: int

    @classmethod
    def from_event(cls, event: ModuleUpgraded) -> ModuleUpgradeDTO:
        upgrade = event.upgrade
        return cls(
            module_addr=upgrade.module_addr,
            module_name=upgrade.module_name,
            upgrade_number=upgrade.upgrade_number,
            module_bytecode=upgrade.module_bytecode,
            module_source_code=upgrade.module_source_code,
            module_abi=upgrade.module_abi,
            tx_version=event.version,
        )

    @property
    def key(self) -> str:
        return f"{self.module_addr}::{self.module_name}::{self.upgrade_number}"

    def to_values(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class PackageUpgradeDTO:
    package_addr: str
    package_name: str
    upgrade_number: int
    upgrade_policy: int
    package_manifest: str
    source_digest: str
    tx_version: int

    @classmethod
    def from_event(cls, event: PackageUpgraded) -> PackageUpgradeDTO:
        upgrade = event.upgrade
        return cls(
            package_addr=upgrade.package_addr,
            package_name=upgrade.package_name,
            upgrade_number=upgrade.upgrade_number,
            upgrade_policy=upgrade.upgrade_policy,
            package_manifest=upgrade.package_manifest,
            source_digest=upgrade.source_digest,
            tx_version=event.version,
        )

    @property
    def key(self) -> str:
        return f"{self.package_addr}::{self.package_name}::{self.upgrade_number}"

    def to_values(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class TraderStatDTO:
    """Data transfer object for stored trader statistics."""

    trader_addr: str
    creation_timestamp: int
    last_update_timestamp: int
    total_trades: int
    completed_trades: int
    cancelled_trades: int
    total_buy_trades: int
    total_sell_trades: int
    total_swap_trades: int
    total_volume: int
    points: int

    @classmethod
    def from_model(cls, model: TraderStatModel) -> TraderStatDTO:
        return cls(
            trader_addr=model.trader_addr,
            creation_timestamp=model.creation_timestamp,
            last_update_timestamp=model.last_update_timestamp,
            total_trades=model.total_trades,
            completed_trades=model.completed_trades,
            cancelled_trades=model.cancelled_trades,
            total_buy_trades=model.total_buy_trades,
            total_sell_trades=model.total_sell_trades,
            total_swap_trades=model.total_swap_trades,
            total_volume=model.total_volume,
            points=model.points,
        )


@dataclass
class UserStatDTO:
    user_addr: str
    creation_timestamp: int
    last_update_timestamp: int
    created_messages: int
    updated_messages: int
    s1_points: int
    total_points: int

    @classmethod
    def from_model(cls, model: UserStatModel) -> UserStatDTO:
        return cls(
            user_addr=model.user_addr,
            creation_timestamp=model.creation_timestamp,
            last_update_timestamp=model.last_update_timestamp,
            created_messages=model.created_messages,
            updated_messages=model.updated_messages,
            s1_points=model.s1_points,
            total_points=model.total_points,
        )


@dataclass
class HyperionPoolStatDTO:
    """Data transfer object for rolling pool statistics."""

    pool_address: str
    tvl_usd: DecimalString
    volume_24h: DecimalString
    volume_7d: DecimalString
    fees_24h: DecimalString
    fees_7d: DecimalString
    apr: DecimalString
    swap_count_24h: int
    swap_count_7d: int
    unique_traders_24h: int
    unique_traders_7d: int
    last_price: DecimalString
    price_change_24h: DecimalString
    last_update_timestamp: int

    @classmethod
    def from_model(cls, model: HyperionPoolStatModel) -> HyperionPoolStatDTO:
        return cls(
            pool_address=model.pool_address,
            tvl_usd=model.tvl_usd,
            volume_24h=model.volume_24h,
            volume_7d=model.volume_7d,
            fees_24h=model.fees_24h,
            fees_7d=model.fees_7d,
            apr=model.apr,
            swap_count_24h=model.swap_count_24h,
            swap_count_7d=model.swap_count_7d,
            unique_traders_24h=model.unique_traders_24h,
            unique_traders_7d=model.unique_traders_7d,
            last_price=model.last_price,
            price_change_24h=model.price_change_24h,
            last_update_timestamp=model.last_update_timestamp,
        )

    def to_values(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ProcessorStatusDTO:
    processor: str
    last_success_version: int
    last_updated: datetime
    last_transaction_timestamp: datetime | None = None

    @classmethod
    def from_model(cls, model: ProcessorStatusModel) -> ProcessorStatusDTO:
        return cls(
            processor=model.processor,
            last_success_version=model.last_success_version,
            last_updated=model.last_updated,
            last_transaction_timestamp=model.last_transaction_timestamp,
        )


# ============================================================================
# Repositories
# ============================================================================


class TradeRepository:
    """Read access to materialized trades and trader statistics."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, trade_obj_addr: str) -> TradeDTO | None:
        result = await self.session.execute(
            select(TradeModel).where(TradeModel.trade_obj_addr == trade_obj_addr)
        )
        model = result.scalar_one_or_none()
        return TradeDTO.from_model(model) if model else None

    async def get_trader_stat(self, trader_addr: str) -> TraderStatDTO | None:
        result = await self.session.execute(
            select(TraderStatModel).where(TraderStatModel.trader_addr == trader_addr)
        )
        model = result.scalar_one_or_none()
        return TraderStatDTO.from_model(model) if model else None


class MessageRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, message_obj_addr: str) -> MessageDTO | None:
        result = await self.session.execute(
            select(MessageModel).where(MessageModel.message_obj_addr == message_obj_addr)
        )
        model = result.scalar_one_or_none()
        return MessageDTO.from_model(model) if model else None

    async def get_user_stat(self, user_addr: str) -> UserStatDTO | None:
        result = await self.session.execute(
            select(UserStatModel).where(UserStatModel.user_addr == user_addr)
        )
        model = result.scalar_one_or_none()
        return UserStatDTO.from_model(model) if model else None


class HyperionPoolRepository:
    """Pools, swaps and the rolling statistics derived from swaps."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_pool(self, pool_address: str) -> HyperionPoolDTO | None:
        result = await self.session.execute(
            select(HyperionPoolModel).where(HyperionPoolModel.pool_address == pool_address)
        )
        model = result.scalar_one_or_none()
        return HyperionPoolDTO.from_model(model) if model else None

    async def list_swaps(self, pool_address: str) -> list[HyperionSwapDTO]:
        result = await self.session.execute(
            select(HyperionSwapModel)
            .where(HyperionSwapModel.pool_address == pool_address)
            .order_by(HyperionSwapModel.tx_version.asc(), HyperionSwapModel.event_idx.asc())
        )
        return [HyperionSwapDTO.from_model(m) for m in result.scalars().all()]

    async def get_pool_stat(self, pool_address: str) -> HyperionPoolStatDTO | None:
        result = await self.session.execute(
            select(HyperionPoolStatModel).where(HyperionPoolStatModel.pool_address == pool_address)
        )
        model = result.scalar_one_or_none()
        return HyperionPoolStatDTO.from_model(model) if model else None

    async def refresh_pool_stats(self, pool_addresses: Iterable[str]) -> list[HyperionPoolStatDTO]:
        """Recompute rolling statistics for pools from their committed swaps.

        Windows are anchored at each pool's latest swap timestamp (chain time),
        so recomputing after a replay yields the same values. Results overwrite
        the stored row.

        Args:
            pool_addresses: Pools touched by the current batch.

        Returns:
            The statistics written, one per pool that has swaps.
        """
        stats: list[HyperionPoolStatDTO] = []
        for pool_address in sorted(set(pool_addresses)):
            stat = await self._compute_pool_stat(pool_address)
            if stat is not None:
                stats.append(stat)

        table = HyperionPoolStatModel.__table__
        columns = tuple(c.name for c in table.columns if c.name != "pool_address")
        await upsert_rows(
            self.session,
            table,
            [s.to_values() for s in stats],
            ConflictPolicy(index_elements=("pool_address",), overwrite=columns),
        )
        return stats

    async def _compute_pool_stat(self, pool_address: str) -> HyperionPoolStatDTO | None:
        latest = (
            await self.session.execute(
                select(func.max(HyperionSwapModel.timestamp)).where(
                    HyperionSwapModel.pool_address == pool_address
                )
            )
        ).scalar_one_or_none()
        if latest is None:
            return None

        fee_tier = (
            await self.session.execute(
                select(HyperionPoolModel.fee_tier).where(HyperionPoolModel.pool_address == pool_address)
            )
        ).scalar_one_or_none()
        fee_rate = DECIMAL_CONTEXT.divide(
            Decimal(fee_tier if fee_tier is not None else DEFAULT_FEE_TIER), FEE_TIER_DENOMINATOR
        )

        result = await self.session.execute(
            select(
                HyperionSwapModel.sender,
                HyperionSwapModel.amount_in,
                HyperionSwapModel.amount_out,
                HyperionSwapModel.timestamp,
            )
            .where(
                (HyperionSwapModel.pool_address == pool_address)
                & (HyperionSwapModel.timestamp > latest - SECONDS_7D)
            )
            .order_by(HyperionSwapModel.tx_version.asc(), HyperionSwapModel.event_idx.asc())
        )

        volume_24h = volume_7d = DecimalString.zero()
        fees_24h = fees_7d = Decimal(0)
        count_24h = count_7d = 0
        traders_24h: set[str] = set()
        traders_7d: set[str] = set()
        first_price_24h: Decimal | None = None
        last_price: Decimal | None = None

        for sender, amount_in, amount_out, ts in result.all():
            fee = DECIMAL_CONTEXT.multiply(amount_in.to_decimal(), fee_rate)
            price = _swap_price(amount_in, amount_out)
            volume_7d = volume_7d + amount_in
            fees_7d = DECIMAL_CONTEXT.add(fees_7d, fee)
            count_7d += 1
            traders_7d.add(sender)
            if ts > latest - SECONDS_24H:
                volume_24h = volume_24h + amount_in
                fees_24h = DECIMAL_CONTEXT.add(fees_24h, fee)
                count_24h += 1
                traders_24h.add(sender)
                if first_price_24h is None and price is not None:
                    first_price_24h = price
            if price is not None:
                last_price = price

        price_change = Decimal(0)
        if first_price_24h and last_price is not None:
            price_change = DECIMAL_CONTEXT.multiply(
                DECIMAL_CONTEXT.divide(
                    DECIMAL_CONTEXT.subtract(last_price, first_price_24h), first_price_24h
                ),
                Decimal(100),
            )

        # TVL needs a price oracle; until one exists APR stays zero.
        tvl = DecimalString.zero()
        return HyperionPoolStatDTO(
            pool_address=pool_address,
            tvl_usd=tvl,
            volume_24h=volume_24h,
            volume_7d=volume_7d,
            fees_24h=_to_decimal_string(fees_24h),
            fees_7d=_to_decimal_string(fees_7d),
            apr=_apr(fees_24h, tvl),
            swap_count_24h=count_24h,
            swap_count_7d=count_7d,
            unique_traders_24h=len(traders_24h),
            unique_traders_7d=len(traders_7d),
            last_price=_to_decimal_string(last_price or Decimal(0)),
            price_change_24h=_to_decimal_string(price_change),
            last_update_timestamp=latest,
        )


def _swap_price(amount_in: DecimalString, amount_out: DecimalString) -> Decimal | None:
    if amount_in.is_zero():
        return None
    return DECIMAL_CONTEXT.divide(amount_out.to_decimal(), amount_in.to_decimal())


def _apr(fees_24h: Decimal, tvl: DecimalString) -> DecimalString:
    if tvl.is_zero():
        return DecimalString.zero()
    annual = DECIMAL_CONTEXT.multiply(fees_24h, Decimal(365))
    return _to_decimal_string(
        DECIMAL_CONTEXT.multiply(DECIMAL_CONTEXT.divide(annual, tvl.to_decimal()), Decimal(100))
    )


def _to_decimal_string(value: Decimal) -> DecimalString:
    return DecimalString.from_decimal(value.quantize(PRICE_QUANTUM, context=DECIMAL_CONTEXT))


class StatWatermarkRepository:
    """Per-event-kind record of the last version whose stat deltas committed."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, processor: str, event_kind: str) -> int | None:
        result = await self.session.execute(
            select(StatWatermarkModel.last_applied_version).where(
                (StatWatermarkModel.processor == processor)
                & (StatWatermarkModel.event_kind == event_kind)
            )
        )
        return result.scalar_one_or_none()

    async def advance(
        self,
        processor: str,
        event_kind: str,
        *,
        expected: int | None,
        new: int,
    ) -> None:
        """Compare-and-set the watermark from ``expected`` to ``new``.

        Raises:
            StaleWatermarkError: If the stored value is not ``expected``.
        """
        if expected is None:
            stmt = (
                dialect_insert(self.session, StatWatermarkModel.__table__)
                .values(processor=processor, event_kind=event_kind, last_applied_version=new)
                .on_conflict_do_nothing(index_elements=["processor", "event_kind"])
                .returning(StatWatermarkModel.__table__.c.last_applied_version)
            )
        else:
            stmt = (
                update(StatWatermarkModel)
                .where(
                    (StatWatermarkModel.processor == processor)
                    & (StatWatermarkModel.event_kind == event_kind)
                    & (StatWatermarkModel.last_applied_version == expected)
                )
                .values(last_applied_version=new)
                .returning(StatWatermarkModel.last_applied_version)
            )
        result = await self.session.execute(stmt)
        if result.first() is None:
            raise StaleWatermarkError(
                f"Stat watermark for {processor}/{event_kind} is no longer {expected}"
            )


class ProcessorStatusRepository:
    """Repository for the processor checkpoint table."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, processor: str) -> ProcessorStatusDTO | None:
        result = await self.session.execute(
            select(ProcessorStatusModel).where(ProcessorStatusModel.processor == processor)
        )
        model = result.scalar_one_or_none()
        return ProcessorStatusDTO.from_model(model) if model else None

    async def upsert(self, dto: ProcessorStatusDTO) -> None:
        """Record progress; an older version never replaces a newer one."""
        table = ProcessorStatusModel.__table__
        await upsert_rows(
            self.session,
            table,
            [
                {
                    "processor": dto.processor,
                    "last_success_version": dto.last_success_version,
                    "last_updated": dto.last_updated or datetime.now(UTC),
                    "last_transaction_timestamp": dto.last_transaction_timestamp,
                }
            ],
            ConflictPolicy(
                index_elements=("processor",),
                overwrite=("last_success_version", "last_updated", "last_transaction_timestamp"),
                guard=lambda t, excluded: t.c.last_success_version <= excluded.last_success_version,
            ),
        )
