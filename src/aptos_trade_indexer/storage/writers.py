"""Per-kind table writers.

A ``KindWriter`` binds an event kind to the table its rows land in, the
conflict rule for those rows and, for kinds that carry statistics, the
statistics table and its additive merge rule.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from aptos_trade_indexer.ingestor.models import EventKind
from aptos_trade_indexer.storage.models import (
    HyperionPoolModel,
    HyperionSwapModel,
    MessageModel,
    ModuleUpgradeModel,
    PackageUpgradeModel,
    TradeModel,
    TraderStatModel,
    UserStatModel,
)
from aptos_trade_indexer.storage.upsert import (
    ConflictPolicy,
    newer_event_guard,
    newer_version_guard,
    upsert_rows,
)

if TYPE_CHECKING:
    from sqlalchemy import Table
    from sqlalchemy.ext.asyncio import AsyncSession


@dataclass(frozen=True)
class KindWriter:
    kind: EventKind
    table: Table
    policy: ConflictPolicy
    stat_table: Table | None = None
    stat_policy: ConflictPolicy | None = None

    @property
    def table_name(self) -> str:
        return self.table.name

    @property
    def column_count(self) -> int:
        return len(self.table.columns)

    async def write_rows(self, session: AsyncSession, rows: Sequence[Any]) -> None:
        await upsert_rows(session, self.table, [row.to_values() for row in rows], self.policy)

    async def apply_deltas(self, session: AsyncSession, deltas: Sequence[Any]) -> None:
        if not deltas:
            return
        if self.stat_table is None or self.stat_policy is None:
            raise ValueError(f"{self.kind.value} rows carry no statistics")
        await upsert_rows(session, self.stat_table, [d.to_values() for d in deltas], self.stat_policy)


_TRADES = TradeModel.__table__
_MESSAGES = MessageModel.__table__
_POOLS = HyperionPoolModel.__table__

_TRADE_INSERT = ConflictPolicy(index_elements=("trade_obj_addr",))
_TRADE_UPDATE = ConflictPolicy(
    index_elements=("trade_obj_addr",),
    overwrite=(
        "status",
        "amount_from",
        "amount_to",
        "price",
        "notes",
        "last_update_timestamp",
        "last_update_version",
        "last_update_event_idx",
    ),
    guard=newer_event_guard,
)
_TRADER_STATS = ConflictPolicy(
    index_elements=("trader_addr",),
    latest=("last_update_timestamp",),
    additive=(
        "total_trades",
        "completed_trades",
        "cancelled_trades",
        "total_buy_trades",
        "total_sell_trades",
        "total_swap_trades",
        "total_volume",
        "points",
    ),
)

_MESSAGE_INSERT = ConflictPolicy(index_elements=("message_obj_addr",))
_MESSAGE_UPDATE = ConflictPolicy(
    index_elements=("message_obj_addr",),
    overwrite=("content", "last_update_timestamp", "last_update_version", "last_update_event_idx"),
    guard=newer_event_guard,
)
_USER_STATS = ConflictPolicy(
    index_elements=("user_addr",),
    latest=("last_update_timestamp",),
    additive=("created_messages", "updated_messages", "s1_points", "total_points"),
)

# A state update may land before the pool's creation event; creation then
# fills in metadata without touching the live price or liquidity.
_POOL_CREATED = ConflictPolicy(
    index_elements=("pool_address",),
    overwrite=(
        "token0_address",
        "token1_address",
        "token0_symbol",
        "token1_symbol",
        "fee_tier",
        "tick_spacing",
        "creation_timestamp",
    ),
)
_POOL_STATE = ConflictPolicy(
    index_elements=("pool_address",),
    overwrite=("liquidity", "sqrt_price_x96", "tick", "last_update_timestamp", "last_update_version"),
    guard=newer_version_guard,
)


def _trade_writer(kind: EventKind, policy: ConflictPolicy) -> KindWriter:
    return KindWriter(kind, _TRADES, policy, TraderStatModel.__table__, _TRADER_STATS)


def _message_writer(kind: EventKind, policy: ConflictPolicy) -> KindWriter:
    return KindWriter(kind, _MESSAGES, policy, UserStatModel.__table__, _USER_STATS)


KIND_WRITERS: dict[EventKind, KindWriter] = {
    EventKind.TRADE_CREATED: _trade_writer(EventKind.TRADE_CREATED, _TRADE_INSERT),
    EventKind.TRADE_UPDATED: _trade_writer(EventKind.TRADE_UPDATED, _TRADE_UPDATE),
    EventKind.TRADE_COMPLETED: _trade_writer(EventKind.TRADE_COMPLETED, _TRADE_UPDATE),
    EventKind.TRADE_CANCELLED: _trade_writer(EventKind.TRADE_CANCELLED, _TRADE_UPDATE),
    EventKind.MESSAGE_CREATED: _message_writer(EventKind.MESSAGE_CREATED, _MESSAGE_INSERT),
    EventKind.MESSAGE_UPDATED: _message_writer(EventKind.MESSAGE_UPDATED, _MESSAGE_UPDATE),
    EventKind.POOL_CREATED: KindWriter(EventKind.POOL_CREATED, _POOLS, _POOL_CREATED),
    EventKind.POOL_STATE_UPDATED: KindWriter(EventKind.POOL_STATE_UPDATED, _POOLS, _POOL_STATE),
    EventKind.SWAP_OCCURRED: KindWriter(
        EventKind.SWAP_OCCURRED,
        HyperionSwapModel.__table__,
        ConflictPolicy(index_elements=("swap_id",)),
    ),
    EventKind.MODULE_UPGRADED: KindWriter(
        EventKind.MODULE_UPGRADED,
        ModuleUpgradeModel.__table__,
        ConflictPolicy(index_elements=("module_addr", "module_name", "upgrade_number")),
    ),
    EventKind.PACKAGE_UPGRADED: KindWriter(
        EventKind.PACKAGE_UPGRADED,
        PackageUpgradeModel.__table__,
        ConflictPolicy(index_elements=("package_addr", "package_name", "upgrade_number")),
    ),
}


def writer_for(kind: EventKind) -> KindWriter:
    return KIND_WRITERS[kind]
