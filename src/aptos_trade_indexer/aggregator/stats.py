"""Fold per-kind event lists into row upserts and statistic deltas.

Aggregation is pure: given the events of one kind (in stream order) it
returns the rows to upsert, one row per event, and one merged delta per
statistics key. Deltas are relative to whatever storage held before the
batch and are added, never assigned, when persisted.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import asdict, dataclass, field
from typing import Any, assert_never, cast

from aptos_trade_indexer.ingestor.models import (
    DomainEvent,
    EventKind,
    MessageCreated,
    MessageEvent,
    MessageUpdated,
    ModuleUpgraded,
    PackageUpgraded,
    PoolCreated,
    PoolStateUpdated,
    SwapOccurred,
    TradeCancelled,
    TradeCompleted,
    TradeCreated,
    TradeEvent,
    TradeType,
    TradeUpdated,
)
from aptos_trade_indexer.ingestor.numeric import DecimalString
from aptos_trade_indexer.storage.repos import (
    HyperionPoolDTO,
    HyperionSwapDTO,
    MessageDTO,
    ModuleUpgradeDTO,
    PackageUpgradeDTO,
    TradeDTO,
)

logger = logging.getLogger(__name__)

CREATE_TRADE_POINTS = 10
UPDATE_TRADE_POINTS = 2
COMPLETE_TRADE_POINTS = 20
CANCEL_TRADE_POINTS = 0

CREATE_MESSAGE_POINTS = 2
UPDATE_MESSAGE_POINTS = 1

Row = (
    TradeDTO
    | MessageDTO
    | HyperionPoolDTO
    | HyperionSwapDTO
    | ModuleUpgradeDTO
    | PackageUpgradeDTO
)


@dataclass
class TraderStatDelta:
    """Increment to a trader's cumulative statistics."""

    trader_addr: str
    creation_timestamp: int
    last_update_timestamp: int
    total_trades: int = 0
    completed_trades: int = 0
    cancelled_trades: int = 0
    total_buy_trades: int = 0
    total_sell_trades: int = 0
    total_swap_trades: int = 0
    total_volume: int = 0
    points: int = 0

    @classmethod
    def start(cls, event: TradeEvent) -> TraderStatDelta:
        ts = event.trade.last_update_timestamp
        return cls(trader_addr=event.trade.trader_addr, creation_timestamp=ts, last_update_timestamp=ts)

    @property
    def key(self) -> str:
        return self.trader_addr

    def apply(self, event: TradeEvent) -> None:
        trade = event.trade
        self.last_update_timestamp = max(self.last_update_timestamp, trade.last_update_timestamp)
        match event:
            case TradeCreated():
                self.total_trades += 1
                match trade.trade_type:
                    case TradeType.BUY:
                        self.total_buy_trades += 1
                    case TradeType.SELL:
                        self.total_sell_trades += 1
                    case TradeType.SWAP:
                        self.total_swap_trades += 1
                    case _:
                        logger.warning(
                            "Trade %s has unknown trade_type %s", trade.trade_obj_addr, trade.trade_type
                        )
                self.total_volume += trade.price
                self.points += CREATE_TRADE_POINTS
            case TradeUpdated():
                self.points += UPDATE_TRADE_POINTS
            case TradeCompleted():
                self.completed_trades += 1
                self.points += COMPLETE_TRADE_POINTS
            case TradeCancelled():
                self.cancelled_trades += 1
                self.points += CANCEL_TRADE_POINTS
            case _:
                assert_never(event)

    def to_values(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class UserStatDelta:
    """Increment to a message board user's cumulative statistics."""

    user_addr: str
    creation_timestamp: int
    last_update_timestamp: int
    created_messages: int = 0
    updated_messages: int = 0
    s1_points: int = 0
    total_points: int = 0

    @classmethod
    def start(cls, event: MessageEvent) -> UserStatDelta:
        ts = event.message.last_update_timestamp
        return cls(user_addr=event.message.creator_addr, creation_timestamp=ts, last_update_timestamp=ts)

    @property
    def key(self) -> str:
        return self.user_addr

    def apply(self, event: MessageEvent) -> None:
        self.last_update_timestamp = max(
            self.last_update_timestamp, event.message.last_update_timestamp
        )
        match event:
            case MessageCreated():
                self.created_messages += 1
                points = CREATE_MESSAGE_POINTS
            case MessageUpdated():
                self.updated_messages += 1
                points = UPDATE_MESSAGE_POINTS
            case _:
                assert_never(event)
        self.s1_points += points
        self.total_points += points

    def to_values(self) -> dict[str, Any]:
        return asdict(self)


StatDelta = TraderStatDelta | UserStatDelta


@dataclass
class PoolActivity:
    """Swaps seen for one pool in a batch; names a pool whose stats are stale."""

    pool_address: str
    swap_count: int = 0
    last_timestamp: int = 0
    volume: DecimalString = field(default_factory=DecimalString.zero)


@dataclass
class Aggregation:
    """Result of folding the events of one kind."""

    kind: EventKind
    rows: list[Row] = field(default_factory=list)
    deltas: list[StatDelta] = field(default_factory=list)
    pool_activity: list[PoolActivity] = field(default_factory=list)
    max_version: int | None = None


def aggregate(
    kind: EventKind,
    events: Sequence[DomainEvent],
    *,
    applied_through: int | None = None,
) -> Aggregation:
    """Fold the events of ``kind`` into rows and deltas.

    Args:
        kind: Kind shared by every event in ``events``.
        events: Events in stream order.
        applied_through: Stat watermark for this kind. Events at or below it
            still produce rows, but their deltas are already in storage.

    Returns:
        Rows in input order, deltas sorted by key, and the highest version.

    Raises:
        ValueError: If an event of another kind is present.
    """
    for event in events:
        if event.kind is not kind:
            raise ValueError(f"aggregate({kind.value}) received a {event.kind.value} event")

    result = Aggregation(kind=kind)
    if not events:
        return result
    result.max_version = max(e.version for e in events)

    def counts(event: DomainEvent) -> bool:
        return applied_through is None or event.version > applied_through

    match kind:
        case (
            EventKind.TRADE_CREATED
            | EventKind.TRADE_UPDATED
            | EventKind.TRADE_COMPLETED
            | EventKind.TRADE_CANCELLED
        ):
            trader_deltas: dict[str, TraderStatDelta] = {}
            for event in cast(Sequence[TradeEvent], events):
                result.rows.append(TradeDTO.from_event(event))
                if counts(event):
                    delta = trader_deltas.get(event.trade.trader_addr)
                    if delta is None:
                        delta = trader_deltas[event.trade.trader_addr] = TraderStatDelta.start(event)
                    delta.apply(event)
            result.deltas = [trader_deltas[k] for k in sorted(trader_deltas)]
        case EventKind.MESSAGE_CREATED | EventKind.MESSAGE_UPDATED:
            user_deltas: dict[str, UserStatDelta] = {}
            for event in cast(Sequence[MessageEvent], events):
                result.rows.append(MessageDTO.from_event(event))
                if counts(event):
                    delta = user_deltas.get(event.message.creator_addr)
                    if delta is None:
                        delta = user_deltas[event.message.creator_addr] = UserStatDelta.start(event)
                    delta.apply(event)
            result.deltas = [user_deltas[k] for k in sorted(user_deltas)]
        case EventKind.POOL_CREATED:
            result.rows = [HyperionPoolDTO.from_created(e) for e in events if isinstance(e, PoolCreated)]
        case EventKind.POOL_STATE_UPDATED:
            result.rows = [
                HyperionPoolDTO.from_state_update(e) for e in events if isinstance(e, PoolStateUpdated)
            ]
        case EventKind.SWAP_OCCURRED:
            activity: dict[str, PoolActivity] = {}
            for event in cast(Sequence[SwapOccurred], events):
                result.rows.append(HyperionSwapDTO.from_event(event))
                pool = activity.setdefault(event.swap.pool_address, PoolActivity(event.swap.pool_address))
                pool.swap_count += 1
                pool.last_timestamp = max(pool.last_timestamp, event.swap.timestamp)
                pool.volume = pool.volume + event.swap.amount_in
            result.pool_activity = [activity[k] for k in sorted(activity)]
        case EventKind.MODULE_UPGRADED:
            result.rows = [ModuleUpgradeDTO.from_event(e) for e in events if isinstance(e, ModuleUpgraded)]
        case EventKind.PACKAGE_UPGRADED:
            result.rows = [PackageUpgradeDTO.from_event(e) for e in events if isinstance(e, PackageUpgraded)]
        case _:
            assert_never(kind)

    skipped = sum(1 for e in events if not counts(e))
    if skipped:
        logger.debug(
            "%s: %d events at or below stat watermark %s contribute rows only",
            kind.value,
            skipped,
            applied_through,
        )
    return result
