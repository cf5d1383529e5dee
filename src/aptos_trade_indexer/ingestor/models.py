"""Domain event model for decoded on-chain events and contract changes.

Every decoded event is one variant of a closed union (``DomainEvent``). Each
variant is a frozen dataclass that carries its typed payload together with the
stream version of the originating transaction and the event's index inside
that transaction. ``EventKind`` is the tag used by the classifier and the
aggregator.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, ClassVar

from aptos_trade_indexer.ingestor.numeric import DecimalString, ParseFallbacks, parse_int

DEFAULT_FEE_TIER = 3000  # 0.3%
DEFAULT_TICK_SPACING = 60


class EventKind(str, Enum):
    """Tag of the closed set of domain events."""

    MESSAGE_CREATED = "message_created"
    MESSAGE_UPDATED = "message_updated"
    TRADE_CREATED = "trade_created"
    TRADE_UPDATED = "trade_updated"
    TRADE_COMPLETED = "trade_completed"
    TRADE_CANCELLED = "trade_cancelled"
    POOL_CREATED = "pool_created"
    POOL_STATE_UPDATED = "pool_state_updated"
    SWAP_OCCURRED = "swap_occurred"
    MODULE_UPGRADED = "module_upgraded"
    PACKAGE_UPGRADED = "package_upgraded"


class TradeType(IntEnum):
    BUY = 1
    SELL = 2
    SWAP = 3


class TradeStatus(IntEnum):
    PENDING = 1
    COMPLETED = 2
    CANCELLED = 3


# ============================================================================
# Payloads
# ============================================================================


@dataclass(frozen=True)
class Trade:
    """Trade object state as emitted by every trade lifecycle event."""

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
    notes: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any], fallbacks: ParseFallbacks | None = None) -> Trade:
        """Create a Trade from a trade event payload.

        Numeric fields arrive as decimal strings (``amount_from: "1000"``).
        """
        return cls(
            trade_obj_addr=str(data["trade_obj_addr"]),
            trader_addr=str(data.get("trader") or data.get("trader_addr") or ""),
            trade_type=parse_int(data.get("trade_type"), 0, field="trade_type", fallbacks=fallbacks),
            token_from=str(data.get("token_from", "")),
            token_to=str(data.get("token_to", "")),
            amount_from=parse_int(data.get("amount_from"), 0, field="amount_from", fallbacks=fallbacks),
            amount_to=parse_int(data.get("amount_to"), 0, field="amount_to", fallbacks=fallbacks),
            price=parse_int(data.get("price"), 0, field="price", fallbacks=fallbacks),
            status=parse_int(data.get("status"), 0, field="status", fallbacks=fallbacks),
            creation_timestamp=parse_int(
                data.get("creation_timestamp"), 0, field="creation_timestamp", fallbacks=fallbacks
            ),
            last_update_timestamp=parse_int(
                data.get("last_update_timestamp"), 0, field="last_update_timestamp", fallbacks=fallbacks
            ),
            notes=str(data.get("notes", "")),
        )


@dataclass(frozen=True)
class Message:
    """Message board entry."""

    message_obj_addr: str
    creator_addr: str
    content: str
    creation_timestamp: int
    last_update_timestamp: int

    @classmethod
    def from_dict(cls, data: dict[str, Any], fallbacks: ParseFallbacks | None = None) -> Message:
        # The message body is nested under "message" in the Move event.
        body = data.get("message") if isinstance(data.get("message"), dict) else data
        return cls(
            message_obj_addr=str(data["message_obj_addr"]),
            creator_addr=str(body.get("creator") or body.get("creator_addr") or ""),
            content=str(body.get("content", "")),
            creation_timestamp=parse_int(
                body.get("creation_timestamp"), 0, field="creation_timestamp", fallbacks=fallbacks
            ),
            last_update_timestamp=parse_int(
                body.get("last_update_timestamp"), 0, field="last_update_timestamp", fallbacks=fallbacks
            ),
        )


@dataclass(frozen=True)
class PoolCreation:
    """Initial state of a concentrated-liquidity pool."""

    pool_address: str
    token0_address: str
    token1_address: str
    token0_symbol: str
    token1_symbol: str
    fee_tier: int
    tick_spacing: int
    sqrt_price_x96: DecimalString
    tick: int
    timestamp: int

    @classmethod
    def from_dict(cls, data: dict[str, Any], fallbacks: ParseFallbacks | None = None) -> PoolCreation:
        return cls(
            pool_address=str(data["pool_address"]),
            token0_address=str(data.get("token0", "")),
            token1_address=str(data.get("token1", "")),
            token0_symbol=str(data.get("token0_symbol", "")),
            token1_symbol=str(data.get("token1_symbol", "")),
            fee_tier=parse_int(data.get("fee"), DEFAULT_FEE_TIER, field="fee", fallbacks=fallbacks),
            tick_spacing=parse_int(
                data.get("tick_spacing"), DEFAULT_TICK_SPACING, field="tick_spacing", fallbacks=fallbacks
            ),
            sqrt_price_x96=DecimalString.parse(
                data.get("sqrt_price_x96"), field="sqrt_price_x96", fallbacks=fallbacks
            ),
            tick=parse_int(data.get("tick"), 0, field="tick", fallbacks=fallbacks),
            timestamp=parse_int(data.get("timestamp"), 0, field="timestamp", fallbacks=fallbacks),
        )


@dataclass(frozen=True)
class PoolState:
    """Point-in-time pool state; a partial update of the pool record."""

    pool_address: str
    liquidity: DecimalString
    sqrt_price_x96: DecimalString
    tick: int
    timestamp: int

    @classmethod
    def from_dict(cls, data: dict[str, Any], fallbacks: ParseFallbacks | None = None) -> PoolState:
        return cls(
            pool_address=str(data["pool_address"]),
            liquidity=DecimalString.parse(data.get("liquidity"), field="liquidity", fallbacks=fallbacks),
            sqrt_price_x96=DecimalString.parse(
                data.get("sqrt_price_x96"), field="sqrt_price_x96", fallbacks=fallbacks
            ),
            tick=parse_int(data.get("tick"), 0, field="tick", fallbacks=fallbacks),
            timestamp=parse_int(data.get("timestamp"), 0, field="timestamp", fallbacks=fallbacks),
        )


@dataclass(frozen=True)
class Swap:
    """A swap executed against a pool."""

    pool_address: str
    sender: str
    recipient: str
    token_in: str
    token_out: str
    amount_in: DecimalString
    amount_out: DecimalString
    sqrt_price_x96: DecimalString
    liquidity: DecimalString
    tick: int
    timestamp: int

    @classmethod
    def from_dict(cls, data: dict[str, Any], fallbacks: ParseFallbacks | None = None) -> Swap:
        return cls(
            pool_address=str(data.get("pool") or data.get("pool_address") or ""),
            sender=str(data.get("sender", "")),
            recipient=str(data.get("recipient", "")),
            token_in=str(data.get("token_in", "")),
            token_out=str(data.get("token_out", "")),
            amount_in=DecimalString.parse(data.get("amount_in"), field="amount_in", fallbacks=fallbacks),
            amount_out=DecimalString.parse(data.get("amount_out"), field="amount_out", fallbacks=fallbacks),
            sqrt_price_x96=DecimalString.parse(
                data.get("sqrt_price_x96"), field="sqrt_price_x96", fallbacks=fallbacks
            ),
            liquidity=DecimalString.parse(data.get("liquidity"), field="liquidity", fallbacks=fallbacks),
            tick=parse_int(data.get("tick"), 0, field="tick", fallbacks=fallbacks),
            timestamp=parse_int(data.get("timestamp"), 0, field="timestamp", fallbacks=fallbacks),
        )


@dataclass(frozen=True)
class ModuleUpgrade:
    module_addr: str
    module_name: str
    upgrade_number: int
    module_bytecode: bytes
    module_source_code: str
    module_abi: Any


@dataclass(frozen=True)
class PackageUpgrade:
    package_addr: str
    package_name: str
    upgrade_number: int
    upgrade_policy: int
    package_manifest: str
    source_digest: str


# ============================================================================
# Events
# ============================================================================


@dataclass(frozen=True)
class _EventBase:
    kind: ClassVar[EventKind]

    version: int
    event_index: int


@dataclass(frozen=True)
class MessageCreated(_EventBase):
    kind: ClassVar[EventKind] = EventKind.MESSAGE_CREATED

    message: Message


@dataclass(frozen=True)
class MessageUpdated(_EventBase):
    kind: ClassVar[EventKind] = EventKind.MESSAGE_UPDATED

    message: Message


@dataclass(frozen=True)
class TradeCreated(_EventBase):
    kind: ClassVar[EventKind] = EventKind.TRADE_CREATED

    trade: Trade


@dataclass(frozen=True)
class TradeUpdated(_EventBase):
    kind: ClassVar[EventKind] = EventKind.TRADE_UPDATED

    trade: Trade


@dataclass(frozen=True)
class TradeCompleted(_EventBase):
    kind: ClassVar[EventKind] = EventKind.TRADE_COMPLETED

    trade: Trade


@dataclass(frozen=True)
class TradeCancelled(_EventBase):
    kind: ClassVar[EventKind] = EventKind.TRADE_CANCELLED

    trade: Trade


@dataclass(frozen=True)
class PoolCreated(_EventBase):
    kind: ClassVar[EventKind] = EventKind.POOL_CREATED

    pool: PoolCreation


@dataclass(frozen=True)
class PoolStateUpdated(_EventBase):
    kind: ClassVar[EventKind] = EventKind.POOL_STATE_UPDATED

    state: PoolState


@dataclass(frozen=True)
class SwapOccurred(_EventBase):
    kind: ClassVar[EventKind] = EventKind.SWAP_OCCURRED

    swap: Swap

    @property
    def swap_id(self) -> str:
        """Deterministic id: replaying the same event yields the same id."""
        return f"{self.swap.pool_address}-{self.version}-{self.event_index}"


@dataclass(frozen=True)
class ModuleUpgraded(_EventBase):
    kind: ClassVar[EventKind] = EventKind.MODULE_UPGRADED

    upgrade: ModuleUpgrade

    @classmethod
    def from_change(
        cls,
        data: dict[str, Any],
        *,
        version: int,
        change_index: int,
        fallbacks: ParseFallbacks | None = None,
    ) -> ModuleUpgraded:
        """Create from a module write-set change.

        ``module_bytecode`` may be raw bytes or a ``0x``-prefixed hex string;
        ``module_abi`` may be a decoded object or its JSON text.
        """
        bytecode = data.get("module_bytecode", b"")
        if isinstance(bytecode, str):
            bytecode = bytes.fromhex(bytecode.removeprefix("0x"))
        abi = data.get("module_abi")
        if isinstance(abi, str):
            abi = json.loads(abi)
        return cls(
            version=version,
            event_index=change_index,
            upgrade=ModuleUpgrade(
                module_addr=str(data["module_addr"]),
                module_name=str(data["module_name"]),
                upgrade_number=parse_int(
                    data.get("upgrade_number"), 0, field="upgrade_number", fallbacks=fallbacks
                ),
                module_bytecode=bytes(bytecode),
                module_source_code=str(data.get("module_source_code", "")),
                module_abi=abi if abi is not None else {},
            ),
        )


@dataclass(frozen=True)
class PackageUpgraded(_EventBase):
    kind: ClassVar[EventKind] = EventKind.PACKAGE_UPGRADED

    upgrade: PackageUpgrade

    @classmethod
    def from_change(
        cls,
        data: dict[str, Any],
        *,
        version: int,
        change_index: int,
        fallbacks: ParseFallbacks | None = None,
    ) -> PackageUpgraded:
        return cls(
            version=version,
            event_index=change_index,
            upgrade=PackageUpgrade(
                package_addr=str(data["package_addr"]),
                package_name=str(data["package_name"]),
                upgrade_number=parse_int(
                    data.get("upgrade_number"), 0, field="upgrade_number", fallbacks=fallbacks
                ),
                upgrade_policy=parse_int(
                    data.get("upgrade_policy"), 0, field="upgrade_policy", fallbacks=fallbacks
                ),
                package_manifest=str(data.get("package_manifest", "")),
                source_digest=str(data.get("source_digest", "")),
            ),
        )


DomainEvent = (
    MessageCreated
    | MessageUpdated
    | TradeCreated
    | TradeUpdated
    | TradeCompleted
    | TradeCancelled
    | PoolCreated
    | PoolStateUpdated
    | SwapOccurred
    | ModuleUpgraded
    | PackageUpgraded
)

TradeEvent = TradeCreated | TradeUpdated | TradeCompleted | TradeCancelled
MessageEvent = MessageCreated | MessageUpdated


# Move struct name -> (variant, payload parser)
_EVENT_TYPES: dict[str, tuple[type, Any]] = {
    "CreateMessageEvent": (MessageCreated, Message.from_dict),
    "UpdateMessageEvent": (MessageUpdated, Message.from_dict),
    "CreateTradeEvent": (TradeCreated, Trade.from_dict),
    "UpdateTradeEvent": (TradeUpdated, Trade.from_dict),
    "CompleteTradeEvent": (TradeCompleted, Trade.from_dict),
    "CancelTradeEvent": (TradeCancelled, Trade.from_dict),
    "PoolCreatedEvent": (PoolCreated, PoolCreation.from_dict),
    "PoolStateUpdateEvent": (PoolStateUpdated, PoolState.from_dict),
    "SwapEvent": (SwapOccurred, Swap.from_dict),
}


def event_type_name(event_type: str) -> str:
    """Return the struct name of a fully qualified Move type.

    ``0x1::trade::CreateTradeEvent`` -> ``CreateTradeEvent``. Generic
    parameters are ignored.
    """
    return event_type.split("<", 1)[0].rsplit("::", 1)[-1]


def from_chain_event(
    event_type: str,
    data: dict[str, Any],
    *,
    version: int,
    event_index: int,
    fallbacks: ParseFallbacks | None = None,
) -> DomainEvent | None:
    """Convert a decoded chain event into a domain event.

    Args:
        event_type: Fully qualified Move event type.
        data: Event payload with string-encoded numbers.
        version: Stream version of the transaction that emitted the event.
        event_index: Index of the event within its transaction.
        fallbacks: Optional collector for unparseable numeric fields.

    Returns:
        The domain event, or None for event types this indexer ignores.
    """
    entry = _EVENT_TYPES.get(event_type_name(event_type))
    if entry is None:
        return None
    variant, parse_payload = entry
    payload = parse_payload(data, fallbacks)
    return variant(version, event_index, payload)
