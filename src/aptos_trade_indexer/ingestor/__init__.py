"""Ingestion layer - Decoded chain events and their classification."""

from aptos_trade_indexer.ingestor.classifier import ClassifiedBatch, classify
from aptos_trade_indexer.ingestor.models import (
    DomainEvent,
    EventKind,
    ModuleUpgraded,
    PackageUpgraded,
    TradeStatus,
    TradeType,
    from_chain_event,
)
from aptos_trade_indexer.ingestor.numeric import DecimalString, ParseFallbacks, parse_int

__all__ = [
    "ClassifiedBatch",
    "DecimalString",
    "DomainEvent",
    "EventKind",
    "ModuleUpgraded",
    "PackageUpgraded",
    "ParseFallbacks",
    "TradeStatus",
    "TradeType",
    "classify",
    "from_chain_event",
    "parse_int",
]
