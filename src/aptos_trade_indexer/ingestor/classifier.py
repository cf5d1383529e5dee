"""Partition a batch of domain events by kind."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from aptos_trade_indexer.ingestor.models import DomainEvent, EventKind


@dataclass
class ClassifiedBatch:
    """Per-kind event lists, each in original batch order."""

    by_kind: dict[EventKind, list[DomainEvent]] = field(default_factory=dict)

    def of(self, kind: EventKind) -> list[DomainEvent]:
        return self.by_kind.get(kind, [])

    def kinds(self) -> list[EventKind]:
        return [k for k in EventKind if self.by_kind.get(k)]

    def __len__(self) -> int:
        return sum(len(v) for v in self.by_kind.values())


def classify(events: Iterable[DomainEvent]) -> ClassifiedBatch:
    """Group events by kind in a single pass.

    Relative order within each kind is preserved: later events for the same
    entity (two updates of one trade, say) must be applied after earlier ones.
    """
    batch = ClassifiedBatch()
    for event in events:
        batch.by_kind.setdefault(event.kind, []).append(event)
    return batch
