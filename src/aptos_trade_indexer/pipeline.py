"""Batch processor wiring classification, aggregation and persistence.

This module provides the BatchProcessor that turns one delivered batch of
domain events into committed rows and statistics, then advances the
checkpoint.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from aptos_trade_indexer.aggregator.stats import aggregate
from aptos_trade_indexer.ingestor.classifier import ClassifiedBatch, classify
from aptos_trade_indexer.ingestor.models import DomainEvent, EventKind
from aptos_trade_indexer.storage.checkpoint import CheckpointCoordinator
from aptos_trade_indexer.storage.persister import ChunkedPersister, is_retryable
from aptos_trade_indexer.storage.writers import writer_for

if TYPE_CHECKING:
    from aptos_trade_indexer.config import Settings
    from aptos_trade_indexer.storage.database import DatabaseManager

logger = logging.getLogger(__name__)

# Tables touched by a group are disjoint from every other group, so groups
# run concurrently. Kinds inside a group share a table and run in order.
TABLE_GROUPS: tuple[tuple[str, tuple[EventKind, ...]], ...] = (
    ("messages", (EventKind.MESSAGE_CREATED, EventKind.MESSAGE_UPDATED)),
    (
        "trades",
        (
            EventKind.TRADE_CREATED,
            EventKind.TRADE_UPDATED,
            EventKind.TRADE_COMPLETED,
            EventKind.TRADE_CANCELLED,
        ),
    ),
    ("pools", (EventKind.POOL_CREATED, EventKind.POOL_STATE_UPDATED, EventKind.SWAP_OCCURRED)),
    ("module_upgrades", (EventKind.MODULE_UPGRADED,)),
    ("package_upgrades", (EventKind.PACKAGE_UPGRADED,)),
)


@dataclass
class TransactionBatch:
    """Contiguous range of stream versions, already decoded."""

    start_version: int
    end_version: int
    events: list[DomainEvent] = field(default_factory=list)
    changes: list[DomainEvent] = field(default_factory=list)
    last_transaction_timestamp: datetime | None = None

    def __post_init__(self) -> None:
        if self.end_version < self.start_version:
            raise ValueError(
                f"end_version {self.end_version} precedes start_version {self.start_version}"
            )


@dataclass
class BatchResult:
    """Outcome of processing one batch."""

    start_version: int
    end_version: int
    success: bool
    events_processed: int = 0
    rows_written: int = 0
    failures: list[Exception] = field(default_factory=list)
    retryable: bool = False
    checkpoint_error: Exception | None = None
    duration_seconds: float = 0.0


@dataclass
class ProcessorStats:
    """Running totals for the processor."""

    started_at: datetime | None = None
    batches_processed: int = 0
    batches_failed: int = 0
    events_processed: int = 0
    last_success_version: int | None = None
    last_error: str | None = None


class BatchProcessor:
    """Processes one batch at a time and records progress.

    Example:
        ```python
        db = DatabaseManager.from_settings(settings.database)
        processor = BatchProcessor.from_settings(settings, db)
        result = await processor.process(batch)
        if not result.success and result.retryable:
            ...  # redeliver the same batch
        ```
    """

    def __init__(
        self,
        persister: ChunkedPersister,
        checkpoints: CheckpointCoordinator,
        *,
        processor_name: str,
    ) -> None:
        self._persister = persister
        self._checkpoints = checkpoints
        self.processor_name = processor_name
        self._lock = asyncio.Lock()
        self._stats = ProcessorStats()

    @classmethod
    def from_settings(cls, settings: Settings, db_manager: DatabaseManager) -> BatchProcessor:
        factory = db_manager.session_factory
        persister = ChunkedPersister(
            factory,
            max_concurrency=settings.database.pool_size,
            table_chunk_sizes=settings.indexer.table_chunk_sizes,
            chunk_timeout_seconds=settings.indexer.chunk_timeout_seconds,
        )
        return cls(
            persister,
            CheckpointCoordinator(factory),
            processor_name=settings.indexer.processor_name,
        )

    @property
    def stats(self) -> ProcessorStats:
        return self._stats

    async def process(self, batch: TransactionBatch) -> BatchResult:
        """Persist ``batch`` and advance the checkpoint.

        Events at or below the recorded checkpoint were already persisted and
        are dropped. Nothing is checkpointed unless every group committed.

        Args:
            batch: Decoded events and changes for a version range.

        Returns:
            BatchResult; on failure ``retryable`` says whether redelivering
            the same batch can succeed.
        """
        async with self._lock:
            if self._stats.started_at is None:
                self._stats.started_at = datetime.now(UTC)
            started = time.monotonic()
            result = BatchResult(batch.start_version, batch.end_version, success=False)

            try:
                checkpoint = await self._checkpoints.last_progress(self.processor_name)
            except Exception as e:
                logger.error("Failed to read checkpoint for %s: %s", self.processor_name, e)
                return self._failed(result, [e], started)

            events = [
                e
                for e in (*batch.events, *batch.changes)
                if checkpoint is None or e.version > checkpoint
            ]
            dropped = len(batch.events) + len(batch.changes) - len(events)
            if dropped:
                logger.info(
                    "Dropped %d event(s) at or below checkpoint %s for %s",
                    dropped,
                    checkpoint,
                    self.processor_name,
                )
            classified = classify(events)
            result.events_processed = len(classified)

            outcomes = await asyncio.gather(
                *(self._run_group(name, kinds, classified) for name, kinds in TABLE_GROUPS),
                return_exceptions=True,
            )
            failures: list[Exception] = []
            for (name, _), outcome in zip(TABLE_GROUPS, outcomes, strict=True):
                if isinstance(outcome, Exception):
                    logger.error("Group %s failed: %s", name, outcome)
                    failures.append(outcome)
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    result.rows_written += outcome
            if failures:
                return self._failed(result, failures, started)

            try:
                await self._checkpoints.record_progress(
                    self.processor_name,
                    batch.end_version,
                    last_transaction_timestamp=batch.last_transaction_timestamp,
                )
            except Exception as e:
                # Rows are committed; the next delivery replays idempotently.
                logger.exception("Failed to record checkpoint %d for %s", batch.end_version, self.processor_name)
                result.checkpoint_error = e
                self._stats.last_error = f"checkpoint:{e.__class__.__name__}"

            result.success = True
            result.duration_seconds = time.monotonic() - started
            self._stats.batches_processed += 1
            self._stats.events_processed += result.events_processed
            if result.checkpoint_error is None:
                self._stats.last_success_version = batch.end_version
            logger.info(
                "Processed versions %d-%d: %d event(s), %d row(s) in %.3fs",
                batch.start_version,
                batch.end_version,
                result.events_processed,
                result.rows_written,
                result.duration_seconds,
            )
            return result

    def _failed(self, result: BatchResult, failures: list[Exception], started: float) -> BatchResult:
        result.failures = failures
        result.retryable = all(is_retryable(f) for f in failures)
        result.duration_seconds = time.monotonic() - started
        self._stats.batches_failed += 1
        self._stats.last_error = "; ".join(f.__class__.__name__ for f in failures)
        logger.error(
            "Batch %d-%d failed (%s): %s",
            result.start_version,
            result.end_version,
            "retryable" if result.retryable else "fatal",
            self._stats.last_error,
        )
        return result

    async def _run_group(
        self,
        name: str,
        kinds: tuple[EventKind, ...],
        classified: ClassifiedBatch,
    ) -> int:
        rows = 0
        for kind in kinds:
            events = classified.of(kind)
            if not events:
                continue
            watermark = await self._persister.read_watermark(self.processor_name, kind)
            aggregation = aggregate(kind, events, applied_through=watermark)
            report = await self._persister.write(
                writer_for(kind),
                aggregation,
                processor=self.processor_name,
                expected_watermark=watermark,
            )
            rows += report.rows_written
            if aggregation.pool_activity:
                await self._persister.refresh_pool_stats(aggregation.pool_activity)
        logger.debug("Group %s wrote %d row(s)", name, rows)
        return rows
