"""Chunked, concurrent, transactional write path.

Rows of one event kind are split into bounded chunks and each chunk is
written in its own transaction. Statistic deltas are applied exactly once,
inside the transaction of the designated owner chunk, together with the
compare-and-set of the kind's stat watermark. A retried batch therefore
never adds the same delta twice: either the owner chunk committed (and the
watermark filters the replayed events out of the next aggregation) or it
rolled back along with its deltas.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import Callable, Hashable, Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from aptos_trade_indexer.storage.repos import (
    HyperionPoolRepository,
    StaleWatermarkError,
    StatWatermarkRepository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from aptos_trade_indexer.aggregator.stats import Aggregation, PoolActivity
    from aptos_trade_indexer.ingestor.models import EventKind
    from aptos_trade_indexer.storage.repos import HyperionPoolStatDTO
    from aptos_trade_indexer.storage.writers import KindWriter

logger = logging.getLogger(__name__)

# PostgreSQL's wire protocol caps bind parameters per statement at 32767.
MAX_BIND_PARAMS = 32767

RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (
    SQLAlchemyError,
    OSError,
    TimeoutError,
    StaleWatermarkError,
)

T = TypeVar("T")


class ChunkError(Exception):
    """Base class for a failed chunk of a write."""

    retryable: bool = False

    def __init__(self, kind: str, chunk_index: int | None, cause: BaseException) -> None:
        self.kind = kind
        self.chunk_index = chunk_index
        self.cause = cause
        where = f"chunk {chunk_index}" if chunk_index is not None else "stat refresh"
        super().__init__(f"{kind} {where}: {cause.__class__.__name__}: {cause}")


class ChunkTransactionError(ChunkError):
    """Transaction-level failure (database error, lost connection, timeout)."""

    retryable = True


class ChunkTaskError(ChunkError):
    """Unexpected failure inside a chunk task."""

    retryable = False


class BatchPersistenceError(Exception):
    """Every chunk failure of one write, reported together."""

    def __init__(self, kind: str, failures: Sequence[ChunkError]) -> None:
        self.kind = kind
        self.failures = list(failures)
        super().__init__(
            f"{kind}: {len(self.failures)} chunk(s) failed: "
            + "; ".join(str(f) for f in self.failures)
        )

    @property
    def retryable(self) -> bool:
        return all(f.retryable for f in self.failures)


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, (BatchPersistenceError, ChunkError)):
        return exc.retryable
    return isinstance(exc, RETRYABLE_ERRORS)


def wrap_chunk_error(kind: str, chunk_index: int | None, exc: Exception) -> ChunkError:
    if isinstance(exc, RETRYABLE_ERRORS):
        return ChunkTransactionError(kind, chunk_index, exc)
    return ChunkTaskError(kind, chunk_index, exc)


def chunk_size_for(
    table: str,
    column_count: int,
    overrides: Mapping[str, int] | None = None,
) -> int:
    """Rows per chunk for ``table``.

    A configured override wins; otherwise as many rows as fit in one
    statement's bind parameter budget.
    """
    if overrides and table in overrides:
        return max(1, overrides[table])
    return max(1, MAX_BIND_PARAMS // max(1, column_count))


def plan_chunks(
    rows: Sequence[T],
    key: Callable[[T], Hashable],
    chunk_size: int,
) -> list[list[list[T]]]:
    """Split rows into waves of chunks.

    The n-th row seen for a key goes to wave n, so no wave holds two rows for
    one key and a key's rows apply in their original order when waves run one
    after another. Each wave is cut into chunks of at most ``chunk_size``.

    Returns:
        Waves, each a list of chunks.
    """
    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")

    seen: Counter[Hashable] = Counter()
    waves: list[list[T]] = []
    for row in rows:
        k = key(row)
        wave = seen[k]
        seen[k] += 1
        if wave == len(waves):
            waves.append([])
        waves[wave].append(row)

    return [
        [wave_rows[i : i + chunk_size] for i in range(0, len(wave_rows), chunk_size)]
        for wave_rows in waves
    ]


@dataclass
class WriteReport:
    """Outcome of a successful write."""

    kind: EventKind
    rows_written: int = 0
    chunks: int = 0
    waves: int = 0
    deltas_applied: int = 0
    watermark: int | None = None


class ChunkedPersister:
    """Writes aggregations chunk by chunk, one transaction per chunk."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        max_concurrency: int = 5,
        table_chunk_sizes: Mapping[str, int] | None = None,
        chunk_timeout_seconds: float = 60.0,
    ) -> None:
        """Initialize the persister.

        Args:
            session_factory: Factory for sessions; each chunk opens its own.
            max_concurrency: Chunks in flight at once. Keep at or below the
                connection pool size.
            table_chunk_sizes: Per-table rows-per-chunk overrides.
            chunk_timeout_seconds: Deadline for one chunk transaction.
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self._session_factory = session_factory
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._table_chunk_sizes = dict(table_chunk_sizes or {})
        self._chunk_timeout = chunk_timeout_seconds

    def chunk_size_for(self, table: str, column_count: int) -> int:
        return chunk_size_for(table, column_count, self._table_chunk_sizes)

    async def read_watermark(self, processor: str, kind: EventKind) -> int | None:
        async with self._semaphore, self._session_factory() as session:
            return await StatWatermarkRepository(session).get(processor, kind.value)

    async def write(
        self,
        writer: KindWriter,
        aggregation: Aggregation,
        *,
        processor: str,
        owner_chunk_index: int = 0,
        expected_watermark: int | None = None,
    ) -> WriteReport:
        """Write the rows of ``aggregation`` and apply its deltas once.

        Args:
            writer: Table binding for the aggregation's kind.
            aggregation: Rows and deltas of one kind.
            processor: Consumer name owning the stat watermark.
            owner_chunk_index: Index, over all chunks in wave order, of the
                chunk whose transaction also applies the deltas.
            expected_watermark: Watermark value read before aggregating; the
                owner chunk fails if storage no longer holds it.

        Returns:
            Counts of what was written.

        Raises:
            ValueError: If deltas exist and ``owner_chunk_index`` names no chunk.
            BatchPersistenceError: If any chunk failed. Chunks of the failing
                wave are all awaited; later waves are not started.
        """
        kind = aggregation.kind
        report = WriteReport(kind=kind)
        chunk_size = self.chunk_size_for(writer.table_name, writer.column_count)
        waves = plan_chunks(aggregation.rows, lambda row: row.key, chunk_size)
        total_chunks = sum(len(w) for w in waves)

        new_watermark: int | None = None
        if aggregation.deltas:
            if not 0 <= owner_chunk_index < total_chunks:
                raise ValueError(
                    f"owner_chunk_index {owner_chunk_index} out of range for {total_chunks} chunks"
                )
            new_watermark = max(aggregation.max_version or 0, expected_watermark or 0)

        index = 0
        for wave in waves:
            tasks = []
            for chunk in wave:
                owns = bool(aggregation.deltas) and index == owner_chunk_index
                tasks.append(
                    self._write_chunk(
                        writer,
                        chunk,
                        chunk_index=index,
                        deltas=aggregation.deltas if owns else None,
                        processor=processor,
                        expected_watermark=expected_watermark,
                        new_watermark=new_watermark,
                    )
                )
                index += 1

            results = await asyncio.gather(*tasks, return_exceptions=True)
            failures: list[ChunkError] = []
            for res in results:
                if isinstance(res, ChunkError):
                    failures.append(res)
                elif isinstance(res, BaseException):
                    raise res
            if failures:
                logger.error(
                    "%s: %d of %d chunk(s) failed in wave %d",
                    kind.value,
                    len(failures),
                    len(wave),
                    report.waves,
                )
                raise BatchPersistenceError(kind.value, failures)

            report.waves += 1
            report.chunks += len(wave)
            report.rows_written += sum(len(c) for c in wave)

        if aggregation.deltas:
            report.deltas_applied = len(aggregation.deltas)
            report.watermark = new_watermark

        logger.debug(
            "%s: wrote %d rows in %d chunk(s) over %d wave(s), %d delta(s)",
            kind.value,
            report.rows_written,
            report.chunks,
            report.waves,
            report.deltas_applied,
        )
        return report

    async def _write_chunk(
        self,
        writer: KindWriter,
        rows: Sequence[Any],
        *,
        chunk_index: int,
        deltas: Sequence[Any] | None,
        processor: str,
        expected_watermark: int | None,
        new_watermark: int | None,
    ) -> None:
        kind = writer.kind.value
        async with self._semaphore:
            try:
                async with asyncio.timeout(self._chunk_timeout):
                    async with self._session_factory() as session, session.begin():
                        await writer.write_rows(session, rows)
                        if deltas:
                            if new_watermark is None:
                                raise ValueError(f"{kind} deltas written without a watermark")
                            await writer.apply_deltas(session, deltas)
                            await StatWatermarkRepository(session).advance(
                                processor, kind, expected=expected_watermark, new=new_watermark
                            )
            except Exception as e:
                logger.warning("%s chunk %d rolled back: %s", kind, chunk_index, e)
                raise wrap_chunk_error(kind, chunk_index, e) from e

    async def refresh_pool_stats(self, activity: Sequence[PoolActivity]) -> list[HyperionPoolStatDTO]:
        """Recompute statistics for the pools in ``activity``.

        Runs in a single transaction once every swap chunk has committed.

        Raises:
            BatchPersistenceError: If the transaction failed.
        """
        if not activity:
            return []
        pools = [a.pool_address for a in activity]
        for a in activity:
            logger.debug(
                "Pool %s: %d swap(s) in batch, volume in %s, last at %d",
                a.pool_address,
                a.swap_count,
                a.volume,
                a.last_timestamp,
            )
        async with self._semaphore:
            try:
                async with asyncio.timeout(self._chunk_timeout):
                    async with self._session_factory() as session, session.begin():
                        stats = await HyperionPoolRepository(session).refresh_pool_stats(pools)
            except Exception as e:
                logger.error("Pool stat refresh failed for %d pool(s): %s", len(pools), e)
                raise BatchPersistenceError(
                    "hyperion_pool_stats", [wrap_chunk_error("hyperion_pool_stats", None, e)]
                ) from e
        logger.debug("Refreshed stats for %d pool(s)", len(stats))
        return stats
