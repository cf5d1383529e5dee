"""Tests for the chunked transactional persister."""

from unittest.mock import AsyncMock, patch

import pytest
from conftest import (
    POOL_P,
    TRADER_A,
    pool_created,
    pool_state_updated,
    swap_occurred,
    trade_created,
    trade_updated,
)
from sqlalchemy.exc import OperationalError

from aptos_trade_indexer.aggregator.stats import aggregate
from aptos_trade_indexer.ingestor.models import EventKind
from aptos_trade_indexer.ingestor.numeric import DecimalString
from aptos_trade_indexer.storage.persister import (
    MAX_BIND_PARAMS,
    BatchPersistenceError,
    ChunkedPersister,
    ChunkTaskError,
    ChunkTransactionError,
    chunk_size_for,
    plan_chunks,
)
from aptos_trade_indexer.storage.repos import HyperionPoolRepository, TradeRepository
from aptos_trade_indexer.storage.writers import KindWriter, writer_for

PROCESSOR = "test_processor"


@pytest.fixture
def persister(session_factory) -> ChunkedPersister:
    return ChunkedPersister(session_factory, max_concurrency=1, chunk_timeout_seconds=10)


def small_chunks(session_factory, table: str, size: int) -> ChunkedPersister:
    return ChunkedPersister(session_factory, max_concurrency=1, table_chunk_sizes={table: size})


# ============================================================================
# Planning
# ============================================================================


class TestPlanChunks:
    def test_unique_keys_single_wave(self) -> None:
        waves = plan_chunks(list(range(7)), key=lambda r: r, chunk_size=3)
        assert waves == [[[0, 1, 2], [3, 4, 5], [6]]]

    def test_repeated_key_moves_to_next_wave(self) -> None:
        rows = [("a", 1), ("b", 1), ("a", 2), ("a", 3), ("c", 1)]
        waves = plan_chunks(rows, key=lambda r: r[0], chunk_size=10)

        assert waves == [
            [[("a", 1), ("b", 1), ("c", 1)]],
            [[("a", 2)]],
            [[("a", 3)]],
        ]

    def test_no_wave_repeats_a_key(self) -> None:
        rows = [i % 4 for i in range(25)]
        for wave in plan_chunks(rows, key=lambda r: r, chunk_size=2):
            keys = [r for chunk in wave for r in chunk]
            assert len(keys) == len(set(keys))

    def test_empty(self) -> None:
        assert plan_chunks([], key=lambda r: r, chunk_size=5) == []

    def test_rejects_zero_chunk_size(self) -> None:
        with pytest.raises(ValueError):
            plan_chunks([1], key=lambda r: r, chunk_size=0)


class TestChunkSizeFor:
    def test_default_fits_bind_parameter_budget(self) -> None:
        assert chunk_size_for("trades", 14) == MAX_BIND_PARAMS // 14

    def test_override(self) -> None:
        assert chunk_size_for("trades", 14, {"trades": 100}) == 100
        assert chunk_size_for("messages", 7, {"trades": 100}) == MAX_BIND_PARAMS // 7


# ============================================================================
# Writes
# ============================================================================


class TestWrite:
    @pytest.mark.asyncio
    async def test_deltas_applied_once_across_chunks(self, session_factory, async_session) -> None:
        persister = small_chunks(session_factory, "trades", 2)
        events = [trade_created(i, 0, trade_obj_addr=f"0xt{i}", price=10) for i in range(1, 8)]
        agg = aggregate(EventKind.TRADE_CREATED, events)

        report = await persister.write(writer_for(EventKind.TRADE_CREATED), agg, processor=PROCESSOR)

        assert report.chunks == 4
        assert report.rows_written == 7
        assert report.deltas_applied == 1
        assert report.watermark == 7
        stat = await TradeRepository(async_session).get_trader_stat(TRADER_A)
        assert stat is not None
        assert stat.total_trades == 7
        assert stat.total_volume == 70
        assert await persister.read_watermark(PROCESSOR, EventKind.TRADE_CREATED) == 7

    @pytest.mark.asyncio
    async def test_owner_chunk_index_selects_chunk(self, session_factory) -> None:
        persister = small_chunks(session_factory, "trades", 1)
        agg = aggregate(
            EventKind.TRADE_CREATED,
            [trade_created(1, 0, trade_obj_addr="0xt1"), trade_created(2, 0, trade_obj_addr="0xt2")],
        )
        with pytest.raises(ValueError):
            await persister.write(
                writer_for(EventKind.TRADE_CREATED), agg, processor=PROCESSOR, owner_chunk_index=2
            )

        report = await persister.write(
            writer_for(EventKind.TRADE_CREATED), agg, processor=PROCESSOR, owner_chunk_index=1
        )
        assert report.deltas_applied == 1

    @pytest.mark.asyncio
    async def test_same_key_updates_apply_in_order(self, persister, async_session) -> None:
        await persister.write(
            writer_for(EventKind.TRADE_CREATED),
            aggregate(EventKind.TRADE_CREATED, [trade_created(1)]),
            processor=PROCESSOR,
        )
        updates = [trade_updated(v, 0, price=100 + v) for v in (2, 3, 4)]
        report = await persister.write(
            writer_for(EventKind.TRADE_UPDATED),
            aggregate(EventKind.TRADE_UPDATED, updates),
            processor=PROCESSOR,
            expected_watermark=None,
        )

        assert report.waves == 3
        trade = await TradeRepository(async_session).get("0xt1")
        assert trade is not None
        assert trade.price == 104
        assert trade.last_update_version == 4

    @pytest.mark.asyncio
    async def test_older_update_does_not_regress_row(self, persister, async_session) -> None:
        writer = writer_for(EventKind.TRADE_UPDATED)
        await persister.write(
            writer, aggregate(EventKind.TRADE_UPDATED, [trade_updated(10, 1, price=500)]), processor=PROCESSOR
        )
        # Rows only: the watermark already covers version 10.
        await persister.write(
            writer,
            aggregate(EventKind.TRADE_UPDATED, [trade_updated(9, 0, price=1)], applied_through=10),
            processor=PROCESSOR,
        )

        trade = await TradeRepository(async_session).get("0xt1")
        assert trade is not None
        assert trade.price == 500
        assert (trade.last_update_version, trade.last_update_event_idx) == (10, 1)

    @pytest.mark.asyncio
    async def test_stale_watermark_is_retryable(self, persister) -> None:
        writer = writer_for(EventKind.TRADE_CREATED)
        await persister.write(
            writer, aggregate(EventKind.TRADE_CREATED, [trade_created(1)]), processor=PROCESSOR
        )

        with pytest.raises(BatchPersistenceError) as exc_info:
            await persister.write(
                writer,
                aggregate(EventKind.TRADE_CREATED, [trade_created(2, 0, trade_obj_addr="0xt2")]),
                processor=PROCESSOR,
                expected_watermark=None,
            )
        assert exc_info.value.retryable
        assert isinstance(exc_info.value.failures[0], ChunkTransactionError)

    @pytest.mark.asyncio
    async def test_failed_owner_chunk_rolls_back_deltas(self, session_factory, async_session) -> None:
        persister = small_chunks(session_factory, "trades", 1)
        writer = writer_for(EventKind.TRADE_CREATED)
        agg = aggregate(
            EventKind.TRADE_CREATED,
            [trade_created(1, 0, trade_obj_addr="0xt1"), trade_created(2, 0, trade_obj_addr="0xt2")],
        )
        failing = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("disk I/O error")))

        with patch.object(KindWriter, "apply_deltas", failing):
            with pytest.raises(BatchPersistenceError) as exc_info:
                await persister.write(writer, agg, processor=PROCESSOR)

        assert exc_info.value.retryable
        assert [f.chunk_index for f in exc_info.value.failures] == [0]
        repo = TradeRepository(async_session)
        assert await repo.get("0xt1") is None
        assert await repo.get("0xt2") is not None
        assert await repo.get_trader_stat(TRADER_A) is None
        assert await persister.read_watermark(PROCESSOR, EventKind.TRADE_CREATED) is None

        # Redelivery converges: deltas land once.
        await persister.write(writer, agg, processor=PROCESSOR)
        stat = await repo.get_trader_stat(TRADER_A)
        assert stat is not None
        assert stat.total_trades == 2

    @pytest.mark.asyncio
    async def test_unexpected_error_is_not_retryable(self, session_factory) -> None:
        persister = small_chunks(session_factory, "trades", 1)
        agg = aggregate(
            EventKind.TRADE_CREATED,
            [trade_created(1, 0, trade_obj_addr="0xt1"), trade_created(2, 0, trade_obj_addr="0xt2")],
        )
        calls = 0

        async def flaky(self, session, rows):
            nonlocal calls
            calls += 1
            if calls == 2:
                raise KeyError("boom")
            raise OperationalError("INSERT", {}, Exception("connection reset"))

        with patch.object(KindWriter, "write_rows", flaky):
            with pytest.raises(BatchPersistenceError) as exc_info:
                await persister.write(writer_for(EventKind.TRADE_CREATED), agg, processor=PROCESSOR)

        err = exc_info.value
        assert len(err.failures) == 2
        assert {type(f) for f in err.failures} == {ChunkTransactionError, ChunkTaskError}
        assert not err.retryable

    @pytest.mark.asyncio
    async def test_replayed_swaps_are_ignored(self, persister, async_session) -> None:
        writer = writer_for(EventKind.SWAP_OCCURRED)
        agg = aggregate(EventKind.SWAP_OCCURRED, [swap_occurred(5, 0), swap_occurred(5, 1)])

        await persister.write(writer, agg, processor=PROCESSOR)
        await persister.write(writer, agg, processor=PROCESSOR)

        swaps = await HyperionPoolRepository(async_session).list_swaps(POOL_P)
        assert [s.swap_id for s in swaps] == [f"{POOL_P}-5-0", f"{POOL_P}-5-1"]
        assert swaps[0].liquidity_after == DecimalString("340282366920938463463374607431768211455")


class TestPools:
    @pytest.mark.asyncio
    async def test_state_then_created_keeps_live_state(self, persister, async_session) -> None:
        await persister.write(
            writer_for(EventKind.POOL_STATE_UPDATED),
            aggregate(
                EventKind.POOL_STATE_UPDATED,
                [pool_state_updated(2, liquidity="18446744073709551616000", tick=7)],
            ),
            processor=PROCESSOR,
        )
        await persister.write(
            writer_for(EventKind.POOL_CREATED),
            aggregate(EventKind.POOL_CREATED, [pool_created(1)]),
            processor=PROCESSOR,
        )

        pool = await HyperionPoolRepository(async_session).get_pool(POOL_P)
        assert pool is not None
        assert pool.token0_symbol == "APT"
        assert pool.fee_tier == 3000
        assert str(pool.liquidity) == "18446744073709551616000"
        assert pool.tick == 7

    @pytest.mark.asyncio
    async def test_older_state_update_ignored(self, persister, async_session) -> None:
        writer = writer_for(EventKind.POOL_STATE_UPDATED)
        await persister.write(
            writer,
            aggregate(EventKind.POOL_STATE_UPDATED, [pool_state_updated(5, liquidity="500")]),
            processor=PROCESSOR,
        )
        await persister.write(
            writer,
            aggregate(EventKind.POOL_STATE_UPDATED, [pool_state_updated(4, liquidity="400")]),
            processor=PROCESSOR,
        )
        pool = await HyperionPoolRepository(async_session).get_pool(POOL_P)
        assert pool is not None
        assert pool.liquidity == DecimalString("500")

    @pytest.mark.asyncio
    async def test_refresh_pool_stats(self, persister, async_session) -> None:
        agg = aggregate(
            EventKind.SWAP_OCCURRED,
            [
                swap_occurred(1, 0, amount_in="1000", amount_out="2000", ts=1_000_000),
                swap_occurred(2, 0, amount_in="1000", amount_out="3000", ts=1_000_100, sender="0xb"),
            ],
        )
        await persister.write(writer_for(EventKind.SWAP_OCCURRED), agg, processor=PROCESSOR)

        stats = await persister.refresh_pool_stats(agg.pool_activity)

        assert len(stats) == 1
        stat = await HyperionPoolRepository(async_session).get_pool_stat(POOL_P)
        assert stat is not None
        assert stat.swap_count_24h == 2
        assert stat.unique_traders_24h == 2
        assert stat.volume_24h == DecimalString("2000")
        assert stat.fees_24h == DecimalString("6")
        assert stat.last_price == DecimalString("3")
        assert stat.price_change_24h == DecimalString("50")
        assert stat.tvl_usd.is_zero()
        assert stat.apr.is_zero()
        assert stat.last_update_timestamp == 1_000_100

    @pytest.mark.asyncio
    async def test_refresh_pool_stats_windows(self, persister, async_session) -> None:
        day = 24 * 3600
        agg = aggregate(
            EventKind.SWAP_OCCURRED,
            [
                swap_occurred(1, 0, ts=1_000_000),
                swap_occurred(2, 0, ts=1_000_000 + 2 * day),
                swap_occurred(3, 0, ts=1_000_000 + 8 * day),
            ],
        )
        await persister.write(writer_for(EventKind.SWAP_OCCURRED), agg, processor=PROCESSOR)
        await persister.refresh_pool_stats(agg.pool_activity)

        stat = await HyperionPoolRepository(async_session).get_pool_stat(POOL_P)
        assert stat is not None
        assert stat.swap_count_24h == 1
        assert stat.swap_count_7d == 2
        assert stat.volume_7d == DecimalString("2000")
