"""Tests for checkpoint coordination and stat watermarks."""

from datetime import UTC, datetime

import pytest

from aptos_trade_indexer.storage.checkpoint import CheckpointCoordinator
from aptos_trade_indexer.storage.repos import (
    ProcessorStatusRepository,
    StaleWatermarkError,
    StatWatermarkRepository,
)


@pytest.fixture
def checkpoints(session_factory) -> CheckpointCoordinator:
    return CheckpointCoordinator(session_factory)


class TestCheckpointCoordinator:
    @pytest.mark.asyncio
    async def test_no_progress(self, checkpoints: CheckpointCoordinator) -> None:
        assert await checkpoints.last_progress("trade_processor") is None
        assert await checkpoints.resume_version("trade_processor") == 0
        assert await checkpoints.resume_version("trade_processor", starting_version=500) == 500

    @pytest.mark.asyncio
    async def test_record_and_resume(self, checkpoints: CheckpointCoordinator, async_session) -> None:
        tx_ts = datetime(2026, 10, 1, 12, 0, tzinfo=UTC)
        await checkpoints.record_progress("trade_processor", 199, last_transaction_timestamp=tx_ts)

        assert await checkpoints.last_progress("trade_processor") == 199
        assert await checkpoints.resume_version("trade_processor") == 200
        assert await checkpoints.resume_version("trade_processor", starting_version=1_000) == 1_000

        status = await ProcessorStatusRepository(async_session).get("trade_processor")
        assert status is not None
        assert status.last_transaction_timestamp is not None

    @pytest.mark.asyncio
    async def test_never_moves_backwards(self, checkpoints: CheckpointCoordinator) -> None:
        await checkpoints.record_progress("trade_processor", 300)
        await checkpoints.record_progress("trade_processor", 250)
        assert await checkpoints.last_progress("trade_processor") == 300

    @pytest.mark.asyncio
    async def test_consumers_are_independent(self, checkpoints: CheckpointCoordinator) -> None:
        await checkpoints.record_progress("a", 10)
        await checkpoints.record_progress("b", 20)
        assert await checkpoints.last_progress("a") == 10
        assert await checkpoints.last_progress("b") == 20


class TestStatWatermarkRepository:
    @pytest.mark.asyncio
    async def test_compare_and_set(self, async_session) -> None:
        repo = StatWatermarkRepository(async_session)
        assert await repo.get("p", "trade_created") is None

        await repo.advance("p", "trade_created", expected=None, new=10)
        await repo.advance("p", "trade_created", expected=10, new=20)
        await async_session.commit()

        assert await repo.get("p", "trade_created") == 20
        assert await repo.get("p", "trade_updated") is None

    @pytest.mark.asyncio
    async def test_stale_expected_raises(self, async_session) -> None:
        repo = StatWatermarkRepository(async_session)
        await repo.advance("p", "trade_created", expected=None, new=10)

        with pytest.raises(StaleWatermarkError):
            await repo.advance("p", "trade_created", expected=5, new=30)
        with pytest.raises(StaleWatermarkError):
            await repo.advance("p", "trade_created", expected=None, new=30)
