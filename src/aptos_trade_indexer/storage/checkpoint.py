"""Durable record of how far each consumer has processed the stream."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from aptos_trade_indexer.storage.repos import ProcessorStatusDTO, ProcessorStatusRepository

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


class CheckpointCoordinator:
    """Reads and advances ``processor_status``.

    Progress is written in its own transaction after every table of a batch
    committed, so a recorded version always means "fully persisted".
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def record_progress(
        self,
        consumer: str,
        version: int,
        observed_at: datetime | None = None,
        last_transaction_timestamp: datetime | None = None,
    ) -> None:
        """Record that ``consumer`` has persisted everything through ``version``.

        A lower version than the stored one is ignored.
        """
        async with self._session_factory() as session, session.begin():
            await ProcessorStatusRepository(session).upsert(
                ProcessorStatusDTO(
                    processor=consumer,
                    last_success_version=version,
                    last_updated=observed_at or datetime.now(UTC),
                    last_transaction_timestamp=last_transaction_timestamp,
                )
            )
        logger.debug("Checkpoint %s -> %d", consumer, version)

    async def last_progress(self, consumer: str) -> int | None:
        async with self._session_factory() as session:
            status = await ProcessorStatusRepository(session).get(consumer)
        return status.last_success_version if status else None

    async def resume_version(self, consumer: str, starting_version: int = 0) -> int:
        """Next version to request from the stream."""
        last = await self.last_progress(consumer)
        if last is None:
            return starting_version
        return max(last + 1, starting_version)
