"""Storage layer - Database schema, repositories and the chunked write path."""

from aptos_trade_indexer.storage.checkpoint import CheckpointCoordinator
from aptos_trade_indexer.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from aptos_trade_indexer.storage.models import Base
from aptos_trade_indexer.storage.persister import (
    BatchPersistenceError,
    ChunkedPersister,
    ChunkTaskError,
    ChunkTransactionError,
    WriteReport,
    chunk_size_for,
    plan_chunks,
)

__all__ = [
    "Base",
    "BatchPersistenceError",
    "CheckpointCoordinator",
    "ChunkTaskError",
    "ChunkTransactionError",
    "ChunkedPersister",
    "DatabaseManager",
    "WriteReport",
    "chunk_size_for",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
    "plan_chunks",
]
