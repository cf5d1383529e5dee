"""In-memory reduction of domain events into rows and statistic deltas."""

from aptos_trade_indexer.aggregator.stats import (
    Aggregation,
    PoolActivity,
    TraderStatDelta,
    UserStatDelta,
    aggregate,
)

__all__ = [
    "Aggregation",
    "PoolActivity",
    "TraderStatDelta",
    "UserStatDelta",
    "aggregate",
]
