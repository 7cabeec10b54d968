"""SQLAlchemy Core table definitions for benchmark results.

Timestamps in detail tables are unix microseconds, ``difference`` is
microseconds. Stats tables are milliseconds with one column per percentile
of the full set; columns for percentiles not configured stay NULL.
"""

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    Table,
)

from relay_bench.models import StreamKind
from relay_bench.stats import PERCENTILES_FULL

metadata = MetaData()

PERCENTILE_COLUMNS = {p: f"p{p}" for p in PERCENTILES_FULL}

confirmed_observations = Table(
    "confirmed_observations",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("tx_hash", String(66), nullable=False),
    Column("fiber_timestamp", BigInteger),
    Column("other_timestamp", BigInteger),
    Column("difference", BigInteger),
    Column("benchmark_id", String(50)),
    Column("from", String(42)),
    Column("to", String(42)),
    Column("calldata_size", BigInteger),
    Index("ix_confirmed_observations_hash", "tx_hash"),
    Index("ix_confirmed_observations_bench", "benchmark_id"),
)

confirmed_block_observations = Table(
    "confirmed_block_observations",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("block_hash", String(66), nullable=False),
    Column("fiber_timestamp", BigInteger),
    Column("other_timestamp", BigInteger),
    Column("difference", BigInteger),
    Column("benchmark_id", String(50)),
    Column("transactions_len", BigInteger),
    Index("ix_confirmed_block_observations_hash", "block_hash"),
)


def _stats_table(name: str) -> Table:
    return Table(
        name,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("start_time", DateTime(timezone=True)),
        Column("end_time", DateTime(timezone=True)),
        Column("benchmark_id", String(50)),
        Column("fiber_won", Float),
        Column("min", Float),
        Column("max", Float),
        Column("mean", Float),
        Column("stdev", Float),
        Column("sample_count", Integer),
        *(Column(col, Float) for col in PERCENTILE_COLUMNS.values()),
        Index(f"ix_{name}_end_time", "end_time"),
    )


observation_stats = _stats_table("observation_stats")
block_observation_stats = _stats_table("block_observation_stats")

TABLES = {
    StreamKind.TRANSACTIONS: (confirmed_observations, observation_stats),
    StreamKind.BLOCKS: (confirmed_block_observations, block_observation_stats),
}
