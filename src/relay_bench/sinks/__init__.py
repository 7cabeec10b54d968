"""Result sinks: csv, database (SQLAlchemy), stdout, or none."""

from __future__ import annotations

from typing import TYPE_CHECKING

from relay_bench.sinks.base import Sink

if TYPE_CHECKING:
    from relay_bench.config import BenchConfig

__all__ = ["Sink", "setup_sink"]


def setup_sink(cfg: BenchConfig) -> Sink | None:
    """Build the configured sink. Returns None for ``sink: none``."""
    if cfg.sink == "none":
        return None
    if cfg.sink == "stdout":
        from relay_bench.sinks.stdout import StdoutSink
        return StdoutSink()
    if cfg.sink == "csv":
        from relay_bench.sinks.csv_sink import CsvSink
        return CsvSink(cfg.csv_prefix, cfg.stream)
    if cfg.sink == "database":
        from relay_bench.sinks.database import DatabaseSink
        from relay_bench.sinks.db import init_db
        return DatabaseSink(init_db(cfg.database_url), cfg.stream, retry_delay=cfg.sink_retry_delay_sec)
    raise ValueError(f"unknown sink {cfg.sink!r}")
