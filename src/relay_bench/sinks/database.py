"""Database sink — buffers rows per interval, batch-inserts on flush.

Inserts run in a worker thread via asyncio.to_thread() so the event loop
keeps draining source websockets during slow writes. Transient database
errors are retried forever; the next interval simply starts later.
"""

from __future__ import annotations

import asyncio
import logging
import time

from sqlalchemy import Table
from sqlalchemy.engine import Engine as SAEngine
from sqlalchemy.exc import InterfaceError, OperationalError

from relay_bench.models import DetailRow, IntervalStatsRow, StreamKind
from relay_bench.sinks.schema import PERCENTILE_COLUMNS, TABLES

log = logging.getLogger("rb.sink.database")

RETRY_DELAY_SEC = 2.0

TRANSIENT_ERRORS = (OperationalError, InterfaceError)


class DatabaseSink:
    def __init__(self, engine: SAEngine, kind: StreamKind, retry_delay: float = RETRY_DELAY_SEC):
        self._engine = engine
        self.kind = kind
        self.retry_delay = retry_delay
        self._detail_table, self._stats_table = TABLES[kind]
        self._detail_rows: list[dict] = []
        self._stats_rows: list[dict] = []
        self._flushing = False
        self._total_written = 0
        self._total_flushed = 0
        self._retries = 0

    def record_detail_row(self, row: DetailRow) -> None:
        values = {
            "fiber_timestamp": row.primary_ts,
            "other_timestamp": row.other_ts,
            "difference": row.difference_us,
            "benchmark_id": row.benchmark_id,
        }
        if self.kind == StreamKind.TRANSACTIONS:
            values.update({
                "tx_hash": row.hash,
                "from": row.sender,
                "to": row.recipient,
                "calldata_size": row.size,
            })
        else:
            values.update({"block_hash": row.hash, "transactions_len": row.size})
        self._detail_rows.append(values)

    def record_stats_row(self, row: IntervalStatsRow) -> None:
        values = {
            "start_time": row.start_time,
            "end_time": row.end_time,
            "benchmark_id": row.benchmark_id,
            "fiber_won": row.win_ratio,
            "min": row.min,
            "max": row.max,
            "mean": row.mean,
            "stdev": row.stdev,
            "sample_count": row.sample_count,
        }
        for pct, col in PERCENTILE_COLUMNS.items():
            values[col] = row.percentiles.get(pct)
        self._stats_rows.append(values)

    async def flush(self) -> None:
        """Write all pending rows. Retries transient errors until they succeed."""
        if self._flushing:
            raise RuntimeError("flush already in flight")
        if not self._detail_rows and not self._stats_rows:
            return

        self._flushing = True
        batch = [(self._detail_table, self._detail_rows), (self._stats_table, self._stats_rows)]
        self._detail_rows, self._stats_rows = [], []
        start = time.monotonic()
        attempt = 0
        try:
            while True:
                attempt += 1
                try:
                    count = await asyncio.to_thread(self._write_batch, batch)
                    break
                except TRANSIENT_ERRORS as e:
                    self._retries += 1
                    log.error("DB_WRITE │ flush failed (attempt %d), retrying in %.1fs: %s",
                              attempt, self.retry_delay, e)
                    await asyncio.sleep(self.retry_delay)
        finally:
            self._flushing = False

        self._total_written += count
        self._total_flushed += 1
        log.debug("DB_WRITE │ inserted %d rows in %.3fs", count, time.monotonic() - start)

    def _write_batch(self, batch: list[tuple[Table, list[dict]]]) -> int:
        """Synchronous batch insert in one transaction. Runs in thread pool."""
        total = 0
        with self._engine.begin() as conn:
            for table, rows in batch:
                if rows:
                    conn.execute(table.insert(), rows)
                    total += len(rows)
        return total

    async def close(self) -> None:
        await asyncio.to_thread(self._engine.dispose)

    @property
    def stats(self) -> dict:
        return {
            "total_written": self._total_written,
            "total_flushed": self._total_flushed,
            "retries": self._retries,
            "pending": len(self._detail_rows) + len(self._stats_rows),
        }
