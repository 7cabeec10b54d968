"""CSV sink — ``<prefix>.observations.csv`` for detail rows, ``<prefix>.stats.csv`` for stats."""

from __future__ import annotations

import csv
import logging
from pathlib import Path

from relay_bench.models import DetailRow, IntervalStatsRow, StreamKind

log = logging.getLogger("rb.sink.csv")

DETAIL_HEADERS = {
    StreamKind.TRANSACTIONS: ["tx_hash", "fiber_timestamp", "other_timestamp", "diff", "from", "to", "calldata_size"],
    StreamKind.BLOCKS: ["block_hash", "fiber_timestamp", "other_timestamp", "diff", "tx_count"],
}
STATS_HEADER = ["mean", "p50", "min", "max"]


class CsvSink:
    def __init__(self, prefix: str | Path, kind: StreamKind):
        self.kind = kind
        prefix = Path(prefix)
        prefix.parent.mkdir(parents=True, exist_ok=True)
        self.observations_path = prefix.with_name(prefix.name + ".observations.csv")
        self.stats_path = prefix.with_name(prefix.name + ".stats.csv")

        self._obs_file = open(self.observations_path, "w", newline="", encoding="utf-8")
        self._stats_file = open(self.stats_path, "w", newline="", encoding="utf-8")
        self._obs_writer = csv.writer(self._obs_file)
        self._stats_writer = csv.writer(self._stats_file)
        self._obs_writer.writerow(DETAIL_HEADERS[kind])
        self._stats_writer.writerow(STATS_HEADER)
        log.info("CSV │ writing %s and %s", self.observations_path, self.stats_path)

    def record_detail_row(self, row: DetailRow) -> None:
        if self.kind == StreamKind.TRANSACTIONS:
            self._obs_writer.writerow([
                row.hash, row.primary_ts, row.other_ts, row.difference_us,
                row.sender, row.recipient, row.size,
            ])
        else:
            self._obs_writer.writerow([
                row.hash, row.primary_ts, row.other_ts, row.difference_us, row.size,
            ])

    def record_stats_row(self, row: IntervalStatsRow) -> None:
        self._stats_writer.writerow([row.mean, row.median, row.min, row.max])

    async def flush(self) -> None:
        self._obs_file.flush()
        self._stats_file.flush()

    async def close(self) -> None:
        self._obs_file.close()
        self._stats_file.close()
