"""Console sink — prints one summary line per interval, ignores detail rows."""

from __future__ import annotations

import sys
from typing import TextIO

from relay_bench.models import DetailRow, IntervalStatsRow


class StdoutSink:
    def __init__(self, stream: TextIO | None = None):
        self._stream = stream or sys.stdout
        self._pending: list[IntervalStatsRow] = []

    def record_detail_row(self, row: DetailRow) -> None:
        pass

    def record_stats_row(self, row: IntervalStatsRow) -> None:
        self._pending.append(row)

    async def flush(self) -> None:
        for row in self._pending:
            pcts = " ".join(f"p{p:g}={v:.3f}" for p, v in sorted(row.percentiles.items()))
            self._stream.write(
                f"[{row.benchmark_id}] {row.start_time:%H:%M:%S}-{row.end_time:%H:%M:%S} "
                f"n={row.sample_count} mean={row.mean:.3f}ms median={row.median:.3f}ms "
                f"min={row.min:.3f}ms max={row.max:.3f}ms won={row.win_ratio * 100:.2f}% {pcts}\n"
            )
        self._pending.clear()
        self._stream.flush()

    async def close(self) -> None:
        pass
