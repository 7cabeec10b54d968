"""Result sink contract.

Sinks are dumb recorders: ``record_*`` buffers, ``flush()`` persists. Flush
must be safe to call with nothing pending. The runner awaits each flush
before starting the next interval, so at most one flush is ever in flight.
"""

from __future__ import annotations

from typing import Protocol

from relay_bench.models import DetailRow, IntervalStatsRow


class Sink(Protocol):
    def record_detail_row(self, row: DetailRow) -> None:
        ...

    def record_stats_row(self, row: IntervalStatsRow) -> None:
        ...

    async def flush(self) -> None:
        ...

    async def close(self) -> None:
        ...
