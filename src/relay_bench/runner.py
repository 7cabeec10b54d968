"""
Benchmark runner — connect both feeds, run N intervals, flush each to the sink.

State machine:
    IDLE → CONNECTING → RUNNING(i) → FLUSHING → RUNNING(i+1) … → COMPLETE

A connect failure is fatal (ConnectivityError). A failed interval, e.g. one
with no matched hashes, is logged and skipped. Each flush completes before
the next interval starts, so sink writes stay ordered and memory bounded.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from relay_bench.config import BenchConfig
from relay_bench.histogram import make_histogram
from relay_bench.models import ClassificationCounts, IntervalResult, IntervalStatsRow
from relay_bench.reconciler import IntervalReconciler
from relay_bench.sinks.base import Sink
from relay_bench.stats import DistributionStats, InsufficientData, aggregate, build_stats_row
from relay_bench.streams.base import ConnectivityError, ObservationChannel, ObservationSource

log = logging.getLogger("rb.runner")


class RunnerState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    RUNNING = "running"
    FLUSHING = "flushing"
    COMPLETE = "complete"


@dataclass
class RunSummary:
    benchmark_id: str
    intervals_completed: int = 0
    intervals_skipped: int = 0
    counts: ClassificationCounts = field(default_factory=ClassificationCounts)
    duplicates: dict[str, int] = field(default_factory=dict)
    differences: list[float] = field(default_factory=list)
    stats: DistributionStats | None = None


class BenchmarkRunner:
    def __init__(
        self,
        cfg: BenchConfig,
        primary_source: ObservationSource,
        secondary_source: ObservationSource,
        primary: ObservationChannel,
        secondary: ObservationChannel,
        ground_truth: ObservationChannel | None = None,
        sink: Sink | None = None,
        on_interval: Callable[[int, IntervalResult, IntervalStatsRow | None], None] | None = None,
    ):
        """
        Args:
            cfg: Validated benchmark config
            primary_source: Feed under test, owns ``primary`` (and ``ground_truth``)
            secondary_source: Comparison feed, owns ``secondary``
            primary: Primary observation channel, subscribed before connect
            secondary: Secondary observation channel
            ground_truth: Confirmation channel, required when cfg.cross_check
            sink: Result sink, None to record nothing
            on_interval: Callback after each interval with its raw result and stats row
        """
        self.cfg = cfg
        self.primary_source = primary_source
        self.secondary_source = secondary_source
        self.sink = sink
        self.on_interval = on_interval
        self.state = RunnerState.IDLE
        self._channels = [c for c in (primary, secondary, ground_truth) if c is not None]
        self._stop_requested = False

        self.reconciler = IntervalReconciler(
            primary,
            secondary,
            ground_truth if cfg.cross_check else None,
            cross_check=cfg.cross_check,
            log_missing=cfg.log_missing,
            sink=sink,
            benchmark_id=cfg.benchmark_id,
            primary_name=primary_source.name,
            secondary_name=secondary_source.name,
            max_observations=cfg.max_observations,
        )
        self.summary = RunSummary(benchmark_id=cfg.benchmark_id)

    async def connect(self) -> None:
        """Open both feeds within the configured timeout."""
        self.state = RunnerState.CONNECTING
        for source in (self.primary_source, self.secondary_source):
            log.info("CONNECTING │ %s (timeout=%.1fs)", source.name, self.cfg.connect_timeout_sec)
            try:
                await asyncio.wait_for(source.connect(), self.cfg.connect_timeout_sec)
            except asyncio.TimeoutError:
                raise ConnectivityError(
                    f"{source.name}: no connection within {self.cfg.connect_timeout_sec}s"
                ) from None

    async def run(self) -> RunSummary:
        try:
            await self.connect()
            log.info(
                "BENCHMARK_START │ id=%s stream=%s intervals=%d x %.1fs cross_check=%s",
                self.cfg.benchmark_id, self.cfg.stream.value, self.cfg.interval_count,
                self.cfg.interval_sec, self.cfg.cross_check,
            )
            for i in range(self.cfg.interval_count):
                if self._stop_requested:
                    break
                result = await self.run_interval(i)
                if result.closed:
                    log.info("STREAM_CLOSED │ stopping after interval %d", i + 1)
                    break
        finally:
            await self.shutdown()

        self._finalize_summary()
        return self.summary

    async def run_interval(self, index: int) -> IntervalResult:
        self.state = RunnerState.RUNNING
        log.info("INTERVAL │ %d/%d", index + 1, self.cfg.interval_count)
        result = await self.reconciler.run(self.cfg.interval_sec)

        self.summary.counts.add(result.counts)
        self.summary.differences.extend(result.differences)
        for source, n in result.duplicates.items():
            self.summary.duplicates[source] = self.summary.duplicates.get(source, 0) + n

        if self.cfg.show_histogram and self.cfg.sink != "database" and result.differences:
            log.info("HISTOGRAM │ differences in ms\n%s", make_histogram(result.differences))

        row = None
        try:
            row = build_stats_row(
                result.differences,
                result.start_time,
                result.end_time,
                self.cfg.benchmark_id,
                self.cfg.percentiles,
            )
        except InsufficientData as e:
            self.summary.intervals_skipped += 1
            log.warning("INTERVAL_SKIPPED │ %d: %s", index + 1, e)
        else:
            self.summary.intervals_completed += 1
            self._log_stats(row)
            if self.sink is not None:
                self.sink.record_stats_row(row)

        await self._flush()
        if self.on_interval is not None:
            self.on_interval(index, result, row)
        return result

    async def _flush(self) -> None:
        if self.sink is None:
            return
        self.state = RunnerState.FLUSHING
        try:
            await self.sink.flush()
        except Exception as e:
            log.error("FLUSH_FAILED │ %s", e)

    def _log_stats(self, row: IntervalStatsRow) -> None:
        log.info(
            "STATS │ n=%d mean=%.4fms median=%.4fms stdev=%.4fms min=%.4fms max=%.4fms",
            row.sample_count, row.mean, row.median, row.stdev, row.min, row.max,
        )
        log.info("STATS │ %s won %.2f%%", self.primary_source.name, row.win_ratio * 100)

    def stop(self) -> None:
        """Request cancellation. Closing the channels ends the current interval."""
        self._stop_requested = True
        for channel in self._channels:
            channel.close()

    async def shutdown(self) -> None:
        for source in (self.primary_source, self.secondary_source):
            try:
                await source.close()
            except Exception as e:
                log.warning("CLOSE_FAILED │ %s: %s", source.name, e)
        self.state = RunnerState.COMPLETE

    def _finalize_summary(self) -> None:
        s = self.summary
        try:
            s.stats = aggregate(s.differences, self.cfg.percentiles)
        except InsufficientData:
            s.stats = None

        log.info(
            "BENCHMARK_COMPLETE │ id=%s intervals=%d skipped=%d both=%d only_%s=%d only_%s=%d unobserved=%d",
            s.benchmark_id, s.intervals_completed, s.intervals_skipped, s.counts.both,
            self.primary_source.name, s.counts.only_primary,
            self.secondary_source.name, s.counts.only_secondary, s.counts.unobserved,
        )
        for source in (self.primary_source, self.secondary_source):
            st = source.stats
            log.info(
                "FEED_STATS │ %s messages=%d reconnects=%d parse_errors=%d dropped=%d duplicates=%d",
                source.name, st["messages"], st["reconnects"], st["parse_errors"], st["dropped"],
                s.duplicates.get(source.name, 0),
            )
        if s.stats is not None:
            log.info(
                "OVERALL │ n=%d mean=%.4fms median=%.4fms stdev=%.4fms %s won %.2f%%",
                s.stats.count, s.stats.mean, s.stats.median, s.stats.stdev,
                self.primary_source.name, s.stats.win_ratio * 100,
            )
