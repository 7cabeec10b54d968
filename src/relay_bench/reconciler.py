"""
Interval reconciler — one measurement window over the two observation feeds.

A single coroutine multiplexes the primary, secondary and (optional)
ground-truth channels against a deadline. Each interval gets fresh hash maps
owned by an ``IntervalState``; nothing outlives the interval except the
channels, so items still buffered when the window closes are picked up by
the next interval.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timezone

from relay_bench.models import (
    Classification,
    ClassificationCounts,
    ConfirmationBatch,
    DetailRow,
    IntervalResult,
    Observation,
)
from relay_bench.sinks.base import Sink
from relay_bench.streams.base import ChannelClosed, ObservationChannel

log = logging.getLogger("rb.reconciler")


class IntervalState:
    """
    Hash maps for one interval.

    First arrival per (source, hash) wins; later arrivals are counted as
    duplicates and discarded. The comparison universe is the ground-truth set
    with cross-check, otherwise the primary's own hashes.
    """

    def __init__(
        self,
        cross_check: bool = False,
        primary_name: str = "primary",
        secondary_name: str = "secondary",
    ):
        self.cross_check = cross_check
        self.primary_name = primary_name
        self.secondary_name = secondary_name
        self.primary: dict[str, Observation] = {}
        self.secondary: dict[str, Observation] = {}
        self.truth: set[str] = set()
        self.duplicates = {primary_name: 0, secondary_name: 0}

    def _observe(self, seen: dict[str, Observation], source: str, obs: Observation) -> bool:
        if obs.hash in seen:
            self.duplicates[source] += 1
            log.warning("DUPLICATE │ source=%s hash=%s", source, obs.hash)
            return False
        seen[obs.hash] = obs
        return True

    def observe_primary(self, obs: Observation) -> bool:
        return self._observe(self.primary, self.primary_name, obs)

    def observe_secondary(self, obs: Observation) -> bool:
        return self._observe(self.secondary, self.secondary_name, obs)

    def confirm(self, batch: ConfirmationBatch) -> None:
        if not self.cross_check:
            return
        self.truth.update(batch.hashes)
        log.debug("CONFIRMED │ block=%d total_confirmed=%d", batch.block_number, len(self.truth))

    def classify(self, benchmark_id: str = "") -> tuple[list[float], ClassificationCounts, list[DetailRow]]:
        """
        Walk the comparison universe.

        Returns the real differences in milliseconds (both-saw only), the
        per-classification counts, and one detail row per classified hash.
        """
        differences: list[float] = []
        counts = ClassificationCounts()
        rows: list[DetailRow] = []

        if self.cross_check:
            universe = self.truth
            seen = self.primary.keys() | self.secondary.keys()
            counts.unconfirmed = len(seen - self.truth)
        else:
            universe = self.primary.keys()

        for h in universe:
            p = self.primary.get(h)
            s = self.secondary.get(h)
            if p is not None and s is not None:
                micro = s.timestamp - p.timestamp
                differences.append(micro / 1000)
                counts.both += 1
                rows.append(_row(h, p.timestamp, s.timestamp, micro, Classification.BOTH, p, benchmark_id))
            elif p is not None:
                counts.only_primary += 1
                rows.append(_row(h, p.timestamp, 0, 0, Classification.ONLY_PRIMARY, p, benchmark_id))
            elif s is not None:
                counts.only_secondary += 1
                rows.append(_row(h, 0, s.timestamp, 0, Classification.ONLY_SECONDARY, s, benchmark_id))
            else:
                counts.unobserved += 1

        return differences, counts, rows


def _row(
    h: str,
    primary_ts: int,
    other_ts: int,
    micro: int,
    cls: Classification,
    obs: Observation,
    benchmark_id: str,
) -> DetailRow:
    return DetailRow(
        hash=h,
        primary_ts=primary_ts,
        other_ts=other_ts,
        difference_us=micro,
        benchmark_id=benchmark_id,
        classification=cls,
        sender=obs.sender,
        recipient=obs.recipient,
        size=obs.size,
    )


class IntervalReconciler:
    def __init__(
        self,
        primary: ObservationChannel[Observation],
        secondary: ObservationChannel[Observation],
        ground_truth: ObservationChannel[ConfirmationBatch] | None = None,
        *,
        cross_check: bool = False,
        log_missing: bool = False,
        sink: Sink | None = None,
        benchmark_id: str = "",
        primary_name: str = "primary",
        secondary_name: str = "secondary",
        max_observations: int = 0,
    ):
        if cross_check and ground_truth is None:
            raise ValueError("cross_check requires a ground-truth channel")
        self.primary = primary
        self.secondary = secondary
        self.ground_truth = ground_truth
        self.cross_check = cross_check
        self.log_missing = log_missing
        self.sink = sink
        self.benchmark_id = benchmark_id
        self.primary_name = primary_name
        self.secondary_name = secondary_name
        self.max_observations = max_observations

    def new_state(self) -> IntervalState:
        return IntervalState(self.cross_check, self.primary_name, self.secondary_name)

    async def run(self, interval_sec: float) -> IntervalResult:
        """Collect one interval, then classify and emit detail rows."""
        state = self.new_state()
        start_time = datetime.now(timezone.utc)
        log.info(
            "BUFFERED │ %s=%d %s=%d",
            self.primary_name, self.primary.qsize(), self.secondary_name, self.secondary.qsize(),
        )

        closed = await self._collect(state, interval_sec)
        end_time = datetime.now(timezone.utc)
        return self.finish(state, start_time, end_time, closed)

    async def _collect(self, state: IntervalState, interval_sec: float) -> bool:
        """Select loop. Returns True if a channel closed before the deadline."""
        handlers: dict[ObservationChannel, Callable] = {
            self.primary: state.observe_primary,
            self.secondary: state.observe_secondary,
        }
        if self.ground_truth is not None:
            handlers[self.ground_truth] = state.confirm

        loop = asyncio.get_running_loop()
        deadline = loop.time() + interval_sec
        getters: dict[asyncio.Task, ObservationChannel] = {}
        closed = False

        try:
            while not closed:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                waiting = set(getters.values())
                for channel in handlers:
                    if channel not in waiting:
                        getters[asyncio.create_task(channel.get())] = channel

                done, _ = await asyncio.wait(getters, timeout=remaining, return_when=asyncio.FIRST_COMPLETED)
                if not done:
                    break

                for task in done:
                    channel = getters.pop(task)
                    try:
                        item = task.result()
                    except ChannelClosed:
                        log.warning("CHANNEL_CLOSED │ %s, ending interval", channel.name)
                        closed = True
                        continue
                    handlers[channel](item)

                if self.max_observations and len(state.primary) >= self.max_observations:
                    break
        finally:
            for task in getters:
                task.cancel()
            if getters:
                await asyncio.gather(*getters, return_exceptions=True)
            # A getter may have taken an item off its channel before the
            # cancel landed; record it rather than lose it.
            for task, channel in getters.items():
                if not task.cancelled() and task.exception() is None:
                    handlers[channel](task.result())

        return closed

    def finish(
        self,
        state: IntervalState,
        start_time: datetime,
        end_time: datetime,
        closed: bool = False,
    ) -> IntervalResult:
        differences, counts, rows = state.classify(self.benchmark_id)

        for row in rows:
            if self.log_missing:
                if row.classification == Classification.ONLY_PRIMARY:
                    log.warning("MISSED │ %s saw %s but %s did not", self.primary_name, row.hash, self.secondary_name)
                elif row.classification == Classification.ONLY_SECONDARY:
                    log.warning("MISSED │ %s saw %s but %s did not", self.secondary_name, row.hash, self.primary_name)
            if self.sink is not None:
                self.sink.record_detail_row(row)

        log.info(
            "INTERVAL_CLOSED │ %s=%d %s=%d confirmed=%d both=%d only_%s=%d only_%s=%d unconfirmed=%d",
            self.primary_name, len(state.primary), self.secondary_name, len(state.secondary),
            len(state.truth), counts.both, self.primary_name, counts.only_primary,
            self.secondary_name, counts.only_secondary, counts.unconfirmed,
        )

        return IntervalResult(
            start_time=start_time,
            end_time=end_time,
            differences=differences,
            counts=counts,
            primary_seen=len(state.primary),
            secondary_seen=len(state.secondary),
            confirmed=len(state.truth),
            duplicates=dict(state.duplicates),
            closed=closed,
        )
