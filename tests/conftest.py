"""Shared fixtures for relay benchmark tests."""

from __future__ import annotations

import asyncio

import pytest

from relay_bench.config import BenchConfig
from relay_bench.models import ConfirmationBatch, Observation, StreamKind
from relay_bench.streams.base import ObservationChannel


def tx_hash(n: int) -> str:
    """Deterministic 0x-prefixed 32-byte hash for test data."""
    return "0x" + f"{n:064x}"


def obs(n: int, ts: int, **kw) -> Observation:
    return Observation(hash=tx_hash(n), timestamp=ts, **kw)


def batch(block: int, *ns: int) -> ConfirmationBatch:
    return ConfirmationBatch(block_number=block, hashes=tuple(tx_hash(n) for n in ns))


class FakeSource:
    """In-memory ObservationSource: connect/close only record calls."""

    def __init__(self, name: str, connect_delay: float = 0.0, fail: Exception | None = None):
        self.name = name
        self.connect_delay = connect_delay
        self.fail = fail
        self.connected = False
        self.closed = False
        self.counters = {"messages": 0, "reconnects": 0, "parse_errors": 0, "dropped": 0}

    async def connect(self) -> None:
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if self.fail is not None:
            raise self.fail
        self.connected = True

    def subscribe_observations(self, kind: StreamKind) -> ObservationChannel[Observation]:
        return ObservationChannel(f"{self.name}.{kind.value}")

    async def close(self) -> None:
        self.closed = True

    @property
    def stats(self) -> dict:
        return dict(self.counters)


class RecordingSink:
    """Sink that keeps every row and every flush in order."""

    def __init__(self, fail_flush: Exception | None = None):
        self.detail_rows = []
        self.stats_rows = []
        self.events = []
        self.fail_flush = fail_flush
        self.closed = False

    def record_detail_row(self, row) -> None:
        self.detail_rows.append(row)
        self.events.append("detail")

    def record_stats_row(self, row) -> None:
        self.stats_rows.append(row)
        self.events.append("stats")

    async def flush(self) -> None:
        self.events.append("flush")
        if self.fail_flush is not None:
            raise self.fail_flush

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def bench_cfg() -> BenchConfig:
    return BenchConfig(
        primary_endpoints=("ws://relay.test/ws",),
        secondary_endpoint="ws://other.test/ws",
        secondary_kind="relay",
        interval_sec=0.05,
        interval_count=2,
        connect_timeout_sec=0.5,
        show_histogram=False,
        sink="none",
        benchmark_id="test",
    )
