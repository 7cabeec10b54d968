"""Tests for the benchmark runner lifecycle."""

import asyncio
import logging
from dataclasses import replace

import pytest

from conftest import FakeSource, RecordingSink, obs
from relay_bench.models import StreamKind
from relay_bench.runner import BenchmarkRunner, RunnerState
from relay_bench.streams.base import ConnectivityError


def _runner(cfg, sink=None, primary_source=None, on_interval=None):
    primary_source = primary_source or FakeSource("relay")
    secondary_source = FakeSource("bloxroute")
    primary = primary_source.subscribe_observations(StreamKind.TRANSACTIONS)
    secondary = secondary_source.subscribe_observations(StreamKind.TRANSACTIONS)
    runner = BenchmarkRunner(
        cfg, primary_source, secondary_source, primary, secondary, sink=sink, on_interval=on_interval,
    )
    return runner, primary, secondary


class TestRunnerLifecycle:
    def test_full_run(self, bench_cfg):
        async def scenario():
            runner, primary, secondary = _runner(bench_cfg)
            primary.offer(obs(1, 1_000))
            secondary.offer(obs(1, 1_500))
            summary = await runner.run()
            return runner, summary

        runner, summary = asyncio.run(scenario())
        assert runner.state == RunnerState.COMPLETE
        assert runner.primary_source.connected and runner.primary_source.closed
        assert runner.secondary_source.closed
        assert summary.benchmark_id == "test"
        assert summary.intervals_completed == 1
        assert summary.intervals_skipped == 1
        assert summary.differences == [0.5]
        assert summary.stats is not None
        assert summary.stats.win_ratio == 1.0

    def test_empty_intervals_are_skipped(self, bench_cfg):
        async def scenario():
            runner, _, _ = _runner(bench_cfg)
            return await runner.run()

        summary = asyncio.run(scenario())
        assert summary.intervals_completed == 0
        assert summary.intervals_skipped == 2
        assert summary.stats is None

    def test_only_primary_interval_is_skipped(self, bench_cfg):
        async def scenario():
            runner, primary, _ = _runner(replace(bench_cfg, interval_count=1))
            primary.offer(obs(1, 1_000))
            return await runner.run()

        summary = asyncio.run(scenario())
        assert summary.intervals_skipped == 1
        assert summary.counts.only_primary == 1

    def test_connect_timeout(self, bench_cfg):
        slow = FakeSource("relay", connect_delay=1.0)

        async def scenario():
            runner, _, _ = _runner(replace(bench_cfg, connect_timeout_sec=0.05), primary_source=slow)
            with pytest.raises(ConnectivityError, match="relay"):
                await runner.run()
            return runner

        runner = asyncio.run(scenario())
        assert runner.state == RunnerState.COMPLETE
        assert slow.closed

    def test_connect_failure_propagates(self, bench_cfg):
        broken = FakeSource("relay", fail=ConnectivityError("handshake rejected"))

        async def scenario():
            runner, _, _ = _runner(bench_cfg, primary_source=broken)
            await runner.run()

        with pytest.raises(ConnectivityError, match="handshake rejected"):
            asyncio.run(scenario())

    def test_closed_channel_completes_run(self, bench_cfg):
        async def scenario():
            runner, primary, _ = _runner(replace(bench_cfg, interval_count=5, interval_sec=10.0))
            primary.close()
            return await runner.run()

        summary = asyncio.run(scenario())
        assert summary.intervals_completed + summary.intervals_skipped == 1


class TestRunnerSink:
    def test_flush_after_each_interval(self, bench_cfg):
        sink = RecordingSink()

        async def scenario():
            runner, primary, secondary = _runner(bench_cfg, sink=sink)
            primary.offer(obs(1, 1_000))
            secondary.offer(obs(1, 2_000))
            await runner.run()

        asyncio.run(scenario())
        assert sink.events == ["detail", "stats", "flush", "flush"]
        assert sink.stats_rows[0].benchmark_id == "test"
        assert sink.stats_rows[0].mean == 1.0

    def test_flush_failure_does_not_stop_run(self, bench_cfg):
        sink = RecordingSink(fail_flush=RuntimeError("disk full"))

        async def scenario():
            runner, _, _ = _runner(bench_cfg, sink=sink)
            return await runner.run()

        summary = asyncio.run(scenario())
        assert sink.events.count("flush") == 2
        assert summary.intervals_skipped == 2

    def test_on_interval_callback(self, bench_cfg):
        seen = []

        async def scenario():
            runner, primary, secondary = _runner(
                bench_cfg, on_interval=lambda i, result, row: seen.append((i, row)),
            )
            primary.offer(obs(1, 1_000))
            secondary.offer(obs(1, 900))
            await runner.run()

        asyncio.run(scenario())
        assert [i for i, _ in seen] == [0, 1]
        assert seen[0][1].win_ratio == 0.0
        assert seen[1][1] is None


class TestRunnerStop:
    def test_stop_ends_run_after_current_interval(self, bench_cfg):
        async def scenario():
            holder = {}

            def on_interval(i, result, row):
                holder["runner"].stop()

            runner, _, _ = _runner(replace(bench_cfg, interval_count=10), on_interval=on_interval)
            holder["runner"] = runner
            summary = await runner.run()
            return runner, summary

        runner, summary = asyncio.run(scenario())
        assert summary.intervals_skipped == 1
        assert runner.state == RunnerState.COMPLETE


class TestRunnerHistogram:
    def _run(self, cfg):
        async def scenario():
            runner, primary, secondary = _runner(replace(cfg, interval_count=1, show_histogram=True))
            primary.offer(obs(1, 1_000))
            secondary.offer(obs(1, 3_000))
            await runner.run()

        asyncio.run(scenario())

    def test_logged_for_console_sinks(self, bench_cfg, caplog):
        with caplog.at_level(logging.INFO, logger="rb.runner"):
            self._run(bench_cfg)
        assert "HISTOGRAM" in caplog.text

    def test_hidden_with_database_sink(self, bench_cfg, caplog):
        with caplog.at_level(logging.INFO, logger="rb.runner"):
            self._run(replace(bench_cfg, sink="database"))
        assert "HISTOGRAM" not in caplog.text


class TestRunnerSummaryLog:
    def test_feed_counters_reported(self, bench_cfg, caplog):
        async def scenario():
            runner, primary, _ = _runner(replace(bench_cfg, interval_count=1))
            runner.primary_source.counters.update(messages=42, reconnects=1, parse_errors=3, dropped=5)
            primary.offer(obs(1, 1_000))
            primary.offer(obs(1, 2_000))
            return await runner.run()

        with caplog.at_level(logging.INFO, logger="rb.runner"):
            summary = asyncio.run(scenario())
        assert summary.duplicates["relay"] == 1
        assert "FEED_STATS │ relay messages=42 reconnects=1 parse_errors=3 dropped=5 duplicates=1" in caplog.text
        assert "FEED_STATS │ bloxroute messages=0" in caplog.text
