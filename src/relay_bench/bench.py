"""Entry point: ``relay-bench transactions|blocks|report``."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import re
import signal
import sys
from datetime import datetime
from pathlib import Path

from dotenv import load_dotenv

from relay_bench.config import (
    SECONDARY_KINDS,
    SINKS,
    BenchConfig,
    apply_args,
    apply_env,
    load_bench_config,
    load_yaml_config,
    validate_config,
    with_benchmark_id,
)
from relay_bench.models import StreamKind
from relay_bench.runner import BenchmarkRunner, RunSummary
from relay_bench.sinks import setup_sink
from relay_bench.streams.base import ConnectivityError
from relay_bench.streams.bloxroute import BloxrouteSource
from relay_bench.streams.relay import RelaySource

log = logging.getLogger("rb.bench")

EXIT_CONFIG = 2
EXIT_CONNECT = 1

LOG_FORMAT = "%(asctime)s │ %(name)-16s │ %(message)s"


class _StripAnsiFormatter(logging.Formatter):
    """Strip ANSI escape codes for clean log files."""
    _ansi_re = re.compile(r'\033\[[0-9;]*m')

    def format(self, record):
        result = super().format(record)
        return self._ansi_re.sub('', result)


class _ColorFormatter(logging.Formatter):
    """Dim DEBUG lines on the console for visual hierarchy."""
    _DIM = "\033[2m"
    _RESET = "\033[0m"

    def format(self, record):
        result = super().format(record)
        if record.levelno <= logging.DEBUG:
            return f"{self._DIM}{result}{self._RESET}"
        return result


def _setup_logging(level_str: str, log_dir: str | None = None) -> None:
    level = getattr(logging, level_str.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt="%H:%M:%S", force=True)

    for h in logging.getLogger().handlers:
        if isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler):
            h.setFormatter(_ColorFormatter(fmt=LOG_FORMAT, datefmt="%H:%M:%S"))

    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(path / f"relay_bench_{datetime.now():%Y-%m-%d_%H%M%S}.log")
        fh.setLevel(level)
        fh.setFormatter(_StripAnsiFormatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logging.getLogger().addHandler(fh)

    for noisy in ("websockets", "sqlalchemy.engine", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _add_benchmark_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--primary-endpoint", action="append", default=None,
                        help="Primary relay websocket endpoint (repeatable, multiplexed)")
    parser.add_argument("--primary-key", default=None, help="Primary API key")
    parser.add_argument("--secondary-endpoint", default=None, help="Secondary feed websocket endpoint")
    parser.add_argument("--secondary-key", default=None, help="Secondary API key")
    parser.add_argument("--secondary-kind", choices=SECONDARY_KINDS, default=None,
                        help="Secondary feed type; 'relay' benchmarks two relay endpoints")
    parser.add_argument("--interval", type=float, default=None, help="Interval duration in seconds")
    parser.add_argument("--interval-count", type=int, default=None, help="Number of intervals")
    parser.add_argument("--max-observations", type=int, default=None,
                        help="Also close an interval once the primary saw this many hashes")
    parser.add_argument("--cross-check", action=argparse.BooleanOptionalAction, default=None,
                        help="Only compare hashes confirmed in blocks")
    parser.add_argument("--log-missing", action=argparse.BooleanOptionalAction, default=None,
                        help="Log every hash seen by only one source")
    parser.add_argument("--sink", choices=SINKS, default=None, help="Result sink")
    parser.add_argument("--csv-prefix", default=None, help="CSV sink file prefix")
    parser.add_argument("--database-url", default=None, help="SQLAlchemy URL for the database sink")
    parser.add_argument("--benchmark-id", default=None, help="Tag for every persisted row")
    parser.add_argument("--connect-timeout", type=float, default=None, help="Seconds to establish each feed")
    parser.add_argument("--percentiles", default=None,
                        help="'full', 'reduced' or a comma-separated list")
    parser.add_argument("--no-histogram", action="store_true", help="Do not print difference histograms")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Compare delivery latency of two real-time blockchain feeds",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--config", type=Path, default=Path("config.yaml"), help="Path to YAML config file")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "debug", "info", "warning", "error"],
        help="Root log level",
    )
    parser.add_argument("--log-dir", default=None, help="Also write logs to this directory")

    sub = parser.add_subparsers(dest="command", required=True)
    for kind in StreamKind:
        p = sub.add_parser(kind.value, help=f"Benchmark the {kind.value} stream")
        p.set_defaults(stream=kind.value)
        _add_benchmark_args(p)

    report = sub.add_parser("report", help="Recompute statistics from a detail CSV")
    report.add_argument("path", type=Path, help="*.observations.csv file")
    report.add_argument("--percentiles", default="reduced", help="'full', 'reduced' or a comma-separated list")

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace, env: dict[str, str] | None = None) -> BenchConfig:
    """YAML → env → CLI, then validate. Raises ValueError on bad config."""
    cfg = load_bench_config(load_yaml_config(args.config))
    cfg = apply_env(cfg, os.environ if env is None else env)
    cfg = apply_args(cfg, args)
    validate_config(cfg)
    return with_benchmark_id(cfg)


def build_sources(cfg: BenchConfig):
    primary = RelaySource(
        list(cfg.primary_endpoints), cfg.primary_key, name="relay", buffer_size=cfg.channel_buffer_size
    )
    if cfg.secondary_kind == "relay":
        secondary = RelaySource(
            [cfg.secondary_endpoint],
            cfg.secondary_key or cfg.primary_key,
            name="relay-2",
            buffer_size=cfg.channel_buffer_size,
        )
    else:
        secondary = BloxrouteSource(cfg.secondary_endpoint, cfg.secondary_key, buffer_size=cfg.channel_buffer_size)
    return primary, secondary


async def run_benchmark(cfg: BenchConfig) -> RunSummary:
    primary, secondary = build_sources(cfg)
    primary_ch = primary.subscribe_observations(cfg.stream)
    truth_ch = primary.subscribe_confirmations() if cfg.cross_check else None
    secondary_ch = secondary.subscribe_observations(cfg.stream)

    sink = setup_sink(cfg)
    runner = BenchmarkRunner(cfg, primary, secondary, primary_ch, secondary_ch, truth_ch, sink)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, runner.stop)
        except NotImplementedError:
            pass

    try:
        return await runner.run()
    finally:
        if sink is not None:
            await sink.close()


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    load_dotenv()
    _setup_logging(args.log_level, args.log_dir)

    if args.command == "report":
        from relay_bench.report import run_report
        from relay_bench.stats import resolve_percentiles

        try:
            print(run_report(args.path, resolve_percentiles(args.percentiles)))
        except (OSError, ValueError) as e:
            log.error("REPORT_FAILED │ %s", e)
            return EXIT_CONFIG
        return 0

    try:
        cfg = build_config(args)
    except ValueError as e:
        log.error("CONFIG │ %s", e)
        return EXIT_CONFIG

    log.info(
        "INIT │ primary=%s secondary=%s (%s) sink=%s id=%s",
        ",".join(cfg.primary_endpoints), cfg.secondary_endpoint, cfg.secondary_kind,
        cfg.sink, cfg.benchmark_id,
    )

    try:
        asyncio.run(run_benchmark(cfg))
    except ConnectivityError as e:
        log.error("CONNECT │ %s", e)
        return EXIT_CONNECT
    except KeyboardInterrupt:
        log.info("SHUTDOWN │ user interrupt")
    return 0


if __name__ == "__main__":
    sys.exit(main())
