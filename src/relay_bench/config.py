"""
Benchmark configuration.

Merge order: YAML defaults (``benchmark:`` section) → environment variables → CLI arguments.
API keys come from the environment or the command line, never from YAML.
"""

from __future__ import annotations

import argparse
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from relay_bench.models import StreamKind
from relay_bench.stats import PERCENTILES_FULL, resolve_percentiles

SINKS = ("none", "stdout", "csv", "database")
SECONDARY_KINDS = ("bloxroute", "relay")


@dataclass(frozen=True)
class BenchConfig:
    stream: StreamKind = StreamKind.TRANSACTIONS

    # Feeds
    primary_endpoints: tuple[str, ...] = ()
    secondary_kind: str = "bloxroute"
    secondary_endpoint: str = ""
    connect_timeout_sec: float = 3.0
    channel_buffer_size: int = 8192

    # Intervals
    interval_sec: float = 60.0
    interval_count: int = 10
    max_observations: int = 0          # 0 = duration-only windows
    cross_check: bool = False
    log_missing: bool = False

    # Statistics
    percentiles: tuple[float, ...] = PERCENTILES_FULL
    show_histogram: bool = True

    # Output
    sink: str = "stdout"
    csv_prefix: str = "benchmarks"
    database_url: str = ""
    sink_retry_delay_sec: float = 2.0
    benchmark_id: str = ""

    # Credentials (env/CLI only)
    primary_key: str = field(default="", repr=False)
    secondary_key: str = field(default="", repr=False)


def validate_config(cfg: BenchConfig) -> None:
    """Validate config values. Raises ValueError with all issues found."""
    errors: list[str] = []

    if not cfg.primary_endpoints:
        errors.append("at least one primary endpoint is required (PRIMARY_ENDPOINTS)")
    if not cfg.secondary_endpoint:
        errors.append("secondary endpoint is required (SECONDARY_ENDPOINT)")
    if cfg.secondary_kind not in SECONDARY_KINDS:
        errors.append(f"secondary_kind must be one of {SECONDARY_KINDS}, got {cfg.secondary_kind!r}")
    if cfg.secondary_kind == "bloxroute" and not cfg.secondary_key:
        errors.append("bloxroute requires an API key (SECONDARY_API_KEY)")
    if cfg.interval_sec <= 0:
        errors.append(f"interval_sec must be > 0, got {cfg.interval_sec}")
    if cfg.interval_count < 1:
        errors.append(f"interval_count must be >= 1, got {cfg.interval_count}")
    if cfg.max_observations < 0:
        errors.append(f"max_observations must be >= 0, got {cfg.max_observations}")
    if cfg.connect_timeout_sec <= 0:
        errors.append(f"connect_timeout_sec must be > 0, got {cfg.connect_timeout_sec}")
    if cfg.channel_buffer_size < 1:
        errors.append(f"channel_buffer_size must be >= 1, got {cfg.channel_buffer_size}")
    if cfg.sink not in SINKS:
        errors.append(f"sink must be one of {SINKS}, got {cfg.sink!r}")
    if cfg.sink == "csv" and not cfg.csv_prefix:
        errors.append("csv sink requires csv_prefix")
    if cfg.sink_retry_delay_sec < 0:
        errors.append(f"sink_retry_delay_sec must be >= 0, got {cfg.sink_retry_delay_sec}")
    if cfg.cross_check and cfg.stream != StreamKind.TRANSACTIONS:
        errors.append("cross_check is only supported for the transaction stream")

    if errors:
        raise ValueError("Config validation failed:\n  " + "\n  ".join(errors))


def load_yaml_config(config_path: Path) -> dict:
    """Load configuration from YAML file. Missing file means all defaults."""
    if not config_path.exists():
        return {}
    with open(config_path) as f:
        return yaml.safe_load(f) or {}


def _split_endpoints(value: str | list | tuple | None) -> tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        value = value.split(",")
    return tuple(v.strip() for v in value if v and v.strip())


def load_bench_config(raw: dict[str, Any]) -> BenchConfig:
    """Load BenchConfig from config.yaml's benchmark section."""
    b = raw.get("benchmark", {})
    if not b:
        return BenchConfig()

    return BenchConfig(
        stream=StreamKind(b.get("stream", "transactions")),
        primary_endpoints=_split_endpoints(b.get("primary_endpoints")),
        secondary_kind=b.get("secondary_kind", "bloxroute"),
        secondary_endpoint=b.get("secondary_endpoint", "") or "",
        connect_timeout_sec=float(b.get("connect_timeout_sec", 3.0)),
        channel_buffer_size=int(b.get("channel_buffer_size", 8192)),
        interval_sec=float(b.get("interval_sec", 60.0)),
        interval_count=int(b.get("interval_count", 10)),
        max_observations=int(b.get("max_observations", 0)),
        cross_check=bool(b.get("cross_check", False)),
        log_missing=bool(b.get("log_missing", False)),
        percentiles=resolve_percentiles(b.get("percentiles", "full")),
        show_histogram=bool(b.get("show_histogram", True)),
        sink=b.get("sink", "stdout"),
        csv_prefix=b.get("csv_prefix", "benchmarks"),
        database_url=b.get("database_url", "") or "",
        sink_retry_delay_sec=float(b.get("sink_retry_delay_sec", 2.0)),
        benchmark_id=str(b.get("benchmark_id", "") or ""),
    )


def apply_env(cfg: BenchConfig, env: Mapping[str, str]) -> BenchConfig:
    """Overlay endpoints, keys and the database URL from the environment."""
    updates: dict[str, Any] = {}
    if env.get("PRIMARY_ENDPOINTS"):
        updates["primary_endpoints"] = _split_endpoints(env["PRIMARY_ENDPOINTS"])
    if env.get("SECONDARY_ENDPOINT"):
        updates["secondary_endpoint"] = env["SECONDARY_ENDPOINT"]
    if env.get("PRIMARY_API_KEY"):
        updates["primary_key"] = env["PRIMARY_API_KEY"]
    if env.get("SECONDARY_API_KEY"):
        updates["secondary_key"] = env["SECONDARY_API_KEY"]
    if env.get("DATABASE_URL"):
        updates["database_url"] = env["DATABASE_URL"]
    if env.get("BENCHMARK_ID"):
        updates["benchmark_id"] = env["BENCHMARK_ID"]
    return replace(cfg, **updates) if updates else cfg


def apply_args(cfg: BenchConfig, args: argparse.Namespace) -> BenchConfig:
    """Overlay CLI flags. Flags left at None keep the lower layer's value."""
    updates: dict[str, Any] = {}
    if getattr(args, "stream", None):
        updates["stream"] = StreamKind(args.stream)

    simple = {
        "secondary_endpoint": "secondary_endpoint",
        "secondary_kind": "secondary_kind",
        "primary_key": "primary_key",
        "secondary_key": "secondary_key",
        "interval": "interval_sec",
        "interval_count": "interval_count",
        "max_observations": "max_observations",
        "cross_check": "cross_check",
        "log_missing": "log_missing",
        "sink": "sink",
        "csv_prefix": "csv_prefix",
        "database_url": "database_url",
        "benchmark_id": "benchmark_id",
        "connect_timeout": "connect_timeout_sec",
    }
    for arg_name, field_name in simple.items():
        value = getattr(args, arg_name, None)
        if value is not None:
            updates[field_name] = value

    if getattr(args, "primary_endpoint", None):
        updates["primary_endpoints"] = _split_endpoints(args.primary_endpoint)
    if getattr(args, "percentiles", None):
        updates["percentiles"] = resolve_percentiles(args.percentiles)
    if getattr(args, "no_histogram", False):
        updates["show_histogram"] = False

    return replace(cfg, **updates) if updates else cfg


def with_benchmark_id(cfg: BenchConfig) -> BenchConfig:
    """Fill in a short random benchmark id when none was configured."""
    if cfg.benchmark_id:
        return cfg
    return replace(cfg, benchmark_id=str(uuid.uuid4())[:8])
