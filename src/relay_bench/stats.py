"""Distribution statistics over per-hash timing differences.

Differences are ``secondary_ts - primary_ts`` in milliseconds, so a positive
value means the primary source saw the hash first. Percentiles use numpy's
default linear interpolation between closest ranks: for n sorted samples the
p-th percentile sits at fractional index ``p / 100 * (n - 1)``.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

import numpy as np

from relay_bench.models import IntervalStatsRow

PERCENTILES_FULL: tuple[int, ...] = (1, *range(5, 100, 5), 99)
PERCENTILES_REDUCED: tuple[int, ...] = (5, 25, 50, 75, 95)

PERCENTILE_SETS = {
    "full": PERCENTILES_FULL,
    "reduced": PERCENTILES_REDUCED,
}


class InsufficientData(ValueError):
    """Raised when an aggregation step receives an empty difference set."""


@dataclass(frozen=True)
class DistributionStats:
    count: int
    mean: float
    median: float
    stdev: float
    min: float
    max: float
    percentiles: dict[float, float]
    win_ratio: float


def _as_array(differences: Sequence[float]) -> np.ndarray:
    arr = np.asarray(differences, dtype=np.float64)
    if arr.size == 0:
        raise InsufficientData("no differences to aggregate")
    return arr


def mean(differences: Sequence[float]) -> float:
    return float(np.mean(_as_array(differences)))


def median(differences: Sequence[float]) -> float:
    return float(np.median(_as_array(differences)))


def stdev(differences: Sequence[float]) -> float:
    """Population standard deviation (squared deviations divided by N)."""
    return float(np.std(_as_array(differences), ddof=0))


def percentile(differences: Sequence[float], pct: float) -> float:
    if not 0 <= pct <= 100:
        raise ValueError(f"percentile must be in [0, 100], got {pct}")
    return float(np.percentile(_as_array(differences), pct, method="linear"))


def win_ratio(differences: Sequence[float]) -> float:
    """Fraction of differences where the primary was strictly faster.

    A zero difference is a tie and counts against the primary.
    """
    arr = _as_array(differences)
    return int(np.count_nonzero(arr > 0)) / arr.size


def aggregate(
    differences: Sequence[float],
    percentiles: Sequence[float] = PERCENTILES_FULL,
) -> DistributionStats:
    """Compute the full summary in one pass over a single array."""
    arr = _as_array(differences)
    pcts = list(percentiles)
    values = np.percentile(arr, pcts, method="linear") if pcts else []
    return DistributionStats(
        count=int(arr.size),
        mean=float(np.mean(arr)),
        median=float(np.median(arr)),
        stdev=float(np.std(arr, ddof=0)),
        min=float(np.min(arr)),
        max=float(np.max(arr)),
        percentiles={p: float(v) for p, v in zip(pcts, values)},
        win_ratio=int(np.count_nonzero(arr > 0)) / arr.size,
    )


def build_stats_row(
    differences: Sequence[float],
    start_time: datetime,
    end_time: datetime,
    benchmark_id: str,
    percentiles: Sequence[float] = PERCENTILES_FULL,
) -> IntervalStatsRow:
    """Summarize one interval. Raises InsufficientData on an empty set."""
    s = aggregate(differences, percentiles)
    return IntervalStatsRow(
        start_time=start_time,
        end_time=end_time,
        mean=s.mean,
        median=s.median,
        stdev=s.stdev,
        min=s.min,
        max=s.max,
        percentiles=s.percentiles,
        win_ratio=s.win_ratio,
        sample_count=s.count,
        benchmark_id=benchmark_id,
    )


def resolve_percentiles(value: str | Sequence[float]) -> tuple[float, ...]:
    """
    Turn a config value into a sorted tuple.

    Accepts a set name (``full``, ``reduced``, any case), a comma-separated
    string such as ``"5,50,95"``, or a sequence of numbers.
    """
    if isinstance(value, str):
        name = value.strip().lower()
        if name in PERCENTILE_SETS:
            return PERCENTILE_SETS[name]
        try:
            value = [float(p) for p in name.split(",") if p.strip()]
        except ValueError:
            raise ValueError(
                f"unknown percentile set {value!r}, expected one of {sorted(PERCENTILE_SETS)} "
                "or a comma-separated list"
            ) from None
        if not value:
            raise ValueError("empty percentile list")
    values = tuple(sorted({float(p) for p in value}))
    for p in values:
        if not 0 <= p <= 100:
            raise ValueError(f"percentile must be in [0, 100], got {p}")
    return tuple(int(p) if p.is_integer() else p for p in values)
