"""Recompute benchmark statistics from a detail CSV written by the csv sink."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

import pandas as pd

from relay_bench.stats import PERCENTILES_REDUCED, DistributionStats, aggregate

log = logging.getLogger("rb.report")

HASH_COLUMNS = ("tx_hash", "block_hash")


def load_differences(path: str | Path) -> tuple[pd.Series, dict[str, int]]:
    """
    Read a ``*.observations.csv`` file.

    Returns the matched differences in milliseconds and the number of rows per
    classification. Rows with a zero timestamp on either side are misses and
    never contribute a difference.
    """
    df = pd.read_csv(path)
    hash_col = next((c for c in HASH_COLUMNS if c in df.columns), None)
    if hash_col is None:
        raise ValueError(f"{path}: no tx_hash or block_hash column")

    # Same hash may appear in several intervals; keep its first row
    df = df.drop_duplicates(subset=hash_col, keep="first")

    primary_saw = df["fiber_timestamp"] != 0
    other_saw = df["other_timestamp"] != 0
    both = primary_saw & other_saw
    counts = {
        "both": int(both.sum()),
        "only_primary": int((primary_saw & ~other_saw).sum()),
        "only_secondary": int((~primary_saw & other_saw).sum()),
    }
    return df.loc[both, "diff"].astype("float64") / 1000, counts


def format_report(stats: DistributionStats, counts: dict[str, int]) -> str:
    lines = [
        "=" * 40,
        "BENCHMARK REPORT",
        "=" * 40,
        f"Matched: {counts['both']}  only primary: {counts['only_primary']}  "
        f"only secondary: {counts['only_secondary']}",
        f"Mean:   {stats.mean:.4f}ms",
        f"Median: {stats.median:.4f}ms",
        f"Stdev:  {stats.stdev:.4f}ms",
        f"Min:    {stats.min:.4f}ms | Max: {stats.max:.4f}ms",
    ]
    for pct, value in stats.percentiles.items():
        lines.append(f"P{pct:g}: {value:.4f}ms")
    lines.append(f"Primary won {stats.win_ratio * 100:.2f}% of the time")
    return "\n".join(lines)


def run_report(path: str | Path, percentiles: Sequence[float] = PERCENTILES_REDUCED) -> str:
    differences, counts = load_differences(path)
    stats = aggregate(differences.tolist(), percentiles)
    log.info("REPORT │ %s rows=%d", path, sum(counts.values()))
    return format_report(stats, counts)
