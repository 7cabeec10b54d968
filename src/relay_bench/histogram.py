"""Console histogram of timing differences.

22 bins of 1ms: an open-ended bin below -10ms, twenty bins covering
[-10, +10], and an open-ended bin above +10ms.
"""

from __future__ import annotations

import math
from collections.abc import Sequence

NUM_BINS = 22
BIN_SIZE = 1
MIN_VALUE = -10
MAX_VALUE = 10


def bin_index(value: float) -> int:
    if value < MIN_VALUE:
        return 0
    if value > MAX_VALUE:
        return NUM_BINS - 1
    # -10 itself lands in bin 0 alongside the lower tail
    return int(math.ceil(value + MAX_VALUE) / BIN_SIZE)


def _bin_label(i: int) -> tuple[str, str]:
    if i == 0:
        return "-∞", str(MIN_VALUE)
    start = str(MIN_VALUE + (i - 1) * BIN_SIZE)
    if i == NUM_BINS - 1:
        return start, "+∞"
    return start, str(MIN_VALUE + i * BIN_SIZE)


def _bar(pct: int) -> str:
    bar = "█" * (pct // 2)
    if pct % 2:
        bar += "▏"
    return bar


def make_histogram(differences: Sequence[float]) -> str:
    """Render one line per bin: range, share of samples, count, bar."""
    if not differences:
        return ""
    counts = [0] * NUM_BINS
    for d in differences:
        counts[bin_index(d)] += 1

    total = len(differences)
    lines = []
    for i, count in enumerate(counts):
        pct = count / total * 100
        start, end = _bin_label(i)
        lines.append(f"{start:>3} <-> {end:>3}  {pct:6.2f}%  {count:>4} {_bar(int(pct))}")
    return "\n".join(lines) + "\n"
