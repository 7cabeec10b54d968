"""Core data types shared by streams, reconciler, statistics and sinks."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class StreamKind(str, Enum):
    TRANSACTIONS = "transactions"
    BLOCKS = "blocks"


class Classification(str, Enum):
    BOTH = "both"
    ONLY_PRIMARY = "only_primary"
    ONLY_SECONDARY = "only_secondary"


@dataclass(frozen=True, slots=True)
class Observation:
    """
    First-seen record of a hash by one source.

    Attributes:
        hash: 0x-prefixed lowercase hex of the 32-byte identifier
        timestamp: Local receipt time, unix microseconds
        sender: Transaction sender (transactions only)
        recipient: Transaction recipient, empty for contract creation
        size: Calldata size for transactions, transaction count for blocks
    """

    hash: str
    timestamp: int
    sender: str = ""
    recipient: str = ""
    size: int = 0


@dataclass(frozen=True, slots=True)
class ConfirmationBatch:
    """Hashes confirmed by the ground-truth stream, one batch per block."""

    block_number: int
    hashes: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class DetailRow:
    """
    Per-hash classification written to the result sink.

    Timestamps of the side that never saw the hash are zero, as is
    ``difference_us`` for every miss.
    """

    hash: str
    primary_ts: int
    other_ts: int
    difference_us: int
    benchmark_id: str
    classification: Classification
    sender: str = ""
    recipient: str = ""
    size: int = 0


@dataclass(frozen=True)
class IntervalStatsRow:
    start_time: datetime
    end_time: datetime
    mean: float
    median: float
    stdev: float
    min: float
    max: float
    percentiles: dict[float, float]
    win_ratio: float
    sample_count: int
    benchmark_id: str

    def percentile(self, pct: float) -> float | None:
        return self.percentiles.get(pct)


@dataclass
class ClassificationCounts:
    both: int = 0
    only_primary: int = 0
    only_secondary: int = 0
    # Confirmed by ground truth but seen by neither source
    unobserved: int = 0
    # Seen by a source but never confirmed (cross-check only)
    unconfirmed: int = 0

    def add(self, other: ClassificationCounts) -> None:
        self.both += other.both
        self.only_primary += other.only_primary
        self.only_secondary += other.only_secondary
        self.unobserved += other.unobserved
        self.unconfirmed += other.unconfirmed

    @property
    def classified(self) -> int:
        return self.both + self.only_primary + self.only_secondary


@dataclass
class IntervalResult:
    """
    Raw output of one reconciler pass.

    Attributes:
        differences: secondary_ts - primary_ts in milliseconds, both-saw only
        counts: Per-classification counts for the comparison universe
        primary_seen: Unique hashes observed by the primary source
        secondary_seen: Unique hashes observed by the secondary source
        confirmed: Size of the ground-truth set (0 without cross-check)
        duplicates: Duplicate arrivals discarded, keyed by source name
        closed: True if a channel closed and ended the interval early
    """

    start_time: datetime
    end_time: datetime
    differences: list[float] = field(default_factory=list)
    counts: ClassificationCounts = field(default_factory=ClassificationCounts)
    primary_seen: int = 0
    secondary_seen: int = 0
    confirmed: int = 0
    duplicates: dict[str, int] = field(default_factory=dict)
    closed: bool = False
