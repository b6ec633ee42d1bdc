"""Per-channel summary statistics.

``channel_stats`` summarizes one sequence exactly; ``combine`` merges a
running aggregate with a partial summary using sample counts as weights, so
summaries of consecutive chunks can be folded into the summary of their
concatenation without materializing it.
"""

import math
from dataclasses import asdict, dataclass
from typing import Sequence

import numpy as np

from signal_store.config import CHANNEL_COUNT, STATS_PRECISION


@dataclass(frozen=True)
class ChannelStats:
    min: float = 0.0
    max: float = 0.0
    avg: float = 0.0
    rms: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ChannelStats":
        return cls(
            min=float(data["min"]),
            max=float(data["max"]),
            avg=float(data["avg"]),
            rms=float(data["rms"]),
        )


@dataclass(frozen=True)
class AggregateStats:
    min: float = 0.0
    max: float = 0.0
    avg: float = 0.0
    rms: float = 0.0
    count: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


EMPTY_STATS = ChannelStats()
EMPTY_AGGREGATE = AggregateStats()


def channel_stats(values: Sequence[float], precision: int = STATS_PRECISION) -> ChannelStats:
    """Return {min, max, avg, rms} of ``values`` rounded to ``precision`` digits.

    An empty sequence yields all zeros.
    """
    if len(values) == 0:
        return EMPTY_STATS

    arr = np.asarray(values, dtype=np.float64)
    # math.fsum keeps the sums independent of input order
    avg = math.fsum(arr.tolist()) / arr.size
    mean_square = math.fsum((arr * arr).tolist()) / arr.size

    return ChannelStats(
        min=round(float(arr.min()), precision),
        max=round(float(arr.max()), precision),
        avg=round(avg, precision),
        rms=round(math.sqrt(mean_square), precision),
    )


def all_channel_stats(channels: Sequence[Sequence[float]]) -> list[ChannelStats]:
    """Stats for each of the fixed channels; missing channels summarize as empty."""
    return [
        channel_stats(channels[i]) if i < len(channels) else EMPTY_STATS
        for i in range(CHANNEL_COUNT)
    ]


def combine(aggregate: AggregateStats, incoming: ChannelStats, count: int) -> AggregateStats:
    """Fold a partial summary over ``count`` samples into a running aggregate.

    min/max are compared directly; avg is the count-weighted mean of the two
    averages and rms the square root of the count-weighted mean of squares.
    """
    if count <= 0:
        return aggregate
    if aggregate.count == 0:
        return AggregateStats(
            min=incoming.min,
            max=incoming.max,
            avg=incoming.avg,
            rms=incoming.rms,
            count=count,
        )

    total = aggregate.count + count
    avg = (aggregate.avg * aggregate.count + incoming.avg * count) / total
    mean_square = (aggregate.rms**2 * aggregate.count + incoming.rms**2 * count) / total
    return AggregateStats(
        min=min(aggregate.min, incoming.min),
        max=max(aggregate.max, incoming.max),
        avg=avg,
        rms=math.sqrt(mean_square),
        count=total,
    )
