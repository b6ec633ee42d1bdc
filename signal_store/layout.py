"""Conversions between sample-major and channel-major layouts."""

from typing import Iterable, NamedTuple, Sequence

from signal_store.config import CHANNEL_COUNT


class SamplePoint(NamedTuple):
    timestamp: float
    values: tuple[float, ...]


def pad_values(values: Sequence[float], channel_count: int = CHANNEL_COUNT) -> list[float]:
    """Truncate or zero-pad a channel vector to exactly ``channel_count`` values."""
    padded = [float(v) for v in values[:channel_count]]
    padded.extend([0.0] * (channel_count - len(padded)))
    return padded


def to_channel_major(samples: Iterable) -> tuple[list[float], list[list[float]]]:
    """Split samples (anything with ``timestamp`` and ``values``) into
    a timestamp list and one value list per channel."""
    timestamps: list[float] = []
    channels: list[list[float]] = [[] for _ in range(CHANNEL_COUNT)]
    for sample in samples:
        timestamps.append(float(sample.timestamp))
        for channel, value in zip(channels, pad_values(sample.values)):
            channel.append(value)
    return timestamps, channels


def to_sample_major(timestamps: Sequence[float], channels: Sequence[Sequence[float]]) -> list[SamplePoint]:
    return [
        SamplePoint(ts, tuple(channel[i] for channel in channels))
        for i, ts in enumerate(timestamps)
    ]


def channel_key(index: int) -> str:
    return f"ch{index}"
