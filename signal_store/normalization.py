"""Normalization strategies for channel time series.

Each strategy maps a sequence of values to a rescaled sequence of the same
length. Degenerate inputs (no spread) map to a constant instead of NaN.
"""

import math
from enum import Enum
from typing import Mapping, Sequence

import numpy as np

from signal_store import filters


class NormalizationMethod(str, Enum):
    MIN_MAX = "min_max"
    Z_SCORE = "z_score"
    RMS = "rms"
    MAX_ABS = "max_abs"
    PERCENTILE = "percentile"


METHOD_DESCRIPTIONS = {
    NormalizationMethod.MIN_MAX: "Min-Max normalization: Scales data to [0, 1] range",
    NormalizationMethod.Z_SCORE: "Z-Score normalization: Standardizes data (mean=0, std=1)",
    NormalizationMethod.RMS: "RMS normalization: Divides by root mean square",
    NormalizationMethod.MAX_ABS: "Max absolute normalization: Scales to [-1, 1] range",
    NormalizationMethod.PERCENTILE: "Percentile normalization: Robust to outliers, scales to [0, 1]",
}


def min_max_normalize(data: Sequence[float], feature_range: tuple[float, float] = (0.0, 1.0)) -> list[float]:
    if len(data) == 0:
        return []
    arr = np.asarray(data, dtype=np.float64)
    lo, hi = float(arr.min()), float(arr.max())
    if hi == lo:
        return [float(feature_range[0])] * arr.size
    scale = feature_range[1] - feature_range[0]
    return ((arr - lo) / (hi - lo) * scale + feature_range[0]).tolist()


def z_score_normalize(data: Sequence[float]) -> list[float]:
    if len(data) == 0:
        return []
    arr = np.asarray(data, dtype=np.float64)
    std = float(arr.std())
    if std == 0:
        return [0.0] * arr.size
    return ((arr - arr.mean()) / std).tolist()


def rms_normalize(data: Sequence[float]) -> list[float]:
    if len(data) == 0:
        return []
    arr = np.asarray(data, dtype=np.float64)
    rms = math.sqrt(float(np.mean(arr * arr)))
    if rms == 0:
        return [0.0] * arr.size
    return (arr / rms).tolist()


def max_abs_normalize(data: Sequence[float]) -> list[float]:
    if len(data) == 0:
        return []
    arr = np.asarray(data, dtype=np.float64)
    max_abs = float(np.abs(arr).max())
    if max_abs == 0:
        return [0.0] * arr.size
    return (arr / max_abs).tolist()


def percentile_normalize(
    data: Sequence[float],
    lower_percentile: float = 5,
    upper_percentile: float = 95,
) -> list[float]:
    """Rescale between nearest-rank percentiles and clip to [0, 1]."""
    if len(data) == 0:
        return []
    arr = np.asarray(data, dtype=np.float64)
    ordered = np.sort(arr)
    n = ordered.size
    lower_idx = min(max(math.floor(n * lower_percentile / 100), 0), n - 1)
    upper_idx = min(max(math.ceil(n * upper_percentile / 100) - 1, 0), n - 1)
    p_lower, p_upper = float(ordered[lower_idx]), float(ordered[upper_idx])
    if p_upper == p_lower:
        return [0.0] * n
    return np.clip((arr - p_lower) / (p_upper - p_lower), 0.0, 1.0).tolist()


def is_valid_method(method: str) -> bool:
    method = getattr(method, "value", method)
    return method in {m.value for m in NormalizationMethod}


def method_description(method: str) -> str:
    if not is_valid_method(method):
        return "Unknown normalization method"
    return METHOD_DESCRIPTIONS[NormalizationMethod(getattr(method, "value", method))]


def normalize(data: Sequence[float], method: str = NormalizationMethod.MIN_MAX, **options) -> list[float]:
    """Dispatch to a strategy by name; unknown names fall back to min-max."""
    if is_valid_method(method):
        method = NormalizationMethod(getattr(method, "value", method))
    else:
        method = NormalizationMethod.MIN_MAX
    if method is NormalizationMethod.Z_SCORE:
        return z_score_normalize(data)
    if method is NormalizationMethod.RMS:
        return rms_normalize(data)
    if method is NormalizationMethod.MAX_ABS:
        return max_abs_normalize(data)
    if method is NormalizationMethod.PERCENTILE:
        return percentile_normalize(
            data,
            lower_percentile=options.get("lower_percentile", 5),
            upper_percentile=options.get("upper_percentile", 95),
        )
    return min_max_normalize(data, feature_range=options.get("feature_range", (0.0, 1.0)))


def normalize_channels(
    channel_data: Mapping[str, list[dict]],
    method: str = NormalizationMethod.MIN_MAX,
    options: dict | None = None,
    filter_options: dict | None = None,
) -> dict[str, list[dict]]:
    """Normalize ``{chN: [{timestamp, value}, ...]}`` keeping each timestamp.

    ``filter_options`` with ``device_type`` and ``sample_rate`` bandpass
    filters each channel before normalizing; ``zero_phase`` selects the
    forward-backward variant.
    """
    options = options or {}
    apply_filter = bool(
        filter_options and filter_options.get("device_type") and filter_options.get("sample_rate")
    )

    normalized = {}
    for key, points in channel_data.items():
        values = [p["value"] for p in points]
        if apply_filter:
            if filter_options.get("zero_phase"):
                values = filters.zero_phase_filter(
                    values, filter_options["device_type"], filter_options["sample_rate"]
                )
            else:
                values = filters.filter_by_device_type(
                    values, filter_options["device_type"], filter_options["sample_rate"]
                )
        scaled = normalize(values, method, **options)
        normalized[key] = [
            {"timestamp": p["timestamp"], "value": v} for p, v in zip(points, scaled)
        ]
    return normalized


def normalized_stats(channel_data: Mapping[str, list[dict]]) -> dict[str, dict]:
    stats = {}
    for key, points in channel_data.items():
        values = np.asarray([p["value"] for p in points], dtype=np.float64)
        if values.size == 0:
            stats[key] = {"min": 0.0, "max": 0.0, "mean": 0.0, "avg": 0.0, "std": 0.0, "rms": 0.0, "count": 0}
            continue
        mean = float(values.mean())
        stats[key] = {
            "min": float(values.min()),
            "max": float(values.max()),
            "mean": mean,
            "avg": mean,
            "std": float(values.std()),
            "rms": math.sqrt(float(np.mean(values * values))),
            "count": int(values.size),
        }
    return stats
