"""Tests for the normalization strategies."""

import numpy as np
import pytest

from signal_store import filters, normalization
from signal_store.normalization import NormalizationMethod


def test_min_max_default_range():
    assert normalization.min_max_normalize([0.0, 5.0, 10.0]) == [0.0, 0.5, 1.0]


def test_min_max_custom_range():
    out = normalization.min_max_normalize([0.0, 5.0, 10.0], feature_range=(-1.0, 1.0))
    assert out == pytest.approx([-1.0, 0.0, 1.0])


def test_min_max_degenerate_maps_to_lower_bound():
    assert normalization.min_max_normalize([5, 5, 5]) == [0, 0, 0]
    assert normalization.min_max_normalize([5, 5], feature_range=(2.0, 3.0)) == [2.0, 2.0]


def test_z_score():
    out = np.asarray(normalization.z_score_normalize([1.0, 2.0, 3.0, 4.0]))
    assert out.mean() == pytest.approx(0.0)
    assert out.std() == pytest.approx(1.0)


def test_z_score_degenerate():
    assert normalization.z_score_normalize([3.0, 3.0]) == [0.0, 0.0]


def test_rms():
    out = normalization.rms_normalize([3.0, -4.0])
    rms = np.sqrt((9 + 16) / 2)
    assert out == pytest.approx([3 / rms, -4 / rms])
    assert normalization.rms_normalize([0.0, 0.0]) == [0.0, 0.0]


def test_max_abs():
    assert normalization.max_abs_normalize([2.0, -4.0, 1.0]) == [0.5, -1.0, 0.25]
    assert normalization.max_abs_normalize([0.0]) == [0.0]


def test_percentile_clips_outliers():
    data = list(range(1, 101)) + [10_000]
    out = normalization.percentile_normalize(data)
    assert min(out) == 0.0
    assert max(out) == 1.0
    assert out[-1] == 1.0
    assert all(0.0 <= v <= 1.0 for v in out)


def test_percentile_degenerate():
    assert normalization.percentile_normalize([1.0, 1.0, 1.0]) == [0.0, 0.0, 0.0]


@pytest.mark.parametrize("method", [m.value for m in NormalizationMethod])
def test_empty_input(method):
    assert normalization.normalize([], method) == []


def test_normalize_unknown_method_falls_back_to_min_max():
    assert normalization.normalize([0.0, 10.0], "bogus") == [0.0, 1.0]


def test_method_validation_and_description():
    assert normalization.is_valid_method("z_score")
    assert normalization.is_valid_method(NormalizationMethod.RMS)
    assert not normalization.is_valid_method("median")
    assert "Z-Score" in normalization.method_description("z_score")
    assert normalization.method_description("median") == "Unknown normalization method"


def test_normalize_channels_keeps_timestamps():
    data = {"ch0": [{"timestamp": 10.0, "value": 1.0}, {"timestamp": 11.0, "value": 3.0}]}
    out = normalization.normalize_channels(data, "min_max")
    assert out["ch0"] == [{"timestamp": 10.0, "value": 0.0}, {"timestamp": 11.0, "value": 1.0}]


def test_normalize_channels_filters_first():
    values = [float(v) for v in np.sin(np.linspace(0, 40, 500))]
    data = {"ch0": [{"timestamp": float(i), "value": v} for i, v in enumerate(values)]}
    out = normalization.normalize_channels(
        data, "max_abs", filter_options={"device_type": "sEMG", "sample_rate": 1000}
    )
    expected = normalization.max_abs_normalize(filters.filter_by_device_type(values, "sEMG", 1000))
    assert [p["value"] for p in out["ch0"]] == expected


def test_normalized_stats():
    data = {"ch1": [{"timestamp": 0.0, "value": -1.0}, {"timestamp": 1.0, "value": 1.0}], "ch2": []}
    stats = normalization.normalized_stats(data)
    assert stats["ch1"]["mean"] == 0.0
    assert stats["ch1"]["std"] == 1.0
    assert stats["ch1"]["rms"] == 1.0
    assert stats["ch1"]["count"] == 2
    assert stats["ch2"]["count"] == 0
