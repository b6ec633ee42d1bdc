"""Tests for the cascaded single-pole bandpass filters."""

import math

import numpy as np
import pytest

from signal_store import filters


def sine(freq, sfreq=1000, seconds=2.0):
    n = int(sfreq * seconds)
    return [math.sin(2 * math.pi * freq * i / sfreq) for i in range(n)]


def test_single_pass_highpass_matches_recurrence():
    data = [1.0, 2.0, 4.0, 3.0]
    rc = 1 / (2 * math.pi * 10)
    dt = 1 / 100
    alpha = rc / (rc + dt)
    expected = [1.0]
    for n in range(1, len(data)):
        expected.append(alpha * (expected[-1] + data[n] - data[n - 1]))
    assert filters.highpass(data, 100, 10, order=1) == pytest.approx(expected)


def test_single_pass_lowpass_matches_recurrence():
    data = [0.0, 10.0, 10.0, 10.0]
    rc = 1 / (2 * math.pi * 5)
    dt = 1 / 100
    alpha = dt / (rc + dt)
    expected = [0.0]
    for n in range(1, len(data)):
        expected.append(expected[-1] + alpha * (data[n] - expected[-1]))
    assert filters.lowpass(data, 100, 5, order=1) == pytest.approx(expected)


def test_first_output_seeded_with_first_input():
    out = filters.bandpass([7.5, 1.0, 2.0], 1000, 20, 400)
    assert out[0] == 7.5


def test_filter_is_causal():
    a = [0.0] * 50 + [1.0] * 50
    b = a[:60] + [-5.0] * 40
    out_a = filters.bandpass(a, 1000, 20, 400)
    out_b = filters.bandpass(b, 1000, 20, 400)
    assert out_a[:60] == out_b[:60]


@pytest.mark.parametrize(
    "low_cut,high_cut",
    [(0, 100), (-1, 100), (20, 500), (20, 600), (300, 200), (100, 100)],
)
def test_invalid_cutoffs_return_input_unchanged(low_cut, high_cut, caplog):
    data = [1.0, 5.0, -3.0]
    assert filters.bandpass(data, 1000, low_cut, high_cut) == data
    assert "Invalid filter frequencies" in caplog.text


def test_empty_input():
    assert filters.bandpass([], 1000, 20, 400) == []
    assert filters.zero_phase_filter([], "sEMG", 1000) == []


def test_bandpass_attenuates_out_of_band_tone():
    in_band = np.asarray(filters.filter_by_device_type(sine(100), "sEMG", 1000))
    below = np.asarray(filters.filter_by_device_type(sine(2), "sEMG", 1000))
    # skip the start-up transient
    assert np.abs(in_band[1000:]).max() > 5 * np.abs(below[1000:]).max()


def test_unknown_device_type_is_passthrough(caplog):
    data = [1.0, 2.0, 3.0]
    assert filters.filter_by_device_type(data, "EEG", 1000) == data
    assert filters.filter_by_device_type(data, None, 1000) == data
    assert "Unknown device type" in caplog.text


def test_hc05_alias_uses_semg_band():
    assert filters.get_filter_specs("HC-05") == filters.get_filter_specs("sEMG")


def test_zero_phase_runs_forward_and_backward():
    data = sine(50, seconds=0.5)
    forward = filters.filter_by_device_type(data, "sEMG", 1000)
    expected = filters.filter_by_device_type(forward[::-1], "sEMG", 1000)[::-1]
    assert filters.zero_phase_filter(data, "sEMG", 1000) == expected


def test_filter_channels_applies_per_key():
    channels = {"ch0": sine(5, seconds=0.2), "ch1": [1.0, 1.0, 1.0]}
    out = filters.filter_channels(channels, "IMU", 1000)
    assert set(out) == {"ch0", "ch1"}
    assert len(out["ch0"]) == len(channels["ch0"])


def test_frequency_response_shape():
    response = filters.frequency_response("IMU", 1000)
    assert response["low_cut"] == 0.5
    assert response["high_cut"] == 20.0
    assert len(response["frequencies"]) == len(response["response"])
    assert response["frequencies"][0] == pytest.approx(0.1)
    assert max(response["frequencies"]) < 500
    assert filters.frequency_response("unknown", 1000) is None


def test_cascade_equals_repeated_recurrence():
    data = [0.5, -1.0, 3.0, 2.5, 0.0, 1.0]
    rc = 1 / (2 * math.pi * 20)
    dt = 1 / 1000
    alpha = rc / (rc + dt)
    expected = data
    for _ in range(3):
        out = [expected[0]]
        for n in range(1, len(expected)):
            out.append(alpha * (out[-1] + expected[n] - expected[n - 1]))
        expected = out
    assert filters.highpass(data, 1000, 20, order=3) == pytest.approx(expected)


def test_full_session_channel_keeps_length():
    data = np.random.default_rng(3).normal(size=300_000)
    out = filters.filter_by_device_type(data, "sEMG", 1000)
    assert len(out) == 300_000
    assert out[0] == data[0]


def test_frequency_response_passband():
    response = filters.frequency_response("IMU", 1000)
    freqs = np.asarray(response["frequencies"])
    gain = np.asarray(response["response"])
    in_band = gain[np.argmin(np.abs(freqs - 5.0))]
    above = gain[np.argmin(np.abs(freqs - 200.0))]
    assert 0.5 < in_band <= 1.0
    assert above < in_band / 10
