"""Bandpass conditioning for sEMG and IMU channels.

The bandpass is approximated by cascading single-pole recursive stages:
``order`` high-pass passes remove content below the low cutoff, then
``order`` low-pass passes remove content above the high cutoff. Every stage
is causal and seeds its first output with its first input.
"""

import math
from typing import Mapping, Sequence

import numpy as np
from scipy import signal

from signal_store.config import FILTER_ORDER, FILTER_SPECS
from signal_store.logging_config import get_logger

logger = get_logger(__name__)


def _time_constant(cutoff: float) -> float:
    return 1.0 / (2.0 * math.pi * cutoff)


def highpass_coefficients(sample_rate: float, cutoff: float) -> tuple[list[float], list[float]]:
    """y[n] = alpha * (y[n-1] + x[n] - x[n-1])"""
    rc = _time_constant(cutoff)
    alpha = rc / (rc + 1.0 / sample_rate)
    return [alpha, -alpha], [1.0, -alpha]


def lowpass_coefficients(sample_rate: float, cutoff: float) -> tuple[list[float], list[float]]:
    """y[n] = y[n-1] + alpha * (x[n] - y[n-1])"""
    dt = 1.0 / sample_rate
    alpha = dt / (_time_constant(cutoff) + dt)
    return [alpha], [1.0, alpha - 1.0]


def _cascade(x: np.ndarray, b: list[float], a: list[float], order: int) -> np.ndarray:
    if x.size < 2:
        return x
    b1 = b[1] if len(b) > 1 else 0.0
    for _ in range(max(order, 1)):
        # y[0] = x[0]; filter the rest from the state that leaves
        zi = np.array([(b1 - a[1]) * x[0]])
        rest, _ = signal.lfilter(b, a, x[1:], zi=zi)
        x = np.concatenate(([x[0]], rest))
    return x


def highpass(data: Sequence[float], sample_rate: float, cutoff: float, order: int = FILTER_ORDER) -> list[float]:
    """Single-pole high-pass applied ``order`` times."""
    x = np.asarray(data, dtype=np.float64)
    if x.size == 0:
        return []
    b, a = highpass_coefficients(sample_rate, cutoff)
    return _cascade(x, b, a, order).tolist()


def lowpass(data: Sequence[float], sample_rate: float, cutoff: float, order: int = FILTER_ORDER) -> list[float]:
    """Single-pole low-pass applied ``order`` times."""
    x = np.asarray(data, dtype=np.float64)
    if x.size == 0:
        return []
    b, a = lowpass_coefficients(sample_rate, cutoff)
    return _cascade(x, b, a, order).tolist()


def bandpass(
    data: Sequence[float],
    sample_rate: float,
    low_cut: float,
    high_cut: float,
    order: int = FILTER_ORDER,
) -> list[float]:
    """High-pass at ``low_cut`` then low-pass at ``high_cut``.

    Invalid cutoffs (non-positive low cut, high cut at or above nyquist, or
    an inverted band) leave the signal unfiltered.
    """
    if len(data) == 0:
        return []

    nyquist = sample_rate / 2
    if low_cut <= 0 or high_cut >= nyquist or low_cut >= high_cut:
        logger.warning(
            "Invalid filter frequencies: low_cut=%s, high_cut=%s, nyquist=%s",
            low_cut,
            high_cut,
            nyquist,
        )
        return list(data)

    filtered = highpass(data, sample_rate, low_cut, order)
    return lowpass(filtered, sample_rate, high_cut, order)


def get_filter_specs(device_type: str | None) -> dict | None:
    if device_type is None:
        return None
    return FILTER_SPECS.get(device_type)


def filter_by_device_type(data: Sequence[float], device_type: str | None, sample_rate: float) -> list[float]:
    specs = get_filter_specs(device_type)
    if specs is None:
        logger.warning("Unknown device type: %s, returning unfiltered data", device_type)
        return list(data)
    return bandpass(data, sample_rate, specs["low_cut"], specs["high_cut"], FILTER_ORDER)


def zero_phase_filter(data: Sequence[float], device_type: str | None, sample_rate: float) -> list[float]:
    """Forward-backward filtering; needs the whole signal in memory."""
    forward = filter_by_device_type(data, device_type, sample_rate)
    backward = filter_by_device_type(forward[::-1], device_type, sample_rate)
    return backward[::-1]


def filter_channels(
    channels: Mapping[str, Sequence[float]],
    device_type: str | None,
    sample_rate: float,
    zero_phase: bool = False,
) -> dict[str, list[float]]:
    apply = zero_phase_filter if zero_phase else filter_by_device_type
    return {key: apply(values, device_type, sample_rate) for key, values in channels.items()}


def frequency_response(device_type: str | None, sample_rate: float) -> dict | None:
    """Magnitude response of the device bandpass cascade on a log grid."""
    specs = get_filter_specs(device_type)
    if specs is None:
        return None

    nyquist = sample_rate / 2
    low_cut, high_cut = specs["low_cut"], specs["high_cut"]
    frequencies = []
    f = 0.1
    while f < nyquist:
        frequencies.append(f)
        f *= 1.1

    freqs = np.asarray(frequencies)
    b_hp, a_hp = highpass_coefficients(sample_rate, low_cut)
    b_lp, a_lp = lowpass_coefficients(sample_rate, high_cut)
    _, h_hp = signal.freqz(b_hp, a_hp, worN=freqs, fs=sample_rate)
    _, h_lp = signal.freqz(b_lp, a_lp, worN=freqs, fs=sample_rate)
    response = np.abs(h_hp) ** FILTER_ORDER * np.abs(h_lp) ** FILTER_ORDER

    return {
        "frequencies": freqs.tolist(),
        "response": response.tolist(),
        "low_cut": low_cut,
        "high_cut": high_cut,
        "sample_rate": sample_rate,
    }
