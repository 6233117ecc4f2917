# detection.py
#
# Tone detection for the receiver. Each window is scored only at the handful
# of frequencies the protocol uses, so a single-bin Goertzel filter per
# frequency replaces a full FFT.

from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy.signal import lfilter

from sonicdrop.config import DEFAULT_CONFIG, DEFAULT_TUNING

NOISE_EPSILON = 1e-4


def goertzel(samples, target_freq, sample_rate):
    """Returns the normalized magnitude of `target_freq` in `samples`.

    The resonator is tuned to the DFT bin nearest the target for this
    window length. For a bin-centred sine of amplitude A the result is A/2.
    """
    x = np.nan_to_num(np.asarray(samples, dtype=np.float64), nan=0.0, posinf=0.0, neginf=0.0)
    n = len(x)
    if n == 0:
        return 0.0

    k = round(n * target_freq / sample_rate)
    coeff = 2.0 * np.cos(2.0 * np.pi * k / n)

    # s[i] = x[i] + coeff * s[i-1] - s[i-2]
    s = lfilter([1.0], [1.0, -coeff, 1.0], x)
    s1 = s[-1]
    s2 = s[-2] if n > 1 else 0.0

    power = s1 * s1 + s2 * s2 - coeff * s1 * s2
    return float(np.sqrt(max(power, 0.0)) / n)


@dataclass(frozen=True)
class SymbolReading:
    symbol: Optional[int]  # None when nothing was heard
    confidence: float
    power: float

    def accepted(self, min_confidence=DEFAULT_TUNING.min_confidence, min_power=DEFAULT_TUNING.min_power):
        return (
            self.symbol is not None
            and self.confidence > min_confidence
            and self.power > min_power
        )


def symbol_powers(samples, sample_rate, config=DEFAULT_CONFIG):
    return np.array([goertzel(samples, freq, sample_rate) for freq in config.symbol_freqs])


def classify_symbol(samples, sample_rate, config=DEFAULT_CONFIG):
    """Picks the strongest of the 16 alphabet frequencies.

    confidence = (max - second) / max, or 0 when the window is silent.
    """
    powers = symbol_powers(samples, sample_rate, config)
    order = np.argsort(powers)
    max_power = float(powers[order[-1]])
    second_power = float(powers[order[-2]])

    if max_power <= 0:
        return SymbolReading(symbol=None, confidence=0.0, power=0.0)

    confidence = (max_power - second_power) / max_power
    return SymbolReading(symbol=int(order[-1]), confidence=confidence, power=max_power)


def classify_control(samples, sample_rate, target_freq, reference_freqs, floor, ratio,
                     combine='sum', epsilon=0.0):
    """Detects a marker tone.

    The target must clear an absolute floor and dominate the reference
    power (summed or maximum over `reference_freqs`, plus `epsilon`) by
    `ratio`.
    """
    target_power = goertzel(samples, target_freq, sample_rate)
    references = [goertzel(samples, freq, sample_rate) for freq in reference_freqs]
    if not references:
        reference_power = 0.0
    elif combine == 'max':
        reference_power = max(references)
    elif combine == 'sum':
        reference_power = sum(references)
    else:
        raise ValueError(f"Unknown reference combination {combine!r}")

    return target_power > floor and target_power > (reference_power + epsilon) * ratio


def detect_handshake(samples, sample_rate, config=DEFAULT_CONFIG, tuning=DEFAULT_TUNING):
    """Returns (detected, handshake power); the power feeds the signal meter."""
    detected = classify_control(
        samples, sample_rate,
        config.handshake_freq, config.handshake_reference_freqs,
        tuning.control_floor, tuning.handshake_ratio,
        epsilon=NOISE_EPSILON,
    )
    return detected, goertzel(samples, config.handshake_freq, sample_rate)


def detect_handshake_end(samples, sample_rate, config=DEFAULT_CONFIG, tuning=DEFAULT_TUNING):
    return classify_control(
        samples, sample_rate,
        config.handshake_end_freq, [config.handshake_freq],
        tuning.control_floor, tuning.handshake_end_ratio,
    )


def detect_end_of_transmission(samples, sample_rate, config=DEFAULT_CONFIG, tuning=DEFAULT_TUNING):
    return classify_control(
        samples, sample_rate,
        config.end_freq, config.symbol_freqs,
        tuning.control_floor, tuning.end_ratio,
        combine='max',
    )


def signal_strength(power):
    """Maps a Goertzel magnitude to a 0..1 meter value."""
    return min(power * 10.0, 1.0)
