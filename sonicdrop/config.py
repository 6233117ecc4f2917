# config.py
#
# Protocol constants for the 16-FSK acoustic link, plus the receiver's
# detection thresholds.

from dataclasses import dataclass, replace

import numpy as np


@dataclass(frozen=True)
class ProtocolConfig:
    """Physical-layer parameters shared by sender and receiver."""

    sample_rate: int = 44100

    # Handshake tones
    handshake_freq: float = 4800.0
    handshake_duration: float = 1.0
    fade_in: float = 0.02
    handshake_end_freq: float = 5400.0
    handshake_end_duration: float = 0.3
    gap_duration: float = 0.05

    # Data encoding: 16-FSK, 4 bits per symbol
    base_freq: float = 800.0
    freq_step: float = 200.0   # 800, 1000, ... 3800 Hz
    symbol_rate: float = 150.0
    ramp_duration: float = 0.0005
    ramp_gain: float = 0.3
    tone_gain: float = 0.5

    # End of transmission
    end_freq: float = 4200.0
    end_duration: float = 0.5
    fade_out: float = 0.05

    lead_in: float = 0.05
    tail: float = 0.05
    guard_band: float = 300.0

    # Noise bins bracketing the handshake tone
    handshake_reference_freqs: tuple = (500.0, 6000.0)

    def __post_init__(self):
        durations = {
            'handshake_duration': self.handshake_duration,
            'fade_in': self.fade_in,
            'handshake_end_duration': self.handshake_end_duration,
            'gap_duration': self.gap_duration,
            'ramp_duration': self.ramp_duration,
            'end_duration': self.end_duration,
            'fade_out': self.fade_out,
            'lead_in': self.lead_in,
            'tail': self.tail,
        }
        for name, value in durations.items():
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        if self.symbol_rate <= 0:
            raise ValueError(f"symbol_rate must be positive, got {self.symbol_rate}")
        if self.freq_step <= 0:
            raise ValueError(f"freq_step must be positive, got {self.freq_step}")
        if self.ramp_duration >= self.symbol_duration:
            raise ValueError("ramp_duration must be shorter than one symbol")

        nyquist = self.sample_rate / 2
        alphabet = self.symbol_freqs
        markers = {
            'handshake_freq': self.handshake_freq,
            'handshake_end_freq': self.handshake_end_freq,
            'end_freq': self.end_freq,
        }
        for name, freq in markers.items():
            if not 0 < freq < nyquist:
                raise ValueError(f"{name} ({freq} Hz) must lie between 0 and {nyquist} Hz")
            if np.min(np.abs(alphabet - freq)) < self.guard_band:
                raise ValueError(f"{name} ({freq} Hz) is within the guard band of the symbol alphabet")
        if alphabet[0] <= 0 or alphabet[-1] >= nyquist:
            raise ValueError("symbol alphabet must lie between 0 Hz and Nyquist")
        for freq in self.handshake_reference_freqs:
            if not 0 < freq < nyquist:
                raise ValueError(f"handshake reference ({freq} Hz) must lie between 0 and {nyquist} Hz")

        marker_freqs = sorted(markers.values())
        if np.any(np.diff(marker_freqs) < self.guard_band):
            raise ValueError("marker frequencies must be separated by at least the guard band")

    @property
    def symbol_duration(self):
        return 1.0 / self.symbol_rate

    @property
    def samples_per_symbol(self):
        return int(round(self.sample_rate * self.symbol_duration))

    @property
    def symbol_freqs(self):
        """The 16 data frequencies, one per nibble value."""
        return self.base_freq + self.freq_step * np.arange(16)

    @property
    def bits_per_second(self):
        return self.symbol_rate * 4

    def with_sample_rate(self, sample_rate):
        return replace(self, sample_rate=int(sample_rate))


@dataclass(frozen=True)
class ReceiverTuning:
    """Detection thresholds and debounce counts for the receiver."""

    # Data symbol acceptance
    min_confidence: float = 0.3
    min_power: float = 0.01
    silence_floor: float = 0.005

    # Marker tones: absolute floor plus dominance ratio over a reference
    control_floor: float = 0.02
    handshake_ratio: float = 3.0
    handshake_end_ratio: float = 1.5
    end_ratio: float = 1.5

    # Debounce counters (a transition fires once a counter exceeds its limit)
    handshake_confirm: int = 6
    gap_windows: int = 3
    end_confirm: int = 2
    silence_limit: int = 75
    min_symbols: int = 6
    header_parse_interval: int = 8

    # Capture front end
    block_size: int = 2048
    queue_size: int = 64
    onset_window: int = 32
    onset_floor: float = 0.05
    onset_quiet: float = 0.02
    onset_max_seek: float = 2.0

    def __post_init__(self):
        if self.block_size <= 0:
            raise ValueError(f"block_size must be positive, got {self.block_size}")
        if self.queue_size <= 0:
            raise ValueError(f"queue_size must be positive, got {self.queue_size}")

    def check_compatible(self, config):
        """Raises ValueError if a handshake cannot be confirmed with these blocks."""
        needed = self.block_size * (self.handshake_confirm + 1)
        available = config.handshake_duration * config.sample_rate
        if needed >= available:
            raise ValueError(
                f"{self.handshake_confirm + 1} blocks of {self.block_size} samples do not fit "
                f"in a {config.handshake_duration} s handshake at {config.sample_rate} Hz"
            )


DEFAULT_CONFIG = ProtocolConfig()
DEFAULT_TUNING = ReceiverTuning()
