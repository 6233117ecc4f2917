# scheduler.py
#
# Turns a symbol stream into a fully time-stamped tone schedule for a single
# oscillator, and renders that schedule to samples.
#
#   handshake (fade-in) -> handshake-end marker -> silent gap
#   -> one tone per symbol (gain micro-ramp at each boundary)
#   -> end marker -> fade-out

from dataclasses import dataclass

import numpy as np

from sonicdrop.config import DEFAULT_CONFIG
from sonicdrop.frame import estimate_total_symbols


@dataclass(frozen=True)
class ToneEvent:
    """One oscillator breakpoint.

    `frequency` takes effect at `time`. When `ramp` is set, gain moves
    linearly from its previous value to `gain`, arriving at `time`;
    otherwise gain steps to `gain` at `time`.
    """
    time: float
    frequency: float
    gain: float
    ramp: bool = False


@dataclass(frozen=True)
class ToneSchedule:
    events: tuple
    start_time: float
    data_start: float
    end_time: float
    symbol_count: int

    @property
    def duration(self):
        return self.end_time - self.start_time


def schedule_transmission(symbols, config=DEFAULT_CONFIG, start_time=None):
    """Computes every breakpoint of a transmission up front."""
    if start_time is None:
        start_time = config.lead_in
    gain = config.tone_gain
    events = []

    def add(time, frequency, level, ramp=False):
        events.append(ToneEvent(time=time, frequency=frequency, gain=level, ramp=ramp))

    # 1. Handshake with a short fade-in
    t = start_time
    add(t, config.handshake_freq, 0.0)
    add(t + config.fade_in, config.handshake_freq, gain, ramp=True)

    # 2. Handshake-end marker
    t += config.handshake_duration
    add(t, config.handshake_end_freq, gain)

    # 3. Silent gap
    t += config.handshake_end_duration
    add(t, config.handshake_end_freq, 0.0)
    t += config.gap_duration
    data_start = t

    # 4. Data, one alphabet tone per symbol
    freqs = config.symbol_freqs
    for i, symbol in enumerate(symbols):
        if not 0 <= symbol <= 15:
            raise ValueError(f"Symbol {symbol} at position {i} is outside 0..15")
        bt = data_start + i * config.symbol_duration
        freq = float(freqs[symbol])
        if i == 0:
            add(bt, freq, gain)
        else:
            add(bt, freq, config.ramp_gain)
            add(bt + config.ramp_duration, freq, gain, ramp=True)

    # 5. End marker
    t = data_start + len(symbols) * config.symbol_duration
    add(t, config.end_freq, gain)

    # 6. Fade-out
    t += config.end_duration
    add(t, config.end_freq, gain)
    add(t + config.fade_out, config.end_freq, 0.0, ramp=True)
    end_time = t + config.fade_out + config.tail

    return ToneSchedule(
        events=tuple(events),
        start_time=start_time,
        data_start=data_start,
        end_time=end_time,
        symbol_count=len(symbols),
    )


def _overhead(config):
    return (
        config.lead_in
        + config.handshake_duration
        + config.handshake_end_duration
        + config.gap_duration
        + config.end_duration
        + config.fade_out
        + config.tail
    )


def estimate_duration(metadata, config=DEFAULT_CONFIG):
    """Seconds from playback start to silence for a file with `metadata`."""
    return _overhead(config) + estimate_total_symbols(metadata) * config.symbol_duration


def render_schedule(schedule, config=DEFAULT_CONFIG):
    """Synthesizes the phase-continuous oscillator described by `schedule`."""
    sr = config.sample_rate
    n = int(np.ceil(schedule.end_time * sr))
    if n == 0:
        return np.zeros(0, dtype=np.float32)
    t = np.arange(n) / sr

    # Frequency is piecewise constant between breakpoints
    change_times = np.array([e.time for e in schedule.events])
    change_freqs = np.array([e.frequency for e in schedule.events])
    idx = np.searchsorted(change_times, t, side='right') - 1
    freq = np.where(idx >= 0, change_freqs[np.clip(idx, 0, None)], 0.0)
    phase = np.cumsum(2.0 * np.pi * freq / sr)

    # Gain is piecewise linear: steps become two points at the same time
    gain_times = [0.0]
    gain_levels = [0.0]
    for event in schedule.events:
        if not event.ramp:
            gain_times.append(event.time)
            gain_levels.append(gain_levels[-1])
        gain_times.append(event.time)
        gain_levels.append(event.gain)
    gain = np.interp(t, gain_times, gain_levels)

    return (gain * np.sin(phase)).astype(np.float32)
