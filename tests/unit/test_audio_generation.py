import numpy as np
import pytest

from sonicdrop.config import DEFAULT_CONFIG, ProtocolConfig
from sonicdrop.detection import classify_symbol, goertzel
from sonicdrop.frame import FileMetadata, encode_file_to_symbols
from sonicdrop.scheduler import (
    ToneEvent,
    estimate_duration,
    render_schedule,
    schedule_transmission,
)

SAMPLE_RATE = DEFAULT_CONFIG.sample_rate
HELLO_META = FileMetadata(name="a.txt", mime_type="text/plain", size=5)


def hello_schedule(config=DEFAULT_CONFIG):
    return schedule_transmission(encode_file_to_symbols(b"Hello", HELLO_META), config)


class TestToneSchedule:
    """Test cases for the transmission scheduler."""

    def test_events_are_time_ordered(self):
        times = [event.time for event in hello_schedule().events]
        assert times == sorted(times)

    def test_phase_order(self):
        schedule = hello_schedule()
        freqs = [event.frequency for event in schedule.events]
        assert freqs[0] == DEFAULT_CONFIG.handshake_freq
        assert DEFAULT_CONFIG.handshake_end_freq in freqs
        assert freqs[-1] == DEFAULT_CONFIG.end_freq
        first_end = freqs.index(DEFAULT_CONFIG.handshake_end_freq)
        assert freqs.index(DEFAULT_CONFIG.end_freq) > first_end

    def test_handshake_fades_in(self):
        first, second = hello_schedule().events[:2]
        assert first.gain == 0.0 and not first.ramp
        assert second.ramp and second.gain == DEFAULT_CONFIG.tone_gain
        assert second.time - first.time == pytest.approx(DEFAULT_CONFIG.fade_in)

    def test_data_starts_after_gap(self):
        schedule = hello_schedule()
        expected = (
            DEFAULT_CONFIG.lead_in + DEFAULT_CONFIG.handshake_duration
            + DEFAULT_CONFIG.handshake_end_duration + DEFAULT_CONFIG.gap_duration
        )
        assert schedule.data_start == pytest.approx(expected)
        silent = [e for e in schedule.events if e.gain == 0.0 and not e.ramp]
        assert any(e.time == pytest.approx(schedule.data_start - DEFAULT_CONFIG.gap_duration) for e in silent)

    def test_one_tone_per_symbol_at_exact_times(self):
        symbols = encode_file_to_symbols(b"Hello", HELLO_META)
        schedule = schedule_transmission(symbols)
        freqs = DEFAULT_CONFIG.symbol_freqs
        starts = [
            e for e in schedule.events
            if schedule.data_start - 1e-9 <= e.time < schedule.data_start + len(symbols) * DEFAULT_CONFIG.symbol_duration - 1e-9
            and not e.ramp
        ]
        assert len(starts) == len(symbols)
        for i, (event, symbol) in enumerate(zip(starts, symbols)):
            assert event.time == pytest.approx(schedule.data_start + i * DEFAULT_CONFIG.symbol_duration)
            assert event.frequency == freqs[symbol]

    def test_micro_ramp_at_symbol_boundaries(self):
        schedule = hello_schedule()
        ramps = [e for e in schedule.events if e.ramp and e.frequency in DEFAULT_CONFIG.symbol_freqs]
        assert len(ramps) == schedule.symbol_count - 1
        assert DEFAULT_CONFIG.ramp_duration < 0.001

    def test_fade_out_to_silence(self):
        last = hello_schedule().events[-1]
        assert last.ramp and last.gain == 0.0

    def test_start_time_offsets_everything(self):
        base = hello_schedule()
        shifted = schedule_transmission(encode_file_to_symbols(b"Hello", HELLO_META), start_time=base.start_time + 2.0)
        for a, b in zip(base.events, shifted.events):
            assert b.time == pytest.approx(a.time + 2.0)

    def test_rejects_out_of_range_symbol(self):
        with pytest.raises(ValueError):
            schedule_transmission([1, 2, 16])

    def test_estimate_duration_matches_schedule(self):
        schedule = hello_schedule()
        assert estimate_duration(HELLO_META) == pytest.approx(schedule.end_time)
        assert schedule.duration == pytest.approx(schedule.end_time - DEFAULT_CONFIG.lead_in)

    def test_estimate_duration_grows_with_size(self):
        # same number of size digits, so the header length is unchanged
        small = estimate_duration(FileMetadata("a", "text/plain", 100))
        large = estimate_duration(FileMetadata("a", "text/plain", 999))
        assert large - small == pytest.approx(2 * 899 * DEFAULT_CONFIG.symbol_duration)


class TestRenderSchedule:
    """Test cases for the oscillator renderer."""

    def test_render_length_and_dtype(self):
        schedule = hello_schedule()
        wave = render_schedule(schedule)
        assert wave.dtype == np.float32
        assert len(wave) == int(np.ceil(schedule.end_time * SAMPLE_RATE))

    def test_render_is_bounded_and_finite(self):
        wave = render_schedule(hello_schedule())
        assert np.isfinite(wave).all()
        assert np.max(np.abs(wave)) <= DEFAULT_CONFIG.tone_gain + 1e-6

    def test_lead_in_and_gap_are_silent(self):
        schedule = hello_schedule()
        wave = render_schedule(schedule)
        lead = wave[:int(DEFAULT_CONFIG.lead_in * SAMPLE_RATE) - 1]
        assert np.allclose(lead, 0.0)
        gap_start = int(np.ceil((schedule.data_start - DEFAULT_CONFIG.gap_duration) * SAMPLE_RATE)) + 1
        gap_end = int(schedule.data_start * SAMPLE_RATE) - 1
        assert np.allclose(wave[gap_start:gap_end], 0.0)

    def test_handshake_tone_frequency(self):
        schedule = hello_schedule()
        wave = render_schedule(schedule)
        start = int(0.5 * SAMPLE_RATE)
        window = wave[start:start + 2048]
        hs = goertzel(window, DEFAULT_CONFIG.handshake_freq, SAMPLE_RATE)
        end = goertzel(window, DEFAULT_CONFIG.handshake_end_freq, SAMPLE_RATE)
        assert hs > 0.2
        assert end < 0.01

    def test_each_symbol_window_classifies(self):
        symbols = encode_file_to_symbols(b"Hello", HELLO_META)
        schedule = schedule_transmission(symbols)
        wave = render_schedule(schedule)
        n = DEFAULT_CONFIG.samples_per_symbol
        first = int(round(schedule.data_start * SAMPLE_RATE))
        for i, symbol in enumerate(symbols):
            window = wave[first + i * n:first + (i + 1) * n]
            assert classify_symbol(window, SAMPLE_RATE).symbol == symbol

    def test_empty_schedule(self):
        schedule = schedule_transmission([])
        wave = render_schedule(schedule)
        assert len(wave) > 0
        assert schedule.symbol_count == 0

    def test_deterministic(self):
        np.testing.assert_array_equal(render_schedule(hello_schedule()), render_schedule(hello_schedule()))

    def test_other_sample_rate(self):
        config = ProtocolConfig(sample_rate=48000)
        schedule = hello_schedule(config)
        wave = render_schedule(schedule, config)
        assert len(wave) == int(np.ceil(schedule.end_time * 48000))

    def test_tone_event_defaults_to_step(self):
        assert ToneEvent(time=0.0, frequency=1000.0, gain=0.5).ramp is False
