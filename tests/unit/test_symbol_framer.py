import numpy as np
import pytest

from sonicdrop.config import DEFAULT_CONFIG, DEFAULT_TUNING
from sonicdrop.stream import SymbolFramer

SAMPLE_RATE = DEFAULT_CONFIG.sample_rate
SYMBOL_SAMPLES = DEFAULT_CONFIG.samples_per_symbol


def cos_tone(freq, n, amplitude=0.5):
    t = np.arange(n) / SAMPLE_RATE
    return (amplitude * np.cos(2 * np.pi * freq * t)).astype(np.float32)


def collect(framer):
    return list(framer.windows())


class TestSymbolFramer:
    """Test cases for slicing capture blocks into symbol windows."""

    def test_samples_per_symbol(self):
        assert SymbolFramer().samples_per_symbol == 294

    def test_exact_windows(self):
        framer = SymbolFramer()
        data = np.arange(SYMBOL_SAMPLES * 3, dtype=np.float32)
        framer.push(data)
        windows = collect(framer)
        assert len(windows) == 3
        for i, window in enumerate(windows):
            np.testing.assert_array_equal(window, data[i * SYMBOL_SAMPLES:(i + 1) * SYMBOL_SAMPLES])
        assert len(framer) == 0

    def test_remainder_carried_between_blocks(self):
        framer = SymbolFramer()
        data = np.arange(1000, dtype=np.float32)
        framer.push(data[:200])
        assert collect(framer) == []
        assert len(framer) == 200

        framer.push(data[200:])
        windows = collect(framer)
        assert len(windows) == 1000 // SYMBOL_SAMPLES
        assert len(framer) == 1000 % SYMBOL_SAMPLES
        np.testing.assert_array_equal(windows[1], data[SYMBOL_SAMPLES:2 * SYMBOL_SAMPLES])

    def test_block_shapes_are_flattened(self):
        framer = SymbolFramer()
        framer.push(np.zeros((SYMBOL_SAMPLES, 1)))
        windows = collect(framer)
        assert len(windows) == 1
        assert windows[0].shape == (SYMBOL_SAMPLES,)
        assert windows[0].dtype == np.float32

    @pytest.mark.parametrize("sample_rate", [16000, 32000])
    def test_fractional_symbol_length_does_not_drift(self, sample_rate):
        """Window boundaries follow the exact symbol grid, not a rounded length."""
        config = DEFAULT_CONFIG.with_sample_rate(sample_rate)
        exact = sample_rate / config.symbol_rate
        framer = SymbolFramer(config)
        framer.push(np.zeros(sample_rate * 4, dtype=np.float32))
        lengths = [len(window) for window in collect(framer)]

        assert len(lengths) == 600
        assert set(lengths) == {int(np.floor(exact)), int(np.ceil(exact))}
        boundaries = np.cumsum(lengths)
        for k in (1, 3, 150, 599, 600):
            assert boundaries[k - 1] == int(round(k * exact))
        assert len(framer) == 0

    def test_align_restarts_symbol_grid(self):
        config = DEFAULT_CONFIG.with_sample_rate(16000)
        framer = SymbolFramer(config)
        framer.push(np.zeros(107 + 106, dtype=np.float32))
        assert [len(w) for w in collect(framer)] == [107, 106]

        framer.align()
        samples = np.concatenate([np.zeros(1000, dtype=np.float32), cos_tone(1200.0, 107)])
        framer.push(samples)
        assert [len(w) for w in collect(framer)] == [107]

    def test_reset_discards_queue(self):
        framer = SymbolFramer()
        framer.push(np.ones(100))
        framer.align()
        framer.reset()
        assert len(framer) == 0
        assert not framer.aligning


class TestOnsetAlignment:
    """Test cases for aligning the first window to the first data symbol."""

    ONSET = 4205

    def signal(self):
        tone = cos_tone(1200.0, SYMBOL_SAMPLES * 4)
        return np.concatenate([np.zeros(self.ONSET, dtype=np.float32), tone]), tone

    def test_first_window_starts_at_onset(self):
        samples, tone = self.signal()
        framer = SymbolFramer()
        framer.align()
        framer.push(samples)
        windows = collect(framer)
        assert not framer.aligning
        assert len(windows) == 4
        np.testing.assert_array_equal(windows[0], tone[:SYMBOL_SAMPLES])

    @pytest.mark.parametrize("block_size", [100, 512, 2048])
    def test_alignment_across_blocks(self, block_size):
        samples, tone = self.signal()
        framer = SymbolFramer()
        framer.align()
        windows = []
        for start in range(0, len(samples), block_size):
            framer.push(samples[start:start + block_size])
            windows.extend(collect(framer))
        assert len(windows) == 4
        np.testing.assert_array_equal(windows[0], tone[:SYMBOL_SAMPLES])

    def test_onset_needs_preceding_quiet(self):
        framer = SymbolFramer()
        framer.align()
        framer.push(cos_tone(1200.0, 4000))
        assert collect(framer) == []
        assert framer.aligning

    def test_gives_up_after_max_seek(self):
        framer = SymbolFramer()
        framer.align()
        limit = int(DEFAULT_TUNING.onset_max_seek * SAMPLE_RATE)
        framer.push(np.zeros(limit + DEFAULT_TUNING.block_size, dtype=np.float32))
        collect(framer)
        assert not framer.aligning

        framer.push(np.ones(SYMBOL_SAMPLES, dtype=np.float32))
        assert len(collect(framer)) == 1

    def test_not_aligning_by_default(self):
        framer = SymbolFramer()
        framer.push(np.zeros(SYMBOL_SAMPLES))
        assert len(collect(framer)) == 1
