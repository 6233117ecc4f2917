# stream.py
#
# Hardware-free receive front end. Capture hardware delivers blocks of
# whatever size it likes; the state machine needs raw blocks while it waits
# for the handshake and exact symbol-sized windows afterwards.

import logging

import numpy as np

from sonicdrop.config import DEFAULT_CONFIG, DEFAULT_TUNING
from sonicdrop.errors import DecodeError
from sonicdrop.receiver import (
    RAW_PHASES,
    Finished,
    HeaderParsed,
    OutcomeStatus,
    Phase,
    ReceiveOutcome,
    ReceiverSession,
    abort,
    cancel,
    finalize,
    step,
)

logger = logging.getLogger(__name__)


class SymbolFramer:
    """Accumulates capture blocks and slices exact symbol windows.

    When armed with `align()`, samples are discarded until a stretch of
    quiet is followed by a tone onset, so that the first window starts on
    the first data symbol rather than at an arbitrary offset.
    """

    def __init__(self, config=DEFAULT_CONFIG, tuning=DEFAULT_TUNING):
        self.samples_per_symbol = config.samples_per_symbol
        self.exact_samples = config.sample_rate / config.symbol_rate
        self.onset_window = tuning.onset_window
        self.onset_floor = tuning.onset_floor
        self.quiet_samples = int(tuning.onset_quiet * config.sample_rate)
        self.max_seek = int(tuning.onset_max_seek * config.sample_rate)
        self._queue = np.zeros(0, dtype=np.float32)
        self._aligning = False
        self._quiet_run = 0
        self._seeked = 0
        self._index = 0

    def __len__(self):
        return len(self._queue)

    @property
    def aligning(self):
        return self._aligning

    def reset(self):
        self._queue = np.zeros(0, dtype=np.float32)
        self._aligning = False
        self._index = 0

    def align(self):
        self._aligning = True
        self._quiet_run = 0
        self._seeked = 0
        self._index = 0

    def push(self, block):
        block = np.asarray(block, dtype=np.float32).reshape(-1)
        self._queue = np.concatenate([self._queue, block])

    def windows(self):
        """Yields symbol windows until less than one symbol remains queued."""
        while True:
            if self._aligning and not self._seek_onset():
                return
            length = self._window_length()
            if len(self._queue) < length:
                return
            window = self._queue[:length]
            self._queue = self._queue[length:]
            self._index += 1
            yield window

    def _window_length(self):
        # Boundaries are rounded from the exact symbol grid so the
        # fractional part of a symbol never accumulates.
        k = self._index
        return int(round((k + 1) * self.exact_samples)) - int(round(k * self.exact_samples))

    def _seek_onset(self):
        w = self.onset_window
        if len(self._queue) < w:
            return False

        magnitude = np.abs(np.nan_to_num(self._queue))
        envelope = np.convolve(magnitude, np.ones(w) / w, mode='valid')
        loud = envelope > self.onset_floor

        for i, is_loud in enumerate(loud):
            if is_loud and self._quiet_run >= self.quiet_samples:
                above = np.flatnonzero(magnitude[i:i + w] > self.onset_floor)
                onset = i + (int(above[0]) if len(above) else 0)
                logger.debug("Data onset found after %d samples", self._seeked + onset)
                self._queue = self._queue[onset:]
                self._aligning = False
                return True
            self._quiet_run = 0 if is_loud else self._quiet_run + 1

        self._queue = self._queue[len(envelope):]
        self._seeked += len(envelope)
        if self._seeked > self.max_seek:
            logger.warning("No data onset within %d samples, slicing unaligned", self._seeked)
            self._aligning = False
            return True
        return False


class ReceiverPipeline:
    """Drives a ReceiverSession from arbitrary-sized capture blocks.

    All session state is owned by whichever thread calls `feed`. Observers
    read `snapshot`, which is replaced wholesale after every block.
    """

    def __init__(self, config=DEFAULT_CONFIG, tuning=DEFAULT_TUNING, on_snapshot=None):
        tuning.check_compatible(config)
        self.config = config
        self.tuning = tuning
        self.on_snapshot = on_snapshot
        self.framer = SymbolFramer(config, tuning)
        self.session = ReceiverSession()
        self.snapshot = self.session.snapshot()
        self._cancelled = False

    @property
    def done(self):
        return self.session.done

    @property
    def outcome(self):
        return self.session.outcome

    def cancel(self):
        self._cancelled = True

    def feed(self, block):
        """Processes one capture block. Returns the effects it produced."""
        if self._cancelled:
            return self._apply(*cancel(self.session))
        if self.session.done:
            return ()

        produced = []
        if self.session.phase in RAW_PHASES:
            produced.extend(self._advance(np.asarray(block, dtype=np.float32).reshape(-1)))
        else:
            self.framer.push(block)
            for window in self.framer.windows():
                produced.extend(self._advance(window))
                if self.session.done:
                    break
        self._publish()
        return tuple(produced)

    def finish(self):
        """Finalizes a session whose input ended before the end marker."""
        if self.session.phase is Phase.RECEIVING_DATA:
            return self._apply(*finalize(self.session, self.config))
        return ()

    def fail(self, outcome):
        return self._apply(*abort(self.session, outcome))

    def _advance(self, window):
        previous = self.session.phase
        self.session, effects = step(self.session, window, self.config, self.tuning)
        current = self.session.phase

        if previous in RAW_PHASES and current not in RAW_PHASES:
            self.framer.reset()
        if current is Phase.RECEIVING_DATA and previous is not Phase.RECEIVING_DATA:
            self.framer.align()

        for effect in effects:
            if isinstance(effect, HeaderParsed):
                logger.info("Incoming file %s (%d bytes)", effect.metadata.name, effect.metadata.size)
        return effects

    def _apply(self, session, effects):
        self.session = session
        self._publish()
        return effects

    def _publish(self):
        self.snapshot = self.session.snapshot()
        if self.on_snapshot is not None:
            self.on_snapshot(self.snapshot)


def decode_recording(samples, config=DEFAULT_CONFIG, tuning=DEFAULT_TUNING):
    """Runs a complete recording through the receiver and returns its outcome."""
    pipeline = ReceiverPipeline(config, tuning)
    samples = np.asarray(samples, dtype=np.float32).reshape(-1)
    for start in range(0, len(samples), tuning.block_size):
        pipeline.feed(samples[start:start + tuning.block_size])
        if pipeline.done:
            break
    if not pipeline.done:
        pipeline.finish()
    if not pipeline.done:
        pipeline.fail(ReceiveOutcome(
            OutcomeStatus.DECODE_FAILED,
            error=DecodeError("No transmission detected in recording"),
        ))
    return pipeline.outcome


def finished_outcome(effects):
    """Returns the outcome carried by a Finished effect, if any."""
    for effect in effects:
        if isinstance(effect, Finished):
            return effect.outcome
    return None
