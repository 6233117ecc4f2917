# modem.py
#
# Sound-card side of sonicdrop: a transmitter that plays a rendered tone
# schedule and a receiver that captures audio and drives the receive
# pipeline from a single consumer thread.
#
# Dependencies:
# pip install sounddevice numpy scipy

import enum
import logging
import queue
import threading
import time
from dataclasses import dataclass

import numpy as np
import sounddevice as sd

from sonicdrop.config import DEFAULT_CONFIG, DEFAULT_TUNING
from sonicdrop.errors import AcquisitionError, Cancelled, SetupError
from sonicdrop.frame import encode_file_to_symbols
from sonicdrop.receiver import OutcomeStatus, ReceiveOutcome
from sonicdrop.scheduler import render_schedule, schedule_transmission
from sonicdrop.stream import ReceiverPipeline, finished_outcome

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.5  # seconds the consumer waits for a capture block


# --- Transmission ---

class TransmissionStatus(enum.Enum):
    PREPARING = 'preparing'
    TRANSMITTING = 'transmitting'
    COMPLETE = 'complete'
    CANCELLED = 'cancelled'
    ERROR = 'error'


@dataclass(frozen=True)
class TransmissionProgress:
    status: TransmissionStatus
    symbols_sent: int
    total_symbols: int
    elapsed: float
    estimated: float

    @property
    def percent(self):
        if self.status is TransmissionStatus.COMPLETE:
            return 100.0
        if self.total_symbols == 0:
            return 0.0
        return min(self.symbols_sent / self.total_symbols * 100.0, 100.0)


class TransmissionHandle:
    """A running transmission. Cancel it, wait on it, or poll its progress."""

    def __init__(self, schedule, wave, config, device=None):
        self.schedule = schedule
        self.config = config
        self.device = device
        self.status = TransmissionStatus.PREPARING
        self.error = None
        self._wave = wave
        self._stop_flag = threading.Event()
        self._finished = threading.Event()
        self._started_at = None
        self._thread = threading.Thread(target=self._run, name='sonicdrop-tx', daemon=True)

    @property
    def done(self):
        return self._finished.is_set()

    def start(self):
        self._thread.start()
        return self

    def cancel(self):
        self._stop_flag.set()

    def wait(self, timeout=None):
        """Blocks until playback ends. Returns the final status."""
        self._finished.wait(timeout)
        return self.status

    def progress(self):
        elapsed = 0.0 if self._started_at is None else time.monotonic() - self._started_at
        into_data = elapsed - self.schedule.data_start
        sent = int(np.clip(into_data / self.config.symbol_duration, 0, self.schedule.symbol_count))
        if self.status is TransmissionStatus.COMPLETE:
            sent = self.schedule.symbol_count
        return TransmissionProgress(
            status=self.status,
            symbols_sent=sent,
            total_symbols=self.schedule.symbol_count,
            elapsed=elapsed,
            estimated=self.schedule.end_time,
        )

    def _run(self):
        try:
            sd.play(self._wave, self.config.sample_rate, device=self.device)
        except sd.PortAudioError as e:
            self._finish(TransmissionStatus.ERROR, AcquisitionError(f"Audio output unavailable: {e}"))
            return
        except Exception as e:
            self._finish(TransmissionStatus.ERROR, SetupError(f"Audio output setup failed: {e}"))
            return

        self._started_at = time.monotonic()
        self.status = TransmissionStatus.TRANSMITTING
        logger.info("Transmitting %d symbols (%.1f s)", self.schedule.symbol_count, self.schedule.end_time)

        if self._stop_flag.wait(self.schedule.end_time):
            sd.stop()
            self._finish(TransmissionStatus.CANCELLED, Cancelled("Transmission cancelled"))
            return
        sd.wait()
        self._finish(TransmissionStatus.COMPLETE)

    def _finish(self, status, error=None):
        self.status = status
        self.error = error
        if error is not None and status is TransmissionStatus.ERROR:
            logger.error("Transmission failed: %s", error)
        else:
            logger.info("Transmission %s", status.value)
        self._finished.set()


class Transmitter:
    def __init__(self, config=DEFAULT_CONFIG, device=None):
        self.config = config
        self.device = device

    def prepare(self, payload, metadata):
        """Encodes and renders a transmission without playing it."""
        symbols = encode_file_to_symbols(payload, metadata)
        schedule = schedule_transmission(symbols, self.config)
        return schedule, render_schedule(schedule, self.config)

    def transmit(self, payload, metadata):
        schedule, wave = self.prepare(payload, metadata)
        return TransmissionHandle(schedule, wave, self.config, self.device).start()


# --- Reception ---

class Receiver:
    """Captures audio and decodes one file.

    The stream callback only copies blocks into a bounded queue; a single
    consumer thread owns the pipeline. Use as a context manager to make sure
    the input stream is closed on every exit path.
    """

    def __init__(self, config=DEFAULT_CONFIG, tuning=DEFAULT_TUNING, device=None,
                 monitor=False, on_snapshot=None):
        self.config = config
        self.tuning = tuning
        self.device = device
        self.monitor = monitor
        self.pipeline = ReceiverPipeline(config, tuning, on_snapshot=on_snapshot)
        self.dropped_blocks = 0
        self._blocks = queue.Queue(maxsize=tuning.queue_size)
        self._stop_flag = threading.Event()
        self._finished = threading.Event()
        self._release_lock = threading.Lock()
        self._stream = None
        self._thread = None

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False

    @property
    def snapshot(self):
        return self.pipeline.snapshot

    @property
    def outcome(self):
        return self.pipeline.outcome

    def start(self):
        if self._stream is not None:
            return self
        try:
            self._stream = self._open_stream()
        except sd.PortAudioError as e:
            self._fail(AcquisitionError(f"Microphone unavailable: {e}"))
            raise self.outcome.error from e
        except Exception as e:
            self._fail(SetupError(f"Audio setup failed: {e}"))
            raise self.outcome.error from e

        try:
            self._stream.start()
        except sd.PortAudioError as e:
            self._release()
            self._fail(AcquisitionError(f"Microphone busy: {e}"))
            raise self.outcome.error from e

        self._thread = threading.Thread(target=self._consume, name='sonicdrop-rx', daemon=True)
        self._thread.start()
        logger.info("Listening at %d Hz", self.config.sample_rate)
        return self

    def stop(self):
        """Stops listening. Safe to call at any point, any number of times."""
        self.pipeline.cancel()
        self._stop_flag.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join()
        if not self.pipeline.done:
            self.pipeline.feed(np.zeros(0, dtype=np.float32))
        self._release()
        self._finished.set()

    def wait(self, timeout=None):
        """Blocks until the session ends. Returns the outcome, or None on timeout."""
        self._finished.wait(timeout)
        return self.outcome

    def _open_stream(self):
        kwargs = dict(
            samplerate=self.config.sample_rate,
            blocksize=self.tuning.block_size,
            channels=1,
            dtype='float32',
            device=self.device,
            callback=self._audio_callback,
        )
        if self.monitor:
            return sd.Stream(**kwargs)
        return sd.InputStream(**kwargs)

    def _audio_callback(self, indata, *args):
        # InputStream passes (indata, frames, time, status);
        # Stream passes (indata, outdata, frames, time, status).
        status = args[-1]
        if status:
            logger.warning("Audio callback status: %s", status)
        if self.monitor:
            args[0][:] = indata
        try:
            self._blocks.put_nowait(indata[:, 0].copy())
        except queue.Full:
            self.dropped_blocks += 1
            logger.warning("Receiver falling behind, dropped capture block")

    def _consume(self):
        try:
            while not self._stop_flag.is_set():
                try:
                    block = self._blocks.get(timeout=POLL_INTERVAL)
                except queue.Empty:
                    continue
                outcome = finished_outcome(self.pipeline.feed(block))
                if outcome is not None:
                    break
        except Exception as e:
            logger.exception("Error in the receive loop")
            self.pipeline.fail(ReceiveOutcome(OutcomeStatus.ERROR, error=e))
        finally:
            if self.pipeline.done:
                self._release()
                self._finished.set()

    def _fail(self, error):
        self.pipeline.fail(ReceiveOutcome(OutcomeStatus.ERROR, error=error))
        self._finished.set()

    def _release(self):
        with self._release_lock:
            stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except sd.PortAudioError as e:
            logger.debug("Ignoring error while closing input stream: %s", e)
        logger.info("Audio input released")
