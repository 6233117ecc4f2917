# receiver.py
#
# The receiver's synchronization and decoding state machine.
#
#   WAITING_HANDSHAKE -> IN_HANDSHAKE -> WAITING_DATA -> RECEIVING_DATA -> DONE
#
# `step` is a pure function: it takes the current session and one sample
# window and returns the next session plus the effects the caller should
# act on. Sessions are immutable; nothing here touches audio hardware.

import enum
import logging
from dataclasses import dataclass, replace
from typing import Optional

from sonicdrop.config import DEFAULT_CONFIG, DEFAULT_TUNING
from sonicdrop.detection import (
    classify_symbol,
    detect_end_of_transmission,
    detect_handshake,
    detect_handshake_end,
    signal_strength,
)
from sonicdrop.errors import Cancelled, ChecksumMismatch, DecodeError
from sonicdrop.frame import (
    DecodedFrame,
    FileMetadata,
    decode_symbols,
    parse_header,
    symbols_to_bytes,
)

logger = logging.getLogger(__name__)


class Phase(enum.Enum):
    WAITING_HANDSHAKE = 'waiting_handshake'
    IN_HANDSHAKE = 'in_handshake'
    WAITING_DATA = 'waiting_data'
    RECEIVING_DATA = 'receiving_data'
    DONE = 'done'


# Phases fed with raw capture blocks rather than symbol-sized windows
RAW_PHASES = (Phase.WAITING_HANDSHAKE, Phase.IN_HANDSHAKE)


class OutcomeStatus(enum.Enum):
    COMPLETE = 'complete'
    CHECKSUM_FAILED = 'checksum_failed'
    DECODE_FAILED = 'decode_failed'
    CANCELLED = 'cancelled'
    ERROR = 'error'


@dataclass(frozen=True)
class ReceiveOutcome:
    """Terminal result of a listening session."""
    status: OutcomeStatus
    frame: Optional[DecodedFrame] = None
    error: Optional[Exception] = None

    @property
    def ok(self):
        return self.status is OutcomeStatus.COMPLETE

    @property
    def message(self):
        if self.status is OutcomeStatus.COMPLETE:
            return f"Received {self.frame.metadata.name} ({len(self.frame.payload)} bytes)"
        if self.status is OutcomeStatus.CHECKSUM_FAILED:
            return "Checksum verification failed. Data may be corrupted."
        if self.status is OutcomeStatus.DECODE_FAILED:
            return f"Failed to decode received data: {self.error}"
        if self.status is OutcomeStatus.CANCELLED:
            return "Listening stopped."
        return f"Receiver error: {self.error}"


# --- Effects ---

@dataclass(frozen=True)
class PhaseChanged:
    previous: Phase
    current: Phase


@dataclass(frozen=True)
class HeaderParsed:
    metadata: FileMetadata
    expected_symbols: int


@dataclass(frozen=True)
class Finished:
    outcome: ReceiveOutcome


@dataclass(frozen=True)
class ReceiverSnapshot:
    """Read-only view of a session for UI observers."""
    phase: Phase
    status: str
    progress: float
    signal_strength: float
    symbols_received: int
    expected_symbols: Optional[int]
    metadata: Optional[FileMetadata]
    outcome: Optional[ReceiveOutcome]


@dataclass(frozen=True)
class ReceiverSession:
    phase: Phase = Phase.WAITING_HANDSHAKE
    symbols: tuple = ()
    handshake_count: int = 0
    silence_count: int = 0
    end_count: int = 0
    metadata: Optional[FileMetadata] = None
    expected_symbols: Optional[int] = None
    signal_strength: float = 0.0
    outcome: Optional[ReceiveOutcome] = None

    @property
    def done(self):
        return self.phase is Phase.DONE

    @property
    def progress(self):
        if self.outcome is not None and self.outcome.ok:
            return 100.0
        if not self.expected_symbols:
            return 0.0
        return min(len(self.symbols) / self.expected_symbols * 100.0, 99.0)

    @property
    def status(self):
        if self.phase is Phase.DONE:
            return {
                OutcomeStatus.COMPLETE: 'complete',
                OutcomeStatus.CANCELLED: 'cancelled',
            }.get(self.outcome.status, 'error')
        if self.phase is Phase.WAITING_HANDSHAKE:
            return 'listening'
        if self.phase is Phase.IN_HANDSHAKE:
            return 'syncing'
        if self.phase is Phase.WAITING_DATA:
            return 'waiting_data'
        return 'receiving_payload' if self.metadata else 'receiving_header'

    def snapshot(self):
        return ReceiverSnapshot(
            phase=self.phase,
            status=self.status,
            progress=self.progress,
            signal_strength=self.signal_strength,
            symbols_received=len(self.symbols),
            expected_symbols=self.expected_symbols,
            metadata=self.metadata,
            outcome=self.outcome,
        )


def _goto(session, phase, effects, **changes):
    effects.append(PhaseChanged(session.phase, phase))
    logger.debug("Receiver phase %s -> %s", session.phase.value, phase.value)
    return replace(session, phase=phase, **changes)


def step(session, window, config=DEFAULT_CONFIG, tuning=DEFAULT_TUNING):
    """Advances `session` by one sample window."""
    if session.done:
        return session, ()

    sr = config.sample_rate
    effects = []

    if session.phase is Phase.WAITING_HANDSHAKE:
        detected, power = detect_handshake(window, sr, config, tuning)
        session = replace(session, signal_strength=signal_strength(power))
        if detected:
            count = session.handshake_count + 1
            if count > tuning.handshake_confirm:
                session = _goto(session, Phase.IN_HANDSHAKE, effects, handshake_count=0)
            else:
                session = replace(session, handshake_count=count)
        elif session.handshake_count > 0:
            session = replace(session, handshake_count=session.handshake_count - 1)

    elif session.phase is Phase.IN_HANDSHAKE:
        if detect_handshake_end(window, sr, config, tuning):
            session = _goto(session, Phase.WAITING_DATA, effects, silence_count=0)

    elif session.phase is Phase.WAITING_DATA:
        count = session.silence_count + 1
        if count > tuning.gap_windows:
            session = _goto(
                session, Phase.RECEIVING_DATA, effects,
                symbols=(), handshake_count=0, silence_count=0, end_count=0,
                metadata=None, expected_symbols=None,
            )
        else:
            session = replace(session, silence_count=count)

    else:
        session = _receive_window(session, window, config, tuning, effects)

    return session, tuple(effects)


def _receive_window(session, window, config, tuning, effects):
    sr = config.sample_rate

    if detect_end_of_transmission(window, sr, config, tuning):
        count = session.end_count + 1
        if count > tuning.end_confirm:
            session, finished = finalize(replace(session, end_count=count), config)
            effects.extend(finished)
            return session
        return replace(session, end_count=count)

    reading = classify_symbol(window, sr, config)
    session = replace(session, signal_strength=signal_strength(reading.power))

    if reading.accepted(tuning.min_confidence, tuning.min_power):
        session = replace(
            session,
            symbols=session.symbols + (reading.symbol,),
            silence_count=0,
            end_count=0,
        )
        if session.metadata is None and len(session.symbols) % tuning.header_parse_interval == 0:
            session = _try_parse_header(session, effects)
        return session

    if reading.power < tuning.silence_floor:
        count = session.silence_count + 1
        if count > tuning.silence_limit and len(session.symbols) >= tuning.min_symbols:
            logger.debug("Extended silence after %d symbols, treating as end", len(session.symbols))
            session, finished = finalize(replace(session, silence_count=count), config)
            effects.extend(finished)
            return session
        return replace(session, silence_count=count)

    return replace(session, silence_count=0)


def _try_parse_header(session, effects):
    try:
        metadata, header_length = parse_header(symbols_to_bytes(session.symbols))
    except DecodeError:
        return session
    expected = 2 * (header_length + metadata.size + 1)
    logger.debug("Header parsed: %s, expecting %d symbols", metadata, expected)
    effects.append(HeaderParsed(metadata, expected))
    return replace(session, metadata=metadata, expected_symbols=expected)


def finalize(session, config=DEFAULT_CONFIG):
    """Freezes the symbol buffer, decodes it and moves to DONE."""
    if session.done:
        return session, ()

    symbols = session.symbols
    if session.expected_symbols and len(symbols) > session.expected_symbols:
        symbols = symbols[:session.expected_symbols]

    try:
        frame = decode_symbols(symbols)
    except DecodeError as e:
        outcome = ReceiveOutcome(OutcomeStatus.DECODE_FAILED, error=e)
    else:
        if frame.checksum_valid:
            outcome = ReceiveOutcome(OutcomeStatus.COMPLETE, frame=frame)
        else:
            outcome = ReceiveOutcome(
                OutcomeStatus.CHECKSUM_FAILED,
                frame=frame,
                error=ChecksumMismatch("Checksum verification failed"),
            )

    effects = []
    session = _goto(
        session, Phase.DONE, effects,
        symbols=symbols, outcome=outcome,
        metadata=outcome.frame.metadata if outcome.frame else session.metadata,
    )
    effects.append(Finished(outcome))
    logger.info("Receive finished: %s", outcome.message)
    return session, tuple(effects)


def cancel(session):
    """Ends the session without decoding."""
    return abort(session, ReceiveOutcome(OutcomeStatus.CANCELLED, error=Cancelled("Listening stopped")))


def abort(session, outcome):
    if session.done:
        return session, ()
    effects = []
    session = _goto(session, Phase.DONE, effects, outcome=outcome)
    effects.append(Finished(outcome))
    return session, tuple(effects)
