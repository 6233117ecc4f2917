# errors.py
#
# Exception hierarchy for sonicdrop. Decode-time failures are raised by the
# frame codec and folded into a terminal receive outcome by the receiver.


class SonicDropError(Exception):
    """Base class for all sonicdrop errors."""


class AcquisitionError(SonicDropError):
    """The audio device is unavailable, denied, or busy."""


class SetupError(SonicDropError):
    """The audio pipeline could not be constructed."""


class InvalidMetadata(SonicDropError, ValueError):
    """File metadata cannot be framed (delimiter bytes, bad size)."""


class DecodeError(SonicDropError):
    """A received symbol stream could not be parsed into a frame."""


class FrameTooShort(DecodeError):
    pass


class HeaderNotFound(DecodeError):
    pass


class MalformedHeader(DecodeError):
    pass


class InvalidSize(DecodeError):
    pass


class ChecksumMismatch(SonicDropError):
    """The frame parsed, but its CRC-8 did not match."""


class Cancelled(SonicDropError):
    """The session was stopped by the user."""
