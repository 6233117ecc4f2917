# frame.py
#
# Byte-level framing for one file transfer, and the nibble mapping that
# turns frame bytes into 4-bit symbols.
#
# Frame layout:
#   <name> 0x1F <type> 0x1F <decimal size> 0x1E <payload bytes> <crc8>
#
# Every byte becomes two symbols, high nibble first.

from dataclasses import dataclass

from sonicdrop.crc8 import crc8
from sonicdrop.errors import (
    FrameTooShort,
    HeaderNotFound,
    InvalidMetadata,
    InvalidSize,
    MalformedHeader,
)

FIELD_DELIMITER = 0x1F
HEADER_END = 0x1E
DEFAULT_MIME_TYPE = 'application/octet-stream'
MIN_FRAME_SYMBOLS = 6  # at least three bytes


@dataclass(frozen=True)
class FileMetadata:
    name: str
    mime_type: str
    size: int

    def header_bytes(self):
        """Serializes the header, including its terminator, as UTF-8."""
        mime_type = self.mime_type or DEFAULT_MIME_TYPE
        header = (
            f"{self.name}{chr(FIELD_DELIMITER)}{mime_type}"
            f"{chr(FIELD_DELIMITER)}{self.size}{chr(HEADER_END)}"
        )
        return header.encode('utf-8')

    def validate(self):
        for label, value in (('name', self.name), ('type', self.mime_type)):
            if chr(FIELD_DELIMITER) in value or chr(HEADER_END) in value:
                raise InvalidMetadata(f"File {label} {value!r} contains a frame delimiter byte")
        if self.size <= 0:
            raise InvalidMetadata(f"File size must be positive, got {self.size}")


@dataclass(frozen=True)
class DecodedFrame:
    metadata: FileMetadata
    payload: bytes
    checksum_valid: bool


def bytes_to_symbols(data):
    symbols = []
    for byte in data:
        symbols.append((byte >> 4) & 0x0F)
        symbols.append(byte & 0x0F)
    return symbols


def symbols_to_bytes(symbols):
    """Pairs symbols back into bytes. A trailing odd symbol is ignored."""
    byte_count = len(symbols) // 2
    return bytes(
        ((symbols[2 * i] & 0x0F) << 4) | (symbols[2 * i + 1] & 0x0F)
        for i in range(byte_count)
    )


def encode_file_to_symbols(payload, metadata):
    """Builds the frame for `payload` and returns it as a tuple of symbols."""
    metadata.validate()
    if metadata.size != len(payload):
        raise InvalidMetadata(
            f"Metadata size ({metadata.size}) does not match payload length ({len(payload)})"
        )
    frame_bytes = metadata.header_bytes() + bytes(payload)
    checksum = crc8(frame_bytes)
    return tuple(bytes_to_symbols(frame_bytes + bytes([checksum])))


def parse_header(data):
    """Parses the header at the start of `data`.

    Returns the metadata and the header length in bytes, terminator
    included. Raises HeaderNotFound, MalformedHeader or InvalidSize.
    """
    header_end = data.find(bytes([HEADER_END]))
    if header_end == -1:
        raise HeaderNotFound("No header terminator in received data")

    header = data[:header_end].decode('utf-8', errors='replace')
    fields = header.split(chr(FIELD_DELIMITER))
    if len(fields) != 3:
        raise MalformedHeader(f"Expected 3 header fields, found {len(fields)}")

    name, mime_type, size_field = fields
    if not (size_field.isascii() and size_field.isdecimal()):
        raise InvalidSize(f"Size field {size_field!r} is not a decimal integer")
    size = int(size_field)
    if size <= 0:
        raise InvalidSize(f"Size must be positive, got {size}")

    return FileMetadata(name=name, mime_type=mime_type, size=size), header_end + 1


def decode_symbols(symbols):
    """Reassembles a frame from received symbols.

    A checksum mismatch is reported through `checksum_valid`, not raised.
    """
    if len(symbols) < MIN_FRAME_SYMBOLS:
        raise FrameTooShort(f"Need at least {MIN_FRAME_SYMBOLS} symbols, got {len(symbols)}")

    all_bytes = symbols_to_bytes(symbols)
    received_checksum = all_bytes[-1]
    data = all_bytes[:-1]
    checksum_valid = crc8(data) == received_checksum

    metadata, header_length = parse_header(data)
    payload = data[header_length:header_length + metadata.size]
    return DecodedFrame(metadata=metadata, payload=payload, checksum_valid=checksum_valid)


def estimate_total_symbols(metadata):
    """Symbols in the full frame: header, payload and checksum, two per byte."""
    return 2 * (len(metadata.header_bytes()) + metadata.size + 1)
