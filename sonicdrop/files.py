# files.py
#
# Reading files to send and storing files received.

import logging
import mimetypes
from pathlib import Path

from sonicdrop.frame import DEFAULT_MIME_TYPE, FileMetadata

logger = logging.getLogger(__name__)


def metadata_for_path(path):
    path = Path(path)
    mime_type, _ = mimetypes.guess_type(path.name)
    return FileMetadata(
        name=path.name,
        mime_type=mime_type or DEFAULT_MIME_TYPE,
        size=path.stat().st_size,
    )


def load_file(path):
    """Returns (payload, metadata) for the file at `path`."""
    path = Path(path)
    payload = path.read_bytes()
    metadata = metadata_for_path(path)
    return payload, metadata


def save_decoded_file(frame, directory='.', overwrite=False):
    """Writes a decoded payload into `directory` and returns its path.

    Only the base name of the transmitted name is used. Existing files get
    a numeric suffix unless `overwrite` is set.
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)

    name = Path(frame.metadata.name.replace('\\', '/')).name or 'received.bin'
    target = directory / name
    if not overwrite:
        stem, suffix = target.stem, target.suffix
        counter = 1
        while target.exists():
            target = directory / f"{stem} ({counter}){suffix}"
            counter += 1

    target.write_bytes(frame.payload)
    logger.info("Saved %d bytes to %s", len(frame.payload), target)
    return target
