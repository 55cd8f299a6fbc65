"""
Atomic file replacement.

Readers of a secret or of the encrypted bundle must never see a
half-written file. Everything is written to a hidden temporary sibling
in the same directory and then renamed over the destination; the
rename is the only step that makes new content visible.

Usage:
    atomic_write(path, b"new content")
    atomic_write_stream(path, response.iter_content(8192), modtime=when)
"""

from __future__ import annotations

import logging
import os
import tempfile
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, Iterable, Iterator, Optional, Union

logger = logging.getLogger("skconfig.atomic")

CHUNK_SIZE = 64 * 1024

ByteSource = Union[BinaryIO, Iterable[bytes]]


def _fsync_dir(directory: Path) -> None:
    """Flush a directory entry change (the rename) to disk."""
    fd = os.open(str(directory), os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


@contextmanager
def _staged_file(path: Path, mode: int) -> Iterator[BinaryIO]:
    """Yield a temp file next to *path* and rename it into place on success.

    Args:
        path: Final destination.
        mode: Permission bits for the new file.

    Yields:
        Binary file handle opened on the temporary sibling.
    """
    fd, tmp_name = tempfile.mkstemp(
        dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp"
    )
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as fh:
            yield fh
            fh.flush()
            os.fsync(fh.fileno())
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
        _fsync_dir(path.parent)
    except BaseException:
        try:
            tmp_path.unlink()
        except FileNotFoundError:
            pass
        raise


def _chunks(source: ByteSource) -> Iterator[bytes]:
    read = getattr(source, "read", None)
    if read is None:
        for chunk in source:
            if chunk:
                yield chunk
        return
    for chunk in iter(lambda: read(CHUNK_SIZE), b""):
        yield chunk


def _close(source: ByteSource, path: Path) -> None:
    close = getattr(source, "close", None)
    if close is None:
        return
    try:
        close()
    except OSError as exc:
        logger.warning("Unexpected error closing stream for %s: %s", path, exc)


def atomic_write(path: Path, data: bytes, mode: int = 0o640) -> None:
    """Replace the content of *path* with *data* atomically.

    Args:
        path: Destination file. Its directory must already exist.
        data: Complete new content.
        mode: Permission bits for the new file.

    Raises:
        OSError: If the temp file cannot be written or renamed. The
            destination keeps its previous content.
    """
    path = Path(path)
    with _staged_file(path, mode) as fh:
        fh.write(data)
    logger.debug("Wrote %d bytes to %s", len(data), path)


def atomic_write_stream(
    path: Path,
    source: ByteSource,
    modtime: Optional[datetime] = None,
    mode: int = 0o644,
) -> int:
    """Drain *source* into *path* atomically, optionally stamping its mtime.

    The source is always closed, including when writing fails. When
    *modtime* is given, the destination's access and modification
    times are set to it after the rename, so the timestamp never
    describes older content.

    Args:
        path: Destination file. Its directory must already exist.
        source: Binary file-like object or iterable of byte chunks.
        modtime: Timestamp to apply to the new file.
        mode: Permission bits for the new file.

    Returns:
        Number of bytes written.

    Raises:
        OSError: On any filesystem failure.
    """
    path = Path(path)
    written = 0
    try:
        with _staged_file(path, mode) as fh:
            for chunk in _chunks(source):
                fh.write(chunk)
                written += len(chunk)
    finally:
        _close(source, path)

    if modtime is not None:
        ts = modtime.timestamp()
        os.utime(path, (ts, ts))

    logger.debug("Streamed %d bytes to %s", written, path)
    return written
