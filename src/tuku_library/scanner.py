"""Music file scanner - discovers audio files in a directory tree."""

import logging
import os
from typing import Iterator

from .errors import FilesystemError

logger = logging.getLogger(__name__)

AUDIO_EXTENSIONS = {".mp3", ".flac", ".wav", ".ogg", ".m4a"}


def is_audio_file(path: str) -> bool:
    """Check whether a path has one of the supported audio extensions."""
    return os.path.splitext(path)[1].lower() in AUDIO_EXTENSIONS


def _visit(entries: list[os.DirEntry]) -> Iterator[str]:
    for entry in entries:
        try:
            if entry.is_dir(follow_symlinks=False):
                yield from _walk(entry.path)
            elif entry.is_file() and is_audio_file(entry.name):
                yield os.path.abspath(entry.path)
        except OSError as e:
            logger.debug(f"Skipping unreadable entry {entry.path}: {e}")


def _walk(directory: str) -> Iterator[str]:
    try:
        with os.scandir(directory) as it:
            entries = list(it)
    except OSError as e:
        logger.debug(f"Skipping unreadable directory {directory}: {e}")
        return
    yield from _visit(entries)


def iter_audio_files(root: str) -> Iterator[str]:
    """
    Recursively scan a directory for audio files.

    Entries are visited in the order the directory listing returns them,
    descending into each subdirectory as soon as it is reached.

    Args:
        root: Root directory to scan

    Yields:
        Absolute path for each audio file found

    Raises:
        FilesystemError: If the root itself cannot be listed
    """
    root = os.path.abspath(os.fspath(root))

    if not os.path.exists(root):
        raise FilesystemError(f"Directory not found: {root}")

    if not os.path.isdir(root):
        raise FilesystemError(f"Not a directory: {root}")

    try:
        with os.scandir(root) as it:
            entries = list(it)
    except OSError as e:
        raise FilesystemError(f"Cannot read directory {root}: {e}") from e

    logger.info(f"Scanning directory: {root}")
    yield from _visit(entries)


def discover_audio_files(root: str) -> list[str]:
    """Collect every audio file under root, in traversal order."""
    return list(iter_audio_files(root))


def count_audio_files(root: str) -> int:
    """Count the total number of audio files in a directory tree."""
    return sum(1 for _ in iter_audio_files(root))
