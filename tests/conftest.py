"""Shared pytest fixtures for tuku_library tests."""

from __future__ import annotations

import io
import os
import wave
from pathlib import Path

import pytest
from PIL import Image

from tuku_library.database import initialize
from tuku_library.models import AudioFileRecord, EmbeddedPicture

# ============================================================================
# Builders
# ============================================================================


def image_bytes(color=(200, 30, 30), size=(64, 48), fmt="PNG") -> bytes:
    """Encode a solid-color image."""
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format=fmt)
    return buffer.getvalue()


def write_wav(path: Path, seconds: float = 1.0, sample_rate: int = 8000) -> Path:
    """Write a silent mono 16-bit WAV file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with wave.open(str(path), "wb") as wav_file:
        wav_file.setnchannels(1)
        wav_file.setsampwidth(2)
        wav_file.setframerate(sample_rate)
        wav_file.writeframes(b"\x00\x00" * int(seconds * sample_rate))
    return path


def touch(path: Path, content: bytes = b"") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


def make_record(path, album="", title=None, artist="Artist", pictures=None, genre="", duration=180.0):
    """Build an AudioFileRecord for a path as the extractor would."""
    path = os.path.abspath(str(path))
    return AudioFileRecord(
        file_path=path,
        title=title or os.path.basename(path),
        artist=artist,
        album=album,
        genre=genre,
        duration=duration,
        directory=os.path.dirname(path),
        pictures=list(pictures or []),
    )


def picture(data: bytes = None) -> EmbeddedPicture:
    return EmbeddedPicture("image/png", data if data is not None else image_bytes())


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def music_dir(tmp_path: Path) -> Path:
    """Empty music folder inside the test's temp dir."""
    root = tmp_path / "music"
    root.mkdir()
    return root


@pytest.fixture
def db(tmp_path: Path):
    """Fresh library database."""
    database = initialize(tmp_path / "data" / "library.db")
    try:
        yield database
    finally:
        database.close()
