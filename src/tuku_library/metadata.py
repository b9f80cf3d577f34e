"""Tag extraction - normalizes mutagen output into AudioFileRecords."""

from __future__ import annotations

import base64
import logging
import os
import re
import struct
from typing import Any, Optional

import mutagen
from mutagen.flac import Picture
from mutagen.mp4 import MP4Cover

from .errors import UnreadableAudioFileError
from .models import AudioFileRecord, EmbeddedPicture, Song

logger = logging.getLogger(__name__)

UNKNOWN_ARTIST = "Unknown"
GENRE_SEPARATOR = ", "

# Tag keys per container: ID3 frame, MP4 atom, Vorbis comment
TAG_KEYS = {
    "title": ("TIT2", "\xa9nam", "title"),
    "artist": ("TPE1", "\xa9ART", "artist"),
    "album": ("TALB", "\xa9alb", "album"),
    "genre": ("TCON", "\xa9gen", "genre"),
    "date": ("TDRC", "TYER", "\xa9day", "date", "year"),
}

_YEAR_RE = re.compile(r"^\s*(\d{4})")


def _text_values(value: Any) -> list[str]:
    """Flatten an ID3 frame, MP4 value list or Vorbis comment list into strings."""
    if hasattr(value, "genres"):
        items = value.genres
    elif hasattr(value, "text"):
        items = value.text
    elif isinstance(value, (list, tuple)):
        items = value
    else:
        items = [value]
    values = []
    for item in items:
        text = str(item).strip()
        if text:
            values.append(text)
    return values


def _get_tag(tags: Any, field: str) -> list[str]:
    if not tags:
        return []
    for key in TAG_KEYS[field]:
        try:
            if key in tags:
                values = _text_values(tags[key])
                if values:
                    return values
        except (KeyError, ValueError):
            continue
    return []


def _parse_year(values: list[str]) -> Optional[int]:
    for value in values:
        match = _YEAR_RE.match(value)
        if match:
            return int(match.group(1))
    return None


def _mime_for_mp4_cover(cover: Any) -> str:
    if getattr(cover, "imageformat", None) == MP4Cover.FORMAT_PNG:
        return "image/png"
    return "image/jpeg"


def extract_pictures(audio: Any) -> list[EmbeddedPicture]:
    """
    Collect embedded pictures in tag order.

    Args:
        audio: Object returned by mutagen.File

    Returns:
        List of EmbeddedPicture, empty if the file carries no art
    """
    pictures = []
    tags = getattr(audio, "tags", None)

    # MP3 / WAV (ID3)
    if tags is not None and hasattr(tags, "getall"):
        for frame in tags.getall("APIC"):
            pictures.append(EmbeddedPicture(frame.mime or "image/jpeg", bytes(frame.data)))

    # MP4/M4A
    if tags is not None and "covr" in tags:
        for cover in tags["covr"]:
            pictures.append(EmbeddedPicture(_mime_for_mp4_cover(cover), bytes(cover)))

    # FLAC
    for picture in getattr(audio, "pictures", None) or []:
        pictures.append(EmbeddedPicture(picture.mime or "image/jpeg", bytes(picture.data)))

    # OGG Vorbis
    if tags is not None and "metadata_block_picture" in tags:
        for encoded in tags["metadata_block_picture"]:
            try:
                picture = Picture(base64.b64decode(encoded))
            except (ValueError, TypeError, struct.error, mutagen.MutagenError) as e:
                logger.debug(f"Skipping malformed metadata_block_picture: {e}")
                continue
            pictures.append(EmbeddedPicture(picture.mime or "image/jpeg", bytes(picture.data)))

    return [p for p in pictures if p.data]


def build_record(audio: Any, file_path: str) -> AudioFileRecord:
    """Normalize a parsed mutagen object, filling in defaults for missing tags."""
    tags = getattr(audio, "tags", None)
    info = getattr(audio, "info", None)

    title = _get_tag(tags, "title")
    artist = _get_tag(tags, "artist")
    album = _get_tag(tags, "album")
    genres = _get_tag(tags, "genre")

    length = getattr(info, "length", None) if info is not None else None

    return AudioFileRecord(
        file_path=file_path,
        title=title[0] if title else os.path.basename(file_path),
        artist=artist[0] if artist else UNKNOWN_ARTIST,
        album=album[0] if album else "",
        genre=GENRE_SEPARATOR.join(genres),
        duration=float(length) if length and length > 0 else 0.0,
        directory=os.path.dirname(file_path),
        year=_parse_year(_get_tag(tags, "date")),
        pictures=extract_pictures(audio),
    )


def extract_metadata(file_path: str) -> AudioFileRecord:
    """
    Extract metadata from an audio file using mutagen.

    Args:
        file_path: Path to the audio file

    Returns:
        AudioFileRecord with normalized tags and embedded pictures

    Raises:
        UnreadableAudioFileError: If mutagen cannot parse the file
    """
    file_path = os.path.abspath(os.fspath(file_path))
    try:
        audio = mutagen.File(file_path)
        if audio is None:
            raise UnreadableAudioFileError(file_path, "unrecognized audio format")
        return build_record(audio, file_path)
    except UnreadableAudioFileError:
        raise
    except Exception as e:
        raise UnreadableAudioFileError(file_path, str(e)) from e


def degraded_song(file_path: str) -> Song:
    """Placeholder Song for a file whose tags could not be read."""
    return Song(
        path=file_path,
        title=os.path.basename(file_path),
        artist=UNKNOWN_ARTIST,
        album="",
        duration=0.0,
        cover=None,
        genre="",
    )
