"""
Album cover handling: local cover lookup, embedded art extraction policy,
JPEG materialization and the media: URL scheme used for cover references.
"""

from __future__ import annotations

import io
import logging
import os
import re
from pathlib import Path
from typing import Callable, Optional, Sequence
from urllib.parse import unquote, urlsplit, urlunsplit

from PIL import Image

from .errors import ImageProcessingError, MediaAccessError
from .models import AudioFileRecord

logger = logging.getLogger(__name__)

COVER_FILENAME = "cover.jpg"
COVER_SIZE = 600
COVER_QUALITY = 80
UNKNOWN_ALBUM = "Unknown Album"

MEDIA_SCHEME = "media"
MEDIA_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".gif"}

_DRIVE_HOST_RE = re.compile(r"^[A-Za-z]:?$")
_DRIVE_PATH_RE = re.compile(r"^/[A-Za-z]:")

Materializer = Callable[[bytes, str, str], str]


def path_to_media_url(path: str) -> str:
    """Convert an absolute file path into a media: URL."""
    uri = Path(os.path.abspath(path)).as_uri()
    return MEDIA_SCHEME + uri[len("file"):]


def media_url_to_path(url: str) -> str:
    """
    Resolve a media: URL back to a filesystem path for the cover handler.

    Windows drive letters may arrive as the URL host (media://c/Music/cover.jpg)
    or as the first path segment (media:///C:/Music/cover.jpg).

    Args:
        url: media: URL

    Returns:
        Filesystem path of the image

    Raises:
        MediaAccessError: If the URL is not a media: URL or does not point to an image
    """
    parts = urlsplit(url)
    if parts.scheme != MEDIA_SCHEME:
        raise MediaAccessError(f"Not a {MEDIA_SCHEME}: URL: {url}")

    path = unquote(parts.path)
    host = parts.netloc
    if host and host.lower() != "localhost":
        if _DRIVE_HOST_RE.match(host):
            path = f"{host[0].upper()}:{path}"
        else:
            # UNC share
            path = f"//{host}{path}"
    elif _DRIVE_PATH_RE.match(path):
        path = path[1:]

    if not path or path.endswith("/"):
        raise MediaAccessError(f"No file in media URL: {url}")

    ext = os.path.splitext(path)[1].lower()
    if ext not in MEDIA_EXTENSIONS:
        raise MediaAccessError(f"Refusing to serve non-image file: {path}")

    return path


def canonical_cover_reference(url: Optional[str]) -> Optional[str]:
    """Strip cache-busting query strings and fragments from a cover reference."""
    if not url:
        return url
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def probe_local_cover(directory: str) -> Optional[str]:
    """Return a reference to directory/cover.jpg if the file exists."""
    cover_path = os.path.join(directory, COVER_FILENAME)
    if os.path.isfile(cover_path):
        return path_to_media_url(cover_path)
    return None


def materialize_cover(
    data: bytes,
    directory: str,
    album_name: str,
    size: int = COVER_SIZE,
    quality: int = COVER_QUALITY,
) -> str:
    """
    Resize embedded art and write it as the directory's cover.jpg.

    Args:
        data: Raw image bytes from the audio file's tags
        directory: Album directory that receives cover.jpg
        album_name: Album title, used for logging
        size: Edge length of the square output image
        quality: JPEG quality

    Returns:
        media: URL of the written cover

    Raises:
        ImageProcessingError: If the image cannot be decoded, encoded or written
    """
    if not data:
        raise ImageProcessingError(f"Empty cover art for album {album_name!r}")

    target = os.path.join(directory, COVER_FILENAME)
    logger.debug(f"Processing cover for album {album_name!r} -> {target}")

    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            if img.mode != "RGB":
                img = img.convert("RGB")
            resized = img.resize((size, size), Image.Resampling.LANCZOS)
        buffer = io.BytesIO()
        resized.save(buffer, format="JPEG", quality=quality)
    except Exception as e:
        raise ImageProcessingError(f"Could not process cover art for album {album_name!r}: {e}") from e

    tmp_path = target + ".tmp"
    try:
        with open(tmp_path, "wb") as f:
            f.write(buffer.getvalue())
        os.replace(tmp_path, target)
    except OSError as e:
        try:
            os.remove(tmp_path)
        except OSError:
            pass
        raise ImageProcessingError(f"Could not write {target}: {e}") from e

    return path_to_media_url(target)


def distinct_albums(members: Sequence[AudioFileRecord]) -> set[str]:
    """Distinct non-empty album tags across a directory's files."""
    return {m.album for m in members if m.album}


def resolve_cover(
    directory: str,
    members: Sequence[AudioFileRecord],
    existing_cover: Optional[str],
    materialize: Materializer = materialize_cover,
) -> Optional[str]:
    """
    Decide the single cover reference shared by every file in a directory.

    An on-disk cover always wins. Otherwise embedded art is extracted only
    when the directory holds exactly one distinct album tag; mixed folders
    get no cover, even if their files carry identical art.

    Args:
        directory: The directory being resolved
        members: Extracted records of the directory's audio files, in scan order
        existing_cover: Reference to an existing cover.jpg, if any
        materialize: Callable(data, directory, album_name) -> reference

    Returns:
        Cover reference, or None
    """
    if existing_cover:
        return existing_cover

    albums = distinct_albums(members)
    if len(albums) != 1:
        logger.debug(
            f"Not extracting cover for {directory}: {len(albums)} distinct album tags"
        )
        return None

    for member in members:
        if not member.pictures:
            continue
        picture = member.pictures[0]
        album_name = member.album or UNKNOWN_ALBUM
        try:
            return materialize(picture.data, directory, album_name)
        except Exception as e:
            logger.warning(f"Cover extraction failed for {directory}: {e}")
            return None

    return None
