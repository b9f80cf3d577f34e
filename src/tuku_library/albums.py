"""Album views over the song library, plus small listing helpers."""

from __future__ import annotations

import os
import re
import unicodedata
from typing import Iterable, Optional

from .models import Album, Song

VARIOUS_ARTISTS = "Various Artists"


def sanitize_for_filename(value: str) -> str:
    """Lowercase ASCII slug: accents removed, spaces to hyphens, max 100 chars."""
    value = unicodedata.normalize("NFD", value.lower().strip())
    value = "".join(c for c in value if not unicodedata.combining(c))
    value = re.sub(r"\s+", "-", value)
    value = re.sub(r"[^a-z0-9_-]", "", value)
    value = re.sub(r"-+", "-", value)
    return value.strip("-")[:100]


def is_various_artists(album_artist: Optional[str], is_compilation: bool = False) -> bool:
    if is_compilation:
        return True
    if not album_artist:
        return False
    lowered = album_artist.lower()
    return "various" in lowered or lowered == "va"


def album_id(
    artist: Optional[str],
    album: Optional[str],
    album_artist: Optional[str] = None,
    is_compilation: bool = False,
) -> str:
    """
    Build a readable album identifier of the form artist_album.

    Compilations use "various-artists" as the artist part.
    """
    if is_various_artists(album_artist, is_compilation):
        artist_part = "various-artists"
    else:
        artist_part = sanitize_for_filename(artist or "unknown-artist")
    album_part = sanitize_for_filename(album or "unknown-album")

    if not artist_part and not album_part:
        return "unknown_unknown"
    return f"{artist_part or 'unknown'}_{album_part or 'unknown'}"


def group_albums(songs: Iterable[Song]) -> list[Album]:
    """
    Group songs into albums: same album tag inside the same directory.

    Songs without an album tag are left out. An album whose songs have more
    than one artist is credited to "Various Artists". Albums are returned in
    order of first appearance.
    """
    grouped: dict[tuple[str, str], list[Song]] = {}
    for song in songs:
        if not song.album:
            continue
        key = (os.path.dirname(song.path), song.album)
        grouped.setdefault(key, []).append(song)

    albums = []
    for (_, title), members in grouped.items():
        artists = {s.artist for s in members}
        compilation = len(artists) > 1
        artist = VARIOUS_ARTISTS if compilation else members[0].artist
        cover = next((s.cover for s in members if s.cover), None)
        years = [s.year for s in members if s.year]
        albums.append(Album(
            id=album_id(artist, title, is_compilation=compilation),
            title=title,
            artist=artist,
            cover=cover,
            year=min(years) if years else None,
            songs=members,
        ))
    return albums


def filter_songs(songs: Iterable[Song], query: str) -> list[Song]:
    """Songs whose title, artist, album or genre contains query (case-insensitive)."""
    q = query.lower()
    return [
        song for song in songs
        if q in song.title.lower()
        or q in song.artist.lower()
        or q in song.album.lower()
        or q in song.genre.lower()
    ]


def format_time(seconds: float) -> str:
    """Format a duration as m:ss."""
    seconds = max(0, int(seconds))
    return f"{seconds // 60}:{seconds % 60:02d}"
