"""Record types flowing through the ingestion pipeline and the store."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class Song:
    """A library entry. `path` is the primary key."""
    path: str
    title: str
    artist: str
    album: str
    duration: float
    cover: Optional[str] = None
    genre: str = ""
    year: Optional[int] = None

    def __post_init__(self):
        if not self.path:
            raise ValueError("Song.path must not be empty")
        if self.duration < 0:
            raise ValueError(f"Song.duration must be >= 0, got {self.duration}")


@dataclass(frozen=True)
class EmbeddedPicture:
    """Image data stored inside an audio file's tags."""
    mime_type: str
    data: bytes


@dataclass
class AudioFileRecord:
    """Normalized tags for one audio file, alive only during a scan."""
    file_path: str
    title: str
    artist: str
    album: str
    genre: str
    duration: float
    directory: str
    year: Optional[int] = None
    pictures: list[EmbeddedPicture] = field(default_factory=list)
    existing_cover: Optional[str] = None

    def to_song(self, cover: Optional[str]) -> Song:
        return Song(
            path=self.file_path,
            title=self.title,
            artist=self.artist,
            album=self.album,
            duration=self.duration,
            cover=cover,
            genre=self.genre,
            year=self.year,
        )


@dataclass
class DirectoryGroup:
    """All successfully extracted records sharing one containing directory."""
    directory: str
    members: list[AudioFileRecord] = field(default_factory=list)
    existing_cover: Optional[str] = None

    def add(self, record: AudioFileRecord):
        if record.directory != self.directory:
            raise ValueError(
                f"{record.file_path} does not belong to directory {self.directory}"
            )
        self.members.append(record)
        if self.existing_cover is None and record.existing_cover:
            self.existing_cover = record.existing_cover


@dataclass
class QueueState:
    """Persisted playback queue. Duplicate paths are allowed."""
    paths: list[str] = field(default_factory=list)
    current_index: int = -1

    def __post_init__(self):
        if self.current_index != -1 and not 0 <= self.current_index < len(self.paths):
            raise ValueError(
                f"current_index {self.current_index} out of range for queue of {len(self.paths)}"
            )

    @property
    def current_path(self) -> Optional[str]:
        if self.current_index == -1:
            return None
        return self.paths[self.current_index]


@dataclass(frozen=True)
class ReconcileResult:
    removed_count: int


@dataclass(frozen=True)
class ScanEvent:
    """One step of a scan's event stream."""
    kind: str
    current: int = 0
    total: int = 0

    START = "start"
    PROGRESS = "progress"
    COMPLETE = "complete"


@dataclass
class Album:
    """Songs sharing an album title inside one directory."""
    id: str
    title: str
    artist: str
    cover: Optional[str]
    year: Optional[int]
    songs: list[Song] = field(default_factory=list)
