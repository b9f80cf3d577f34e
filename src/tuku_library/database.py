"""SQLite persistence for the song library and the playback queue."""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator, Optional

from .covers import canonical_cover_reference
from .errors import PersistenceError
from .models import QueueState, ReconcileResult, Song

logger = logging.getLogger(__name__)

LAST_UPDATED_KEY = "lastUpdated"
FOLDER_PATH_KEY = "folderPath"

SONG_COLUMNS = "path, title, artist, album, duration, cover, genre, year"


def _to_db(value):
    """Bind a str that is not valid UTF-8 (a surrogate-escaped file name) as a BLOB."""
    if isinstance(value, str):
        try:
            value.encode("utf-8")
        except UnicodeEncodeError:
            return value.encode("utf-8", "surrogateescape")
    return value


def _from_db(value):
    if isinstance(value, bytes):
        return value.decode("utf-8", "surrogateescape")
    return value


def _row_to_song(row: sqlite3.Row) -> Song:
    return Song(
        path=_from_db(row["path"]),
        title=_from_db(row["title"]) or "",
        artist=_from_db(row["artist"]) or "",
        album=_from_db(row["album"]) or "",
        duration=row["duration"] or 0.0,
        cover=_from_db(row["cover"]),
        genre=_from_db(row["genre"]) or "",
        year=row["year"],
    )


class LibraryDatabase:
    """
    SQLite database holding the song library, its metadata and the queue.

    One lock serializes every operation, so a reader never observes a
    half-applied write. Each write runs as a single transaction; on failure
    it is rolled back and PersistenceError is raised.
    """

    SCHEMA = """
    CREATE TABLE IF NOT EXISTS library (
        path TEXT PRIMARY KEY,
        title TEXT,
        artist TEXT,
        album TEXT,
        duration REAL,
        cover TEXT,
        genre TEXT,
        year INTEGER
    );

    CREATE TABLE IF NOT EXISTS library_metadata (
        key TEXT PRIMARY KEY,
        value TEXT
    );

    CREATE TABLE IF NOT EXISTS queue (
        position INTEGER PRIMARY KEY,
        path TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS queue_state (
        id INTEGER PRIMARY KEY CHECK (id = 0),
        current_index INTEGER NOT NULL DEFAULT 0
    );
    """

    def __init__(self, db_path: Path):
        """
        Open a library database, creating the schema if needed.

        Args:
            db_path: Path to the SQLite database file, or ":memory:"
        """
        self.db_path = db_path
        self._lock = threading.RLock()
        self.conn = None
        try:
            self.conn = sqlite3.connect(str(db_path), check_same_thread=False, isolation_level=None)
            self.conn.row_factory = sqlite3.Row
            self.conn.executescript(self.SCHEMA)
        except sqlite3.Error as e:
            if self.conn is not None:
                self.conn.close()
            raise PersistenceError(f"Could not open library database {db_path}: {e}") from e

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                self.conn.execute("BEGIN IMMEDIATE")
                yield self.conn
                self.conn.execute("COMMIT")
            except (sqlite3.Error, UnicodeError) as e:
                self._rollback()
                raise PersistenceError(f"{operation} failed: {e}") from e
            except BaseException:
                self._rollback()
                raise

    @contextmanager
    def _reading(self, operation: str) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self.conn
            except (sqlite3.Error, UnicodeError) as e:
                raise PersistenceError(f"{operation} failed: {e}") from e

    def _rollback(self):
        try:
            if self.conn.in_transaction:
                self.conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            logger.error(f"Rollback failed: {e}")

    def save_library(self, songs: Iterable[Song]):
        """Upsert songs by path and stamp lastUpdated, as one transaction."""
        songs = list(songs)
        now = datetime.now(timezone.utc).isoformat()
        with self._transaction("save_library") as conn:
            rows = [
                (
                    _to_db(song.path),
                    _to_db(song.title),
                    _to_db(song.artist),
                    _to_db(song.album),
                    float(song.duration),
                    _to_db(canonical_cover_reference(song.cover)),
                    _to_db(song.genre),
                    song.year,
                )
                for song in songs
            ]
            conn.executemany(
                f"INSERT OR REPLACE INTO library ({SONG_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                rows,
            )
            conn.execute(
                "INSERT OR REPLACE INTO library_metadata (key, value) VALUES (?, ?)",
                (LAST_UPDATED_KEY, now),
            )
        logger.debug(f"Saved {len(rows)} songs")

    def load_library(self) -> list[Song]:
        """Return every song in the library."""
        with self._reading("load_library") as conn:
            rows = conn.execute(f"SELECT {SONG_COLUMNS} FROM library ORDER BY rowid").fetchall()
        return [_row_to_song(row) for row in rows]

    def get_song(self, path: str) -> Optional[Song]:
        """Look up a song by its file path."""
        with self._reading("get_song") as conn:
            row = conn.execute(
                f"SELECT {SONG_COLUMNS} FROM library WHERE path = ?", (_to_db(path),)
            ).fetchone()
        return _row_to_song(row) if row else None

    def count_songs(self) -> int:
        """Return the number of songs in the library."""
        with self._reading("count_songs") as conn:
            row = conn.execute("SELECT COUNT(*) as count FROM library").fetchone()
        return row["count"]

    def search_songs(self, query: str, limit: Optional[int] = None) -> list[Song]:
        """
        Search songs by title, artist, album or genre (case-insensitive).
        All words in the query must appear somewhere in the combined fields.

        Args:
            query: Search string (space-separated words)
            limit: Maximum number of results

        Returns:
            Matching songs
        """
        words = query.lower().split()
        if not words:
            return []

        conditions = []
        params: list = []
        for word in words:
            conditions.append(
                "(LOWER(COALESCE(title,'') || ' ' || COALESCE(artist,'') || ' ' || "
                "COALESCE(album,'') || ' ' || COALESCE(genre,'')) LIKE ? ESCAPE '\\')"
            )
            escaped = word.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            params.append(f"%{escaped}%")

        sql = f"SELECT {SONG_COLUMNS} FROM library WHERE {' AND '.join(conditions)} ORDER BY rowid"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        with self._reading("search_songs") as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_row_to_song(row) for row in rows]

    def set_metadata(self, key: str, value: str):
        """Set a metadata key-value pair."""
        with self._transaction("set_metadata") as conn:
            conn.execute(
                "INSERT OR REPLACE INTO library_metadata (key, value) VALUES (?, ?)",
                (key, value),
            )

    def get_metadata(self, key: str) -> Optional[str]:
        """Get a metadata value by key."""
        with self._reading("get_metadata") as conn:
            row = conn.execute(
                "SELECT value FROM library_metadata WHERE key = ?", (key,)
            ).fetchone()
        return row["value"] if row else None

    def save_queue(self, paths: list[str], current_index: int = 0):
        """
        Replace the persisted queue.

        Args:
            paths: Song paths in play order; duplicates allowed
            current_index: Index of the current entry, or -1 for none

        Raises:
            ValueError: If current_index is neither -1 nor a valid index
        """
        state = QueueState(list(paths), current_index)
        with self._transaction("save_queue") as conn:
            conn.execute("DELETE FROM queue")
            conn.executemany(
                "INSERT INTO queue (position, path) VALUES (?, ?)",
                [(i, _to_db(path)) for i, path in enumerate(state.paths)],
            )
            conn.execute(
                "INSERT OR REPLACE INTO queue_state (id, current_index) VALUES (0, ?)",
                (state.current_index,),
            )

    def load_queue(self) -> QueueState:
        """Return the persisted queue; current_index is -1 if none was saved."""
        with self._reading("load_queue") as conn:
            paths = [_from_db(row["path"]) for row in conn.execute("SELECT path FROM queue ORDER BY position")]
            row = conn.execute("SELECT current_index FROM queue_state WHERE id = 0").fetchone()

        current_index = row["current_index"] if row else -1
        if current_index != -1 and not 0 <= current_index < len(paths):
            logger.warning(f"Stored queue index {current_index} out of range, resetting")
            current_index = -1
        return QueueState(paths, current_index)

    def delete_album(self, directory_prefix: str) -> int:
        """
        Remove every song whose path starts with the given prefix.

        This is a plain string prefix match: "/music/Jazz" also matches
        "/music/Jazz2/...".

        Returns:
            Number of songs removed
        """
        if not directory_prefix:
            raise ValueError("directory_prefix must not be empty")
        with self._transaction("delete_album") as conn:
            cursor = conn.execute(
                "DELETE FROM library WHERE substr(path, 1, ?) = ?",
                (len(directory_prefix), directory_prefix),
            )
            removed = cursor.rowcount
        logger.info(f"Removed {removed} songs under {directory_prefix}")
        return removed

    def reconcile_missing_files(self) -> ReconcileResult:
        """Remove songs whose files no longer exist on disk."""
        with self._transaction("reconcile_missing_files") as conn:
            stored = [row["path"] for row in conn.execute("SELECT path FROM library")]
            missing = [path for path in stored if not os.path.exists(_from_db(path))]
            if missing:
                conn.executemany(
                    "DELETE FROM library WHERE path = ?", [(path,) for path in missing]
                )

        if missing:
            logger.info(f"Removed {len(missing)} songs with missing files")
        return ReconcileResult(removed_count=len(missing))

    def vacuum(self):
        """Reclaim unused space in the database."""
        with self._reading("vacuum") as conn:
            conn.execute("VACUUM")

    def close(self):
        """Close the database connection."""
        with self._lock:
            self.conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def initialize(db_path: Path) -> LibraryDatabase:
    """
    Open the library store. Call once at startup and pass the handle around.

    Args:
        db_path: Database file; parent directories are created as needed

    Returns:
        An open LibraryDatabase
    """
    if str(db_path) != ":memory:":
        db_path = Path(db_path).expanduser()
        try:
            db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Cannot create database directory {db_path.parent}: {e}") from e
    db = LibraryDatabase(db_path)
    logger.info(f"Library database ready: {db_path} ({db.count_songs()} songs)")
    return db
