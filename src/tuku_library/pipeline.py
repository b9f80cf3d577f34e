"""
Scan orchestration: discovery -> extraction -> grouping -> cover resolution -> assembly.

A scan is a ScanJob: iterating it runs the pipeline and yields ScanEvents
(start, progress..., complete). After the iteration finishes, job.songs holds
the assembled Song records.
"""

from __future__ import annotations

import enum
import functools
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Iterator, Optional, Sequence, Union

from .config import LibraryConfig
from .covers import Materializer, materialize_cover, probe_local_cover, resolve_cover
from .database import FOLDER_PATH_KEY, LibraryDatabase
from .errors import FilesystemError, ScanInProgressError, UnreadableAudioFileError
from .metadata import degraded_song, extract_metadata
from .models import AudioFileRecord, DirectoryGroup, ScanEvent, Song
from .scanner import discover_audio_files

logger = logging.getLogger(__name__)

Extractor = Callable[[str], AudioFileRecord]
Prober = Callable[[str], Optional[str]]
ProgressCallback = Callable[[ScanEvent], None]


class ScanState(enum.Enum):
    PENDING = "pending"
    DISCOVERING = "discovering"
    EXTRACTING = "extracting"
    GROUPING = "grouping"
    RESOLVING_COVERS = "resolving_covers"
    ASSEMBLING = "assembling"
    COMPLETE = "complete"


class ProgressObserver:
    """Base class for scan observers. Instances are usable as on_progress callbacks."""

    def scan_start(self, total: int):
        pass

    def scan_progress(self, current: int, total: int):
        pass

    def scan_complete(self):
        pass

    def __call__(self, event: ScanEvent):
        if event.kind == ScanEvent.START:
            self.scan_start(event.total)
        elif event.kind == ScanEvent.PROGRESS:
            self.scan_progress(event.current, event.total)
        elif event.kind == ScanEvent.COMPLETE:
            self.scan_complete()


def group_by_directory(records: Sequence[AudioFileRecord]) -> list[DirectoryGroup]:
    """Group records by containing directory, in order of first appearance."""
    groups: dict[str, DirectoryGroup] = {}
    for record in records:
        group = groups.get(record.directory)
        if group is None:
            group = groups[record.directory] = DirectoryGroup(record.directory)
        group.add(record)
    return list(groups.values())


class ScanJob:
    """
    One scan of a folder tree.

    Extraction runs on a thread pool; progress counts completed extractions
    and all of them finish before grouping starts. Cover resolution runs one
    directory at a time. A file whose tags cannot be read becomes a degraded
    Song and skips cover resolution.

    The complete event is always the last event, also when discovery fails;
    in that case the FilesystemError is raised after it.
    """

    def __init__(
        self,
        root: str,
        config: Optional[LibraryConfig] = None,
        extractor: Extractor = extract_metadata,
        prober: Prober = probe_local_cover,
        materialize: Optional[Materializer] = None,
        lock: Optional[threading.Lock] = None,
    ):
        self.root = root
        self.config = config or LibraryConfig()
        self.extractor = extractor
        self.prober = prober
        if materialize is None:
            materialize = functools.partial(
                materialize_cover,
                size=self.config.cover_size,
                quality=self.config.cover_quality,
            )
        self.materialize = materialize
        self.state = ScanState.PENDING
        self.songs: list[Song] = []
        self.unreadable: list[str] = []
        self._lock = lock
        self._started = False

    def __iter__(self) -> Iterator[ScanEvent]:
        if self._started:
            raise RuntimeError("A ScanJob can only be run once")
        self._started = True
        return self._run()

    def run(self, on_progress: Optional[ProgressCallback] = None) -> list[Song]:
        """Drive the scan to completion, pushing every event to on_progress."""
        for event in self:
            if on_progress is None:
                continue
            try:
                on_progress(event)
            except Exception as e:
                logger.warning(f"Progress observer failed on {event.kind} event: {e}")
        return self.songs

    def _run(self) -> Iterator[ScanEvent]:
        if self._lock is not None and not self._lock.acquire(blocking=False):
            raise ScanInProgressError("A library scan is already running")

        try:
            self.state = ScanState.DISCOVERING
            try:
                paths = discover_audio_files(self.root)
            except FilesystemError:
                self.state = ScanState.COMPLETE
                yield ScanEvent(ScanEvent.COMPLETE)
                raise

            total = len(paths)
            logger.info(f"Found {total} audio files under {self.root}")
            yield ScanEvent(ScanEvent.START, 0, total)

            self.state = ScanState.EXTRACTING
            results: list[Union[AudioFileRecord, Song, None]] = [None] * total
            yield from self._extract_all(paths, results)

            self.state = ScanState.GROUPING
            records = [r for r in results if isinstance(r, AudioFileRecord)]
            groups = group_by_directory(records)

            self.state = ScanState.RESOLVING_COVERS
            covers = {}
            for group in groups:
                covers[group.directory] = resolve_cover(
                    group.directory, group.members, group.existing_cover, self.materialize
                )

            self.state = ScanState.ASSEMBLING
            songs = []
            for result in results:
                if isinstance(result, AudioFileRecord):
                    songs.append(result.to_song(covers[result.directory]))
                else:
                    songs.append(result)
            self.songs = songs

            logger.info(
                f"Scan complete: {len(records)} read, {len(self.unreadable)} unreadable, "
                f"{sum(1 for c in covers.values() if c)}/{len(groups)} directories with covers"
            )
            self.state = ScanState.COMPLETE
            yield ScanEvent(ScanEvent.COMPLETE)
        finally:
            if self._lock is not None:
                self._lock.release()

    def _extract_one(self, path: str) -> Union[AudioFileRecord, Song]:
        try:
            record = self.extractor(path)
            record.existing_cover = self.prober(record.directory)
        except UnreadableAudioFileError as e:
            logger.warning(f"Failed: {e}")
            return degraded_song(path)
        except Exception as e:
            logger.warning(f"Failed: {path}: {e}")
            return degraded_song(path)
        return record

    def _extract_all(self, paths: list[str], results: list) -> Iterator[ScanEvent]:
        total = len(paths)
        interval = self.config.progress_interval
        processed = 0

        executor = ThreadPoolExecutor(max_workers=self.config.max_workers)
        try:
            futures = {executor.submit(self._extract_one, path): i for i, path in enumerate(paths)}
            for future in as_completed(futures):
                result = future.result()
                if isinstance(result, Song):
                    self.unreadable.append(result.path)
                results[futures[future]] = result
                processed += 1
                if processed % interval == 0 or processed == total:
                    yield ScanEvent(ScanEvent.PROGRESS, processed, total)
        finally:
            executor.shutdown(wait=True, cancel_futures=True)


class LibraryScanner:
    """Creates scan jobs, allowing at most one to run at a time."""

    def __init__(self, config: Optional[LibraryConfig] = None, **collaborators):
        self.config = config or LibraryConfig()
        self._collaborators = collaborators
        self._lock = threading.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def start(self, root: str) -> ScanJob:
        return ScanJob(root, self.config, lock=self._lock, **self._collaborators)

    def scan(self, root: str, on_progress: Optional[ProgressCallback] = None) -> list[Song]:
        return self.start(root).run(on_progress)


def scan(
    root: str,
    on_progress: Optional[ProgressCallback] = None,
    config: Optional[LibraryConfig] = None,
    **collaborators,
) -> list[Song]:
    """
    Scan a folder tree and return its Song records.

    Args:
        root: Folder to scan
        on_progress: Receives each ScanEvent; a ProgressObserver works too
        config: Scan settings
        **collaborators: extractor / prober / materialize overrides

    Returns:
        Songs in discovery order, degraded placeholders included
    """
    return ScanJob(root, config, **collaborators).run(on_progress)


def ingest(database: LibraryDatabase, root: str, on_progress: Optional[ProgressCallback] = None,
           scanner: Optional[LibraryScanner] = None) -> ScanJob:
    """
    Scan a folder, save its songs and remember it as the library folder.

    Returns:
        The finished ScanJob, with its songs and unreadable paths
    """
    scanner = scanner or LibraryScanner()
    job = scanner.start(root)
    songs = job.run(on_progress)
    database.save_library(songs)
    database.set_metadata(FOLDER_PATH_KEY, str(root))
    return job
