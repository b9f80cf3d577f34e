"""Tests for the scan orchestrator."""

from __future__ import annotations

import os

import pytest

from conftest import image_bytes, make_record, picture, touch, write_wav
from tuku_library.config import LibraryConfig
from tuku_library.covers import path_to_media_url
from tuku_library.errors import FilesystemError, ScanInProgressError, UnreadableAudioFileError
from tuku_library.models import ScanEvent
from tuku_library.pipeline import (
    LibraryScanner,
    ProgressObserver,
    ScanJob,
    ScanState,
    group_by_directory,
    ingest,
    scan,
)
from tuku_library.scanner import discover_audio_files


class FakeExtractor:
    """Builds records from a {filename: (album, pictures)} table."""

    def __init__(self, tags=None, unreadable=()):
        self.tags = tags or {}
        self.unreadable = set(unreadable)

    def __call__(self, path):
        name = os.path.basename(path)
        if name in self.unreadable:
            raise UnreadableAudioFileError(path, "corrupt")
        album, pictures = self.tags.get(name, ("", []))
        return make_record(path, album=album, pictures=pictures, title=name.upper())


def collect(job_or_root, **kwargs):
    events = []
    songs = scan(job_or_root, on_progress=events.append, **kwargs)
    return songs, events


def test_progress_events_are_monotonic(music_dir):
    for i in range(25):
        touch(music_dir / f"d{i % 3}" / f"{i:02}.mp3")

    songs, events = collect(str(music_dir), extractor=FakeExtractor())

    assert [e.kind for e in events] == ["start", "progress", "progress", "progress", "complete"]
    assert events[0].total == 25
    currents = [e.current for e in events if e.kind == ScanEvent.PROGRESS]
    assert currents == [10, 20, 25]
    assert all(e.total == 25 for e in events if e.kind == ScanEvent.PROGRESS)
    assert len(songs) == 25


def test_progress_fires_on_last_file_below_interval(music_dir):
    for i in range(3):
        touch(music_dir / f"{i}.mp3")

    _, events = collect(str(music_dir), extractor=FakeExtractor())

    assert [(e.kind, e.current, e.total) for e in events] == [
        ("start", 0, 3),
        ("progress", 3, 3),
        ("complete", 0, 0),
    ]


def test_custom_progress_interval(music_dir):
    for i in range(7):
        touch(music_dir / f"{i}.mp3")

    _, events = collect(
        str(music_dir), extractor=FakeExtractor(), config=LibraryConfig(progress_interval=3, max_workers=2)
    )

    assert [e.current for e in events if e.kind == ScanEvent.PROGRESS] == [3, 6, 7]


def test_empty_folder_still_completes(music_dir):
    songs, events = collect(str(music_dir), extractor=FakeExtractor())

    assert songs == []
    assert [e.kind for e in events] == ["start", "complete"]


def test_unreadable_root_completes_then_raises(tmp_path):
    events = []
    job = ScanJob(str(tmp_path / "missing"), extractor=FakeExtractor())

    with pytest.raises(FilesystemError):
        job.run(events.append)

    assert [e.kind for e in events] == ["complete"]
    assert job.state is ScanState.COMPLETE
    assert job.songs == []


def test_unreadable_file_becomes_degraded_song(music_dir):
    touch(music_dir / "Album" / "01.mp3")
    touch(music_dir / "Album" / "02.mp3")
    art = image_bytes()
    extractor = FakeExtractor(
        tags={"01.mp3": ("X", [picture(art)])},
        unreadable={"02.mp3"},
    )

    job = ScanJob(str(music_dir), extractor=extractor)
    songs = job.run()

    degraded = next(s for s in songs if s.path.endswith("02.mp3"))
    assert degraded.title == "02.mp3"
    assert degraded.artist == "Unknown"
    assert degraded.album == ""
    assert degraded.duration == 0
    assert degraded.cover is None
    assert degraded.genre == ""
    assert job.unreadable == [degraded.path]

    good = next(s for s in songs if s.path.endswith("01.mp3"))
    assert good.cover == path_to_media_url(str(music_dir / "Album" / "cover.jpg"))


def test_every_file_unreadable(music_dir):
    for i in range(12):
        touch(music_dir / f"{i}.mp3")
    names = {f"{i}.mp3" for i in range(12)}

    songs, events = collect(str(music_dir), extractor=FakeExtractor(unreadable=names))

    assert len(songs) == 12
    assert all(s.artist == "Unknown" and s.cover is None for s in songs)
    assert events[-1].kind == ScanEvent.COMPLETE


def test_unexpected_extractor_error_degrades_the_file(music_dir):
    touch(music_dir / "a.mp3")
    touch(music_dir / "b.mp3")
    fake = FakeExtractor()

    def extractor(path):
        if path.endswith("b.mp3"):
            raise RuntimeError("decoder crashed")
        return fake(path)

    job = ScanJob(str(music_dir), extractor=extractor)
    events = list(job)

    assert events[-1].kind == ScanEvent.COMPLETE
    assert job.state is ScanState.COMPLETE
    by_name = {os.path.basename(s.path): s for s in job.songs}
    assert by_name["a.mp3"].title == "A.MP3"
    assert by_name["b.mp3"].title == "b.mp3"
    assert by_name["b.mp3"].artist == "Unknown"
    assert [os.path.basename(p) for p in job.unreadable] == ["b.mp3"]


def test_failing_prober_degrades_instead_of_aborting(music_dir):
    touch(music_dir / "a.mp3")

    def prober(directory):
        raise OSError("stale mount")

    songs, events = collect(str(music_dir), extractor=FakeExtractor(), prober=prober)

    assert [e.kind for e in events] == ["start", "progress", "complete"]
    assert songs[0].artist == "Unknown"
    assert songs[0].cover is None


def test_cover_is_shared_by_directory(music_dir):
    for name in ("01.mp3", "02.mp3", "03.mp3"):
        touch(music_dir / "Consistent" / name)
    for name in ("a.mp3", "b.mp3"):
        touch(music_dir / "Mixed" / name)
    art = image_bytes()
    extractor = FakeExtractor(tags={
        "01.mp3": ("X", []),
        "02.mp3": ("X", [picture(art)]),
        "03.mp3": ("X", []),
        "a.mp3": ("Y", [picture(art)]),
        "b.mp3": ("Z", [picture(art)]),
    })

    songs = scan(str(music_dir), extractor=extractor)

    expected_cover = path_to_media_url(str(music_dir / "Consistent" / "cover.jpg"))
    covers = {os.path.basename(s.path): s.cover for s in songs}
    assert covers["01.mp3"] == covers["02.mp3"] == covers["03.mp3"] == expected_cover
    assert covers["a.mp3"] is None
    assert covers["b.mp3"] is None
    assert (music_dir / "Consistent" / "cover.jpg").is_file()
    assert not (music_dir / "Mixed" / "cover.jpg").exists()


def test_cover_on_disk_takes_precedence(music_dir):
    touch(music_dir / "Album" / "01.mp3")
    touch(music_dir / "Album" / "02.mp3")
    existing = touch(music_dir / "Album" / "cover.jpg", b"hand-picked")
    extractor = FakeExtractor(tags={
        "01.mp3": ("X", [picture(image_bytes(color=(0, 255, 0)))]),
        "02.mp3": ("X", [picture(image_bytes(color=(0, 0, 255)))]),
    })

    songs = scan(str(music_dir), extractor=extractor)

    assert {s.cover for s in songs} == {path_to_media_url(str(existing))}
    assert existing.read_bytes() == b"hand-picked"


def test_songs_follow_discovery_order(music_dir):
    for path in ("b/2.mp3", "a/1.flac", "c.mp3", "a/sub/3.ogg", "b/1.wav"):
        touch(music_dir / path)

    songs = scan(str(music_dir), extractor=FakeExtractor(unreadable={"c.mp3"}))

    assert [s.path for s in songs] == discover_audio_files(str(music_dir))


def test_rescan_is_idempotent(music_dir):
    for name in ("01.mp3", "02.mp3"):
        touch(music_dir / "Album" / name)
    touch(music_dir / "Loose" / "x.mp3")
    extractor = FakeExtractor(tags={
        "01.mp3": ("X", [picture(image_bytes())]),
        "02.mp3": ("X", []),
        "x.mp3": ("", []),
    })

    first = scan(str(music_dir), extractor=extractor)
    second = scan(str(music_dir), extractor=extractor)

    assert {s.path: s for s in first} == {s.path: s for s in second}


def test_scan_with_real_files(music_dir):
    write_wav(music_dir / "Album" / "tone.wav", seconds=1.0)
    touch(music_dir / "Album" / "broken.mp3", b"no audio here" * 10)

    songs = scan(str(music_dir))

    by_name = {os.path.basename(s.path): s for s in songs}
    assert by_name["tone.wav"].duration == pytest.approx(1.0, abs=0.05)
    assert by_name["broken.mp3"].title == "broken.mp3"
    assert by_name["broken.mp3"].artist == "Unknown"


def test_second_concurrent_scan_is_refused(music_dir):
    touch(music_dir / "a.mp3")
    scanner = LibraryScanner(extractor=FakeExtractor())

    running = iter(scanner.start(str(music_dir)))
    assert next(running).kind == ScanEvent.START
    assert scanner.busy

    with pytest.raises(ScanInProgressError):
        list(scanner.start(str(music_dir)))

    assert [e.kind for e in running] == ["progress", "complete"]
    assert not scanner.busy
    assert len(scanner.scan(str(music_dir))) == 1


def test_abandoned_scan_releases_guard(music_dir):
    touch(music_dir / "a.mp3")
    scanner = LibraryScanner(extractor=FakeExtractor())

    running = iter(scanner.start(str(music_dir)))
    next(running)
    running.close()

    assert not scanner.busy


def test_job_runs_once(music_dir):
    job = ScanJob(str(music_dir), extractor=FakeExtractor())
    job.run()
    with pytest.raises(RuntimeError):
        job.run()


def test_failing_observer_does_not_abort_scan(music_dir):
    touch(music_dir / "a.mp3")

    def observer(event):
        raise RuntimeError("UI went away")

    songs = scan(str(music_dir), on_progress=observer, extractor=FakeExtractor())

    assert len(songs) == 1


def test_progress_observer_dispatch(music_dir):
    for i in range(11):
        touch(music_dir / f"{i}.mp3")

    class Recorder(ProgressObserver):
        def __init__(self):
            self.calls = []

        def scan_start(self, total):
            self.calls.append(("start", total))

        def scan_progress(self, current, total):
            self.calls.append(("progress", current, total))

        def scan_complete(self):
            self.calls.append(("complete",))

    recorder = Recorder()
    scan(str(music_dir), on_progress=recorder, extractor=FakeExtractor())

    assert recorder.calls == [
        ("start", 11),
        ("progress", 10, 11),
        ("progress", 11, 11),
        ("complete",),
    ]


def test_group_by_directory(tmp_path):
    records = [
        make_record(tmp_path / "b" / "1.mp3"),
        make_record(tmp_path / "a" / "1.mp3"),
        make_record(tmp_path / "b" / "2.mp3"),
    ]
    records[2].existing_cover = "media:///b/cover.jpg"

    groups = group_by_directory(records)

    assert [g.directory for g in groups] == [str(tmp_path / "b"), str(tmp_path / "a")]
    assert [os.path.basename(m.file_path) for m in groups[0].members] == ["1.mp3", "2.mp3"]
    assert groups[0].existing_cover == "media:///b/cover.jpg"
    assert groups[1].existing_cover is None


def test_ingest_saves_library(music_dir, db):
    touch(music_dir / "Album" / "01.mp3")
    touch(music_dir / "Album" / "02.mp3")
    scanner = LibraryScanner(extractor=FakeExtractor(unreadable={"02.mp3"}))

    job = ingest(db, str(music_dir), scanner=scanner)

    assert sorted(s.path for s in db.load_library()) == sorted(s.path for s in job.songs)
    assert db.get_metadata("folderPath") == str(music_dir)
    assert db.get_metadata("lastUpdated") is not None
    assert len(job.unreadable) == 1
