"""Command-line interface for the Tuku library."""

import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional

import click
from tqdm import tqdm

from . import __version__
from .albums import format_time, group_albums
from .config import LibraryConfig, load_config
from .database import FOLDER_PATH_KEY, LAST_UPDATED_KEY, LibraryDatabase, initialize
from .errors import LibraryError
from .models import Song
from .pipeline import LibraryScanner, ProgressObserver, ingest

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


class TqdmProgress(ProgressObserver):
    """Shows scan events as a tqdm progress bar."""

    def __init__(self, desc: str = "Reading tags"):
        self.desc = desc
        self.bar = None

    def scan_start(self, total: int):
        self.bar = tqdm(total=total, desc=self.desc, unit="file")

    def scan_progress(self, current: int, total: int):
        if self.bar is not None:
            self.bar.update(current - self.bar.n)

    def scan_complete(self):
        if self.bar is not None:
            self.bar.close()
            self.bar = None


@dataclass
class CliContext:
    config: LibraryConfig

    def open_database(self) -> LibraryDatabase:
        try:
            return initialize(self.config.database_path)
        except LibraryError as e:
            raise click.ClickException(str(e))


def format_song(song: Song) -> str:
    """Format a song for display."""
    line = f"{song.artist} - {song.title}"
    if song.album:
        line += f" ({song.album})"
    return f"{line} [{format_time(song.duration)}]"


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--database", "-d",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Library database file (default: ~/.tuku/library.db)"
)
@click.option(
    "--settings",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="JSON settings file (default: ~/.tuku/settings.json)"
)
@click.option(
    "--verbose", "-v",
    is_flag=True,
    help="Enable verbose logging"
)
@click.pass_context
def cli(ctx: click.Context, database: Optional[Path], settings: Optional[Path], verbose: bool):
    """Tuku - music library tools

    Scan a music folder into the Tuku library, keep it in sync with the disk
    and inspect the stored library and playback queue.
    """
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    config = load_config(settings)
    if database is not None:
        config = replace(config, database_path=database)
    ctx.obj = CliContext(config)


def _run_scan(obj: CliContext, music_path: Path, workers: Optional[int]) -> list[Song]:
    config = obj.config
    if workers is not None:
        config = replace(config, max_workers=workers)

    db = obj.open_database()
    try:
        job = ingest(db, str(music_path.resolve()), TqdmProgress(), LibraryScanner(config))
        total_songs = db.count_songs()
    except LibraryError as e:
        raise click.ClickException(str(e))
    finally:
        db.close()

    with_cover = sum(1 for s in job.songs if s.cover)
    click.echo(f"\nComplete!")
    click.echo(f"  Songs scanned: {len(job.songs)}")
    click.echo(f"  Without readable tags: {len(job.unreadable)}")
    click.echo(f"  With cover art: {with_cover}")
    click.echo(f"  Total songs in library: {total_songs}")
    return job.songs


@cli.command()
@click.argument("music_path", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--workers", "-w", type=click.IntRange(min=1), default=None, help="Tag extraction threads")
@click.pass_obj
def scan(obj: CliContext, music_path: Path, workers: Optional[int]):
    """Scan a music folder into the library.

    MUSIC_PATH: Path to your music library folder

    Songs already in the library are replaced with freshly read tags. Albums
    whose folder has no cover.jpg get one extracted from embedded art when
    every file carries the same album tag.
    """
    click.echo(f"Scanning: {music_path}")
    click.echo(f"Database: {obj.config.database_path}")
    _run_scan(obj, music_path, workers)


@cli.command()
@click.argument("music_path", required=False, type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option(
    "--remove-missing/--no-remove-missing",
    default=True,
    help="Remove songs whose files no longer exist"
)
@click.option("--workers", "-w", type=click.IntRange(min=1), default=None, help="Tag extraction threads")
@click.pass_obj
def update(obj: CliContext, music_path: Optional[Path], remove_missing: bool, workers: Optional[int]):
    """Rescan the library folder and drop songs whose files are gone.

    MUSIC_PATH: Folder to rescan (default: the last scanned folder)
    """
    db = obj.open_database()
    try:
        if music_path is None:
            saved = db.get_metadata(FOLDER_PATH_KEY)
            if not saved:
                raise click.UsageError("No library folder saved yet; pass MUSIC_PATH or run 'scan' first")
            music_path = Path(saved)

        if remove_missing:
            result = db.reconcile_missing_files()
            if result.removed_count > 0:
                click.echo(f"Removed {result.removed_count} songs with missing files")
            db.vacuum()
    except LibraryError as e:
        raise click.ClickException(str(e))
    finally:
        db.close()

    if not music_path.is_dir():
        raise click.ClickException(f"Library folder not found: {music_path}")

    click.echo(f"Updating from: {music_path}")
    _run_scan(obj, music_path, workers)


@cli.command()
@click.pass_obj
def info(obj: CliContext):
    """Show information about the library database."""
    db = obj.open_database()
    path = obj.config.database_path
    try:
        click.echo(f"Database: {path}")
        if path.exists():
            click.echo(f"File size: {path.stat().st_size / 1024 / 1024:.1f} MB")
        click.echo(f"Total songs: {db.count_songs()}")

        folder = db.get_metadata(FOLDER_PATH_KEY)
        if folder:
            click.echo(f"Library folder: {folder}")

        last_updated = db.get_metadata(LAST_UPDATED_KEY)
        if last_updated:
            click.echo(f"Last updated: {last_updated}")

        queue = db.load_queue()
        click.echo(f"Queue: {len(queue.paths)} entries")
    except LibraryError as e:
        raise click.ClickException(str(e))
    finally:
        db.close()


@cli.command()
@click.argument("query")
@click.option("--top", "-n", default=20, help="Number of results to show")
@click.pass_obj
def search(obj: CliContext, query: str, top: int):
    """Search songs by title, artist, album or genre.

    QUERY: Words that must all appear in the song's tags

    Examples:

      tuku-library search "radiohead karma"
      tuku-library search jazz -n 50
    """
    db = obj.open_database()
    try:
        matches = db.search_songs(query, limit=top)
    except LibraryError as e:
        raise click.ClickException(str(e))
    finally:
        db.close()

    if not matches:
        click.echo(f"No songs found matching: {query}")
        return

    for rank, song in enumerate(matches, 1):
        click.echo(f"  {rank:2}. {format_song(song)}")


@cli.command()
@click.pass_obj
def albums(obj: CliContext):
    """List albums in the library."""
    db = obj.open_database()
    try:
        songs = db.load_library()
    except LibraryError as e:
        raise click.ClickException(str(e))
    finally:
        db.close()

    found = group_albums(songs)
    if not found:
        click.echo("No albums in the library")
        return

    for album in found:
        year = f" ({album.year})" if album.year else ""
        cover = "" if album.cover else "  [no cover]"
        click.echo(f"{album.artist} - {album.title}{year}: {len(album.songs)} songs{cover}")


@cli.command()
@click.pass_obj
def reconcile(obj: CliContext):
    """Remove songs whose files no longer exist."""
    db = obj.open_database()
    try:
        result = db.reconcile_missing_files()
    except LibraryError as e:
        raise click.ClickException(str(e))
    finally:
        db.close()
    click.echo(f"Removed {result.removed_count} songs with missing files")


@cli.command("delete-album")
@click.argument("directory")
@click.confirmation_option(prompt="Remove every song whose path starts with this directory?")
@click.pass_obj
def delete_album(obj: CliContext, directory: str):
    """Remove an album folder's songs from the library.

    DIRECTORY: Album folder. Matching is by path prefix, so "/music/Jazz"
    also removes songs under "/music/Jazz2".
    """
    db = obj.open_database()
    try:
        removed = db.delete_album(directory)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="DIRECTORY")
    except LibraryError as e:
        raise click.ClickException(str(e))
    finally:
        db.close()
    click.echo(f"Removed {removed} songs")


@cli.group()
def queue():
    """Inspect or replace the playback queue."""
    pass


@queue.command("show")
@click.pass_obj
def queue_show(obj: CliContext):
    """Print the queue, marking the current entry."""
    db = obj.open_database()
    try:
        state = db.load_queue()
    except LibraryError as e:
        raise click.ClickException(str(e))
    finally:
        db.close()

    if not state.paths:
        click.echo("Queue is empty")
        return

    for i, path in enumerate(state.paths):
        marker = ">" if i == state.current_index else " "
        click.echo(f"  {marker} {i:3}. {path}")


@queue.command("set")
@click.argument("paths", nargs=-1, required=True)
@click.option("--current", "-c", default=0, help="Index of the current entry (-1 for none)")
@click.pass_obj
def queue_set(obj: CliContext, paths: tuple, current: int):
    """Replace the queue with PATHS."""
    db = obj.open_database()
    try:
        db.save_queue(list(paths), current)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--current")
    except LibraryError as e:
        raise click.ClickException(str(e))
    finally:
        db.close()
    click.echo(f"Queue saved: {len(paths)} entries")


if __name__ == "__main__":
    cli()
