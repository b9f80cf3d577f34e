"""
Configuration for the library tools.
Defaults can be overridden by a JSON settings file and the environment.
"""

import json
import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

APP_DIR = Path.home() / ".tuku"
DEFAULT_SETTINGS_FILE = APP_DIR / "settings.json"
DATABASE_ENV_VAR = "TUKU_DATABASE"


@dataclass
class LibraryConfig:
    """Settings shared by the scanner, cover pipeline and store."""

    database_path: Path = field(default_factory=lambda: APP_DIR / "library.db")

    # Emit a progress event every N extracted files
    progress_interval: int = 10

    # Threads used for tag extraction
    max_workers: int = 4

    # Materialized covers are square JPEGs
    cover_size: int = 600
    cover_quality: int = 80

    def __post_init__(self):
        self.database_path = Path(self.database_path).expanduser()
        if self.progress_interval < 1:
            raise ValueError(f"progress_interval must be >= 1, got {self.progress_interval}")
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")
        if not 1 <= self.cover_quality <= 95:
            raise ValueError(f"cover_quality must be in 1..95, got {self.cover_quality}")


def load_config(settings_file: Optional[Path] = None) -> LibraryConfig:
    """
    Load configuration.

    Args:
        settings_file: JSON file with overrides. Defaults to ~/.tuku/settings.json

    Returns:
        LibraryConfig with file and environment overrides applied
    """
    if settings_file is None:
        settings_file = DEFAULT_SETTINGS_FILE

    config = LibraryConfig()
    known = {f.name for f in fields(LibraryConfig)}

    try:
        if os.path.exists(settings_file):
            with open(settings_file, "r", encoding="utf-8") as f:
                saved = json.load(f)
            if not isinstance(saved, dict):
                raise ValueError("settings file must contain a JSON object")
            unknown = set(saved) - known
            if unknown:
                logger.warning(f"Ignoring unknown settings in {settings_file}: {sorted(unknown)}")
            config = replace(config, **{k: v for k, v in saved.items() if k in known})
    except (OSError, json.JSONDecodeError, ValueError, TypeError) as exc:
        logger.warning("Failed to load settings from %s: %s", settings_file, exc)
        config = LibraryConfig()

    env_db = os.environ.get(DATABASE_ENV_VAR)
    if env_db:
        config = replace(config, database_path=Path(env_db))

    return config
