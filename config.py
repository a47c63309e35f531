# config.py
import os
from dataclasses import dataclass, fields, replace
from typing import Mapping, Tuple

ENV_PREFIX = "ARCHIVE_DECK_"


@dataclass
class Config:
    """Holds all application configuration."""
    ARCHIVE_BASE_URL: str = "https://archive.org"
    SEARCH_PAGE_SIZE: int = 50
    REQUEST_TIMEOUT: float = 30.0
    FILE_OPEN_TIMEOUT: float = 5.0
    DATABASE_FILENAME: str = "archive_deck.db"
    DOWNLOAD_DIR: str = "downloads"
    PLAYER_COMMANDS: Tuple[str, ...] = ("mpv", "ffplay", "cvlc")
    DEFAULT_CATEGORY: str = "music"
    FILTER_EXPLICIT: bool = False
    LOG_FILE: str = "archive_deck.log"
    LOG_LEVEL: str = "INFO"
    PLAYBACK_POLL_INTERVAL: float = 1.0
    DEFAULT_PLAYLIST: str = "My Playlist"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = os.environ) -> "Config":
        """Builds a config, overriding defaults from ARCHIVE_DECK_* variables."""
        config = cls()
        overrides = {}
        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name)
            if raw is None:
                continue
            overrides[f.name] = _coerce(getattr(config, f.name), raw)
        return replace(config, **overrides)


def _coerce(default, raw: str):
    if isinstance(default, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    if isinstance(default, tuple):
        return tuple(part.strip() for part in raw.split(",") if part.strip())
    return raw
