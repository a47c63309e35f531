# models.py
import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union


class MediaKind(str, Enum):
    """The archive's own media type, collapsed to the kinds we handle."""
    AUDIO = "audio"
    TEXTS = "texts"
    MOVIES = "movies"
    IMAGE = "image"
    OTHER = "other"

    @classmethod
    def from_raw(cls, raw: Any) -> "MediaKind":
        if isinstance(raw, str):
            try:
                return cls(raw.strip().lower())
            except ValueError:
                pass
        return cls.OTHER


class Category(str, Enum):
    """A logical library section chosen in the UI."""
    HUB = "hub"
    JOURNAL = "journal"
    AUDIOBOOKS = "audiobooks"
    BOOKS = "books"
    MUSIC = "music"
    RADIO = "radio"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()

    @property
    def is_local_only(self) -> bool:
        return self in (Category.HUB, Category.JOURNAL)

    @property
    def archive_media_kind(self) -> Optional[str]:
        """Default media-kind hint sent with free-text searches."""
        return {
            Category.AUDIOBOOKS: MediaKind.AUDIO.value,
            Category.BOOKS: MediaKind.TEXTS.value,
            Category.MUSIC: MediaKind.AUDIO.value,
        }.get(self)


@dataclass(frozen=True)
class StringOrList:
    """A field the archive sends either as one string or as a list of strings."""
    value: Union[str, Tuple[str, ...]]

    @classmethod
    def decode(cls, raw: Any) -> Optional["StringOrList"]:
        """Tries the single-string shape first, then the list shape."""
        if raw is None:
            return None
        if isinstance(raw, str):
            return cls(raw)
        if isinstance(raw, list) and all(isinstance(part, str) for part in raw):
            return cls(tuple(raw))
        raise TypeError(f"expected a string or a list of strings, got {type(raw).__name__}")

    @property
    def text(self) -> str:
        if isinstance(self.value, str):
            return self.value
        return ", ".join(self.value)


@dataclass(frozen=True)
class CatalogItem:
    """A single archive item as returned by the search endpoint."""
    identifier: str
    title: str
    creator: Optional[str] = None
    date: Optional[str] = None
    description: Optional[str] = None
    media_kind: MediaKind = MediaKind.OTHER

    def thumbnail_url(self, base_url: str) -> str:
        return f"{base_url}/services/img/{self.identifier}"

    def details_url(self, base_url: str) -> str:
        return f"{base_url}/details/{self.identifier}"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["media_kind"] = self.media_kind.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CatalogItem":
        return cls(
            identifier=data["identifier"],
            title=data.get("title") or "Untitled",
            creator=data.get("creator"),
            date=data.get("date"),
            description=data.get("description"),
            media_kind=MediaKind.from_raw(data.get("media_kind")),
        )


@dataclass
class Playlist:
    """A named, ordered list of catalog items kept by the user."""
    id: str
    name: str
    description: Optional[str] = None
    items: List[CatalogItem] = field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""

    @property
    def is_music(self) -> bool:
        return all(item.media_kind == MediaKind.AUDIO for item in self.items)


@dataclass
class SearchSession:
    """Everything the search client knows about the current result set."""
    query: str = ""
    media_kind_hint: Optional[str] = None
    category: Optional[Category] = None
    results: List[CatalogItem] = field(default_factory=list)
    current_page: int = 0
    has_more: bool = True
    is_loading: bool = False
    is_loading_more: bool = False
    error: Optional[str] = None


@dataclass(frozen=True)
class FileDescriptor:
    """One entry of an item's file manifest."""
    name: str
    format: str = ""
    is_original: bool = False
    size: Optional[int] = None

    @property
    def extension(self) -> str:
        _, dot, ext = self.name.rpartition(".")
        return ext.lower() if dot else ""


@dataclass
class ClassificationRecord:
    """Advisory tags inferred for one item."""
    item_id: str
    genre: Optional[str]
    source_type: str
    content_type: str
    custom_tags: List[str] = field(default_factory=list)
    inferred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_json(self) -> bytes:
        data = asdict(self)
        data["inferred_at"] = self.inferred_at.isoformat()
        return json.dumps(data).encode("utf-8")

    @classmethod
    def from_json(cls, raw: bytes) -> "ClassificationRecord":
        data = json.loads(raw.decode("utf-8"))
        data["inferred_at"] = datetime.fromisoformat(data["inferred_at"])
        return cls(**data)


class PlaybackStatus(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    PLAYING = "playing"
    PAUSED = "paused"
    FAILED = "failed"


@dataclass(frozen=True)
class PlaybackState:
    """The projection every playback surface binds to."""
    status: PlaybackStatus = PlaybackStatus.IDLE
    current_title: str = ""
    current_item_identifier: str = ""
    has_next_track: bool = False
    has_previous_track: bool = False
    queue_position: int = 0
    queue_length: int = 0
    error: Optional[str] = None

    @property
    def is_playing(self) -> bool:
        return self.status == PlaybackStatus.PLAYING


@dataclass
class AppState:
    """A single object to hold the entire UI state."""
    results: List[CatalogItem] = field(default_factory=list)
    selected_item: Optional[CatalogItem] = None
    # True only while the table shows the live search session.
    is_live_search: bool = False
