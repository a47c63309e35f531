# resolver.py
"""Turns one catalog item into a concrete file URL.

Every resolution fetches the item's file manifest from the metadata endpoint
and walks an ordered list of fallback tiers until exactly one file is picked.
Manifests are never cached: resolving the same item twice fetches twice.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union
from urllib.parse import quote

import requests

from errors import ArchiveError, NetworkError, NotFound
from models import CatalogItem, FileDescriptor, MediaKind

LOGGER = logging.getLogger("archivedeck.resolver")

STREAM_CODECS = ("mp3", "ogg", "m4a", "flac")
STREAMABLE_EXTENSIONS = frozenset({"mp3", "ogg", "m4a", "flac", "wav", "m3u", "opus", "aac"})

BLACKLIST_FORMAT_MARKERS = ("Metadata", "Log", "Item")
BLACKLIST_NAME_MARKERS = ("_files.xml", "_meta.xml", "_archive.torrent", "__ia_thumb.jpg")
BLACKLIST_SUFFIXES = (".xml", ".sqlite", ".torrent")

MIN_PLAUSIBLE_SIZE = 1_000_000


@dataclass(frozen=True)
class FormatPriority:
    """One step of the download priority list."""
    label: str
    extensions: Tuple[str, ...]
    idioms: Tuple[str, ...] = ()

    def matches(self, f: FileDescriptor) -> bool:
        fmt = f.format.lower()
        if any(token in fmt for token in (self.label.lower(),) + self.extensions):
            return True
        if f.extension in self.extensions:
            return True
        name = f.name.lower()
        return any(idiom in name for idiom in self.idioms)


DOWNLOAD_PRIORITIES = {
    MediaKind.AUDIO: (
        FormatPriority("MP3", ("mp3",)),
        FormatPriority("FLAC", ("flac",)),
        FormatPriority("OGG", ("ogg",)),
        FormatPriority("WAV", ("wav",)),
    ),
    MediaKind.MOVIES: (
        FormatPriority("MP4", ("mp4",)),
        FormatPriority("AVI", ("avi",)),
        FormatPriority("MOV", ("mov",)),
        FormatPriority("MKV", ("mkv",)),
    ),
    MediaKind.IMAGE: (
        FormatPriority("JPEG", ("jpeg", "jpg")),
        FormatPriority("PNG", ("png",)),
        FormatPriority("GIF", ("gif",)),
        FormatPriority("TIFF", ("tiff", "tif")),
    ),
    MediaKind.TEXTS: (
        FormatPriority("PDF", ("pdf",), ("_text.pdf", "_bw.pdf")),
        FormatPriority("EPUB", ("epub",)),
        FormatPriority("Text", ("txt",), ("_djvu.txt", "_text.txt")),
        FormatPriority("DjVu", ("djvu",)),
    ),
}

ACCEPTABLE_FORMATS = {
    MediaKind.AUDIO: ("mp3", "flac", "ogg", "wav", "m4a"),
    MediaKind.MOVIES: ("mp4", "avi", "mov", "mkv", "webm"),
    MediaKind.IMAGE: ("jpeg", "jpg", "png", "gif", "tiff", "bmp"),
    MediaKind.TEXTS: ("pdf", "txt", "epub", "mobi", "djvu", "text", "html"),
}

# Only these kinds reject files under MIN_PLAUSIBLE_SIZE, unless the
# extension vouches for the content.
PLAUSIBLE_SMALL_EXTENSIONS = {
    MediaKind.AUDIO: ("mp3", "flac", "ogg"),
    MediaKind.TEXTS: ("txt", "pdf"),
}


def _table_kind(kind: MediaKind) -> MediaKind:
    if kind in (MediaKind.AUDIO, MediaKind.MOVIES, MediaKind.IMAGE):
        return kind
    return MediaKind.TEXTS


def _parse_size(raw: Any) -> Optional[int]:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def decode_manifest(payload: Any) -> List[FileDescriptor]:
    """Reads the `files` collection, which may be a list or an object of objects."""
    if not isinstance(payload, dict):
        return []
    raw_files = payload.get("files")
    if isinstance(raw_files, list):
        entries: Iterable[Tuple[Optional[str], Any]] = ((None, entry) for entry in raw_files)
    elif isinstance(raw_files, dict):
        entries = raw_files.items()
    else:
        return []

    files = []
    for key, entry in entries:
        if not isinstance(entry, dict):
            continue
        name = entry.get("name") or (key.lstrip("/") if key else None)
        if not isinstance(name, str) or not name:
            continue
        fmt = entry.get("format")
        files.append(FileDescriptor(
            name=name,
            format=fmt if isinstance(fmt, str) else "",
            is_original=entry.get("source") == "original",
            size=_parse_size(entry.get("size")),
        ))
    return files


def is_streamable_name(name: str) -> bool:
    _, dot, ext = name.rpartition(".")
    return bool(dot) and ext.lower() in STREAMABLE_EXTENSIONS


def is_blacklisted(f: FileDescriptor) -> bool:
    if any(marker in f.format for marker in BLACKLIST_FORMAT_MARKERS):
        return True
    name = f.name.lower()
    if any(marker in name for marker in BLACKLIST_NAME_MARKERS):
        return True
    return name.endswith(BLACKLIST_SUFFIXES)


def select_streamable(files: Sequence[FileDescriptor]) -> Optional[FileDescriptor]:
    """Originals first, then derivatives, each scanned in codec preference order."""
    for originals_only in (True, False):
        for codec in STREAM_CODECS:
            for f in files:
                if originals_only and not f.is_original:
                    continue
                if f.extension != codec and codec not in f.format.lower():
                    continue
                if not is_streamable_name(f.name):
                    LOGGER.debug("Skipping %s: matches %s but is not streamable", f.name, codec)
                    continue
                return f
    return None


def _plausible_size(f: FileDescriptor, media_kind: MediaKind) -> bool:
    allowed = PLAUSIBLE_SMALL_EXTENSIONS.get(media_kind)
    if allowed is None or f.size is None or f.size >= MIN_PLAUSIBLE_SIZE:
        return True
    return f.extension in allowed


def select_downloadable(files: Sequence[FileDescriptor], media_kind: MediaKind) -> Optional[FileDescriptor]:
    kind = _table_kind(media_kind)
    candidates = [f for f in files if not is_blacklisted(f)]

    for priority in DOWNLOAD_PRIORITIES[kind]:
        for f in candidates:
            if priority.matches(f):
                LOGGER.debug("Picked %s via %s priority", f.name, priority.label)
                return f

    acceptable = ACCEPTABLE_FORMATS[kind]
    for f in candidates:
        if not _plausible_size(f, media_kind):
            continue
        fmt = f.format.lower()
        if any(token in fmt for token in acceptable) or f.extension in acceptable:
            LOGGER.debug("Picked fallback file %s", f.name)
            return f
    return None


class AssetResolver:
    """Resolves catalog items to stream or download URLs."""

    def __init__(self, base_url: str, session: Optional[requests.Session] = None, timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def download_url(self, identifier: str, name: str) -> str:
        return f"{self.base_url}/download/{quote(identifier, safe='')}/{quote(name)}"

    def fetch_manifest(self, identifier: str) -> List[FileDescriptor]:
        url = f"{self.base_url}/metadata/{quote(identifier, safe='')}"
        LOGGER.debug("Fetching manifest %s", url)
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as exc:
            LOGGER.warning("Manifest request failed for %s: %s", identifier, exc)
            raise NetworkError(f"Could not fetch the file list for '{identifier}': {exc}") from exc
        except ValueError as exc:
            LOGGER.warning("Manifest for %s is not valid JSON", identifier)
            raise NetworkError(f"The file list for '{identifier}' could not be read.") from exc
        return decode_manifest(payload)

    async def resolve_streamable(self, item: CatalogItem) -> str:
        files = await asyncio.to_thread(self.fetch_manifest, item.identifier)
        chosen = select_streamable(files)
        if chosen is None:
            LOGGER.info("No streamable file among %d files of %s", len(files), item.identifier)
            raise NotFound(f"No streamable file available for '{item.title}'.")
        return self.download_url(item.identifier, chosen.name)

    async def resolve_downloadable(self, item: CatalogItem) -> str:
        files = await asyncio.to_thread(self.fetch_manifest, item.identifier)
        chosen = select_downloadable(files, item.media_kind)
        if chosen is None:
            LOGGER.info("No downloadable file among %d files of %s", len(files), item.identifier)
            raise NotFound(f"No downloadable file available for '{item.title}'.")
        return self.download_url(item.identifier, chosen.name)

    async def resolve_many(
        self, items: Sequence[CatalogItem], streamable: bool = True
    ) -> Dict[str, Union[str, ArchiveError]]:
        """Resolves a batch concurrently; each item gets its URL or its own error."""
        resolve = self.resolve_streamable if streamable else self.resolve_downloadable
        outcomes = await asyncio.gather(*(resolve(item) for item in items), return_exceptions=True)
        results: Dict[str, Union[str, ArchiveError]] = {}
        for item, outcome in zip(items, outcomes):
            if isinstance(outcome, BaseException) and not isinstance(outcome, ArchiveError):
                raise outcome
            results[item.identifier] = outcome
        return results
