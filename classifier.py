# classifier.py
"""Keyword rules that tag catalog items with a best-guess genre, source and content type.

Tags are advisory only. Each facet is an ordered rule list evaluated top to
bottom against the lower-cased title, description and creator; the first
matching rule wins and a facet without a match falls back to its default.
"""
import logging
import re
import sqlite3
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from models import CatalogItem, Category, ClassificationRecord
from storage import DatabaseService

LOGGER = logging.getLogger("archivedeck.classifier")

KEY_PREFIX = "classification:"


@dataclass(frozen=True)
class Rule:
    tag: str
    keywords: Tuple[str, ...] = ()
    predicate: Optional[Callable[[CatalogItem], bool]] = None

    def matches(self, text: str, item: CatalogItem) -> bool:
        if any(keyword in text for keyword in self.keywords):
            return True
        return self.predicate is not None and self.predicate(item)


@dataclass(frozen=True)
class RuleSet:
    rules: Tuple[Rule, ...]
    default: str

    def evaluate(self, text: str, item: CatalogItem) -> str:
        for rule in self.rules:
            if rule.matches(text, item):
                return rule.tag
        return self.default


def _before_1960(item: CatalogItem) -> bool:
    year = (item.date or "")[:4]
    return year.isdigit() and int(year) < 1960


SOURCE_RULES = RuleSet((
    Rule("LibriVox", ("librivox",)),
    Rule("University Archive", ("university",)),
    Rule("Museum Collection", ("museum",)),
    Rule("Library Archive", ("library",)),
    Rule("Public Domain", ("public domain",)),
    Rule("Community Upload", ("community",)),
), default="Classic Source")

CONTENT_RULES = RuleSet((
    Rule("DJ Set", ("dj set", "mix")),
    Rule("Live Concert", ("live", "concert")),
    Rule("Lecture", ("lecture", "talk")),
    Rule("Audiobook", ("audiobook",)),
    Rule("Podcast", ("podcast",)),
    Rule("Documentary", ("documentary",)),
    Rule("Tutorial", ("tutorial", "how to")),
), default="Studio Recording")

MUSIC_GENRES = RuleSet((
    Rule("Trance", ("trance", "psychedelic")),
    Rule("Jazz", ("jazz",)),
    Rule("Lo-Fi", ("lo-fi", "lofi", "chill")),
    Rule("Ambient", ("ambient",)),
    Rule("Classical", ("classical", "orchestra", "symphony")),
    Rule("Electronic", ("electronic", "techno", "house")),
    Rule("Rock", ("rock",)),
    Rule("Folk", ("folk",)),
    Rule("Experimental", ("experimental", "avant")),
    Rule("World Music", ("world", "ethnic")),
), default="Classical")

AUDIOBOOK_GENRES = RuleSet((
    Rule("Philosophy", ("philosophy", "stoic", "plato")),
    Rule("History", ("history", "historical")),
    Rule("Science", ("science", "physics", "biology")),
    Rule("Poetry", ("poetry", "poems")),
    Rule("Self-Help", ("self-help", "self help", "improvement")),
    Rule("Biography", ("biography", "autobiography", "memoir")),
    Rule("Mystery", ("mystery", "detective", "crime")),
    Rule("Classics", ("classic", "shakespeare")),
    Rule("Non-Fiction", ("non-fiction", "nonfiction")),
), default="Fiction")

RADIO_GENRES = RuleSet((
    Rule("Old Time Radio", ("old time radio", "otr"), predicate=_before_1960),
    Rule("Talk Shows", ("talk", "interview")),
    Rule("Drama", ("drama", "theater")),
    Rule("Comedy", ("comedy", "humor")),
    Rule("News", ("news", "report")),
    Rule("Educational", ("educational", "lecture")),
    Rule("Music Programs", ("music",)),
), default="Old Time Radio")

# Books reuse the audiobook genres.
GENRE_RULES = {
    Category.MUSIC: MUSIC_GENRES,
    Category.AUDIOBOOKS: AUDIOBOOK_GENRES,
    Category.BOOKS: AUDIOBOOK_GENRES,
    Category.RADIO: RADIO_GENRES,
}


def searchable_text(item: CatalogItem) -> str:
    return f"{item.title} {item.description or ''} {item.creator or ''}".lower()


def infer(item: CatalogItem, category: Optional[Category]) -> ClassificationRecord:
    """Runs every facet's rules for one item. Pure, no caching."""
    text = searchable_text(item)
    genre_rules = GENRE_RULES.get(category) if category is not None else None
    return ClassificationRecord(
        item_id=item.identifier,
        genre=genre_rules.evaluate(text, item) if genre_rules else None,
        source_type=SOURCE_RULES.evaluate(text, item),
        content_type=CONTENT_RULES.evaluate(text, item),
    )


class ContentClassifier:
    """Classifies items once and remembers the result per item id."""

    def __init__(self, store: Optional[DatabaseService] = None):
        self.store = store
        self._cache: Dict[str, ClassificationRecord] = {}
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="classifier")
        self._pending: List[Future] = []

    def _load(self, item_id: str) -> Optional[ClassificationRecord]:
        if self.store is None:
            return None
        raw = self.store.get(KEY_PREFIX + item_id)
        if raw is None:
            return None
        try:
            return ClassificationRecord.from_json(raw)
        except (ValueError, KeyError, TypeError) as exc:
            LOGGER.warning("Ignoring stored classification for %s: %s", item_id, exc)
            return None

    def _persist(self, record: ClassificationRecord) -> None:
        try:
            self.store.set(KEY_PREFIX + record.item_id, record.to_json())
        except (OSError, sqlite3.Error):
            LOGGER.exception("Failed to persist classification for %s", record.item_id)

    def classify(self, item: CatalogItem, category: Optional[Category]) -> ClassificationRecord:
        cached = self._cache.get(item.identifier)
        if cached is not None:
            return cached
        stored = self._load(item.identifier)
        if stored is not None:
            self._cache[item.identifier] = stored
            return stored

        record = infer(item, category)
        self._cache[item.identifier] = record
        if self.store is not None:
            self._pending = [f for f in self._pending if not f.done()]
            self._pending.append(self._executor.submit(self._persist, record))
        return record

    def flush(self) -> None:
        """Blocks until every scheduled write has finished."""
        for future in self._pending:
            future.result()
        self._pending = []

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    # --- filtering ---
    def items_for_genre(self, genre: str, items: Iterable[CatalogItem], category: Category) -> List[CatalogItem]:
        return [item for item in items if self.classify(item, category).genre == genre]

    def items_for_source(self, source_type: str, items: Iterable[CatalogItem], category: Category) -> List[CatalogItem]:
        return [item for item in items if self.classify(item, category).source_type == source_type]

    def items_for_content_type(self, content_type: str, items: Iterable[CatalogItem], category: Category) -> List[CatalogItem]:
        return [item for item in items if self.classify(item, category).content_type == content_type]


# --- explicit-content filter ---
EXPLICIT_WORDS = frozenset({
    "porn", "pornography", "xxx", "nsfw", "erotic", "erotica", "nude", "naked",
    "fetish", "hentai", "bdsm", "onlyfans", "camgirl", "xvideos", "pornhub",
})
EXPLICIT_PHRASES = ("adult content", "barely legal", "18+ only", "live cam")
ADULT_COLLECTION_MARKERS = ("adult", "erotica", "nsfw", "pornography")

_WORD_SPLIT = re.compile(r"[^a-z0-9]+")


def is_explicit(item: CatalogItem) -> bool:
    """True when an item looks like adult content and should be hidden."""
    text = f"{item.title} {item.description or ''} {item.creator or ''} {item.identifier}".lower()
    if any(word in EXPLICIT_WORDS for word in _WORD_SPLIT.split(text) if word):
        return True
    if any(phrase in text for phrase in EXPLICIT_PHRASES):
        return True
    identifier = item.identifier.lower()
    return any(marker in identifier for marker in ADULT_COLLECTION_MARKERS)
