# services.py
import asyncio
import logging
from dataclasses import replace
from typing import Any, Callable, List, Optional, Tuple
from urllib.parse import unquote

import requests

from errors import ArchiveError, InvalidResponse, NetworkError, NotFound
from models import CatalogItem, Category, MediaKind, SearchSession, StringOrList
from query_builder import build_query
from resolver import AssetResolver
from storage import DatabaseService, LocalBlobStore

LOGGER = logging.getLogger("archivedeck.search")
DOWNLOAD_LOGGER = logging.getLogger("archivedeck.download")

SEARCH_FIELDS = "identifier,title,creator,date,description,mediatype"
SORT_ORDER = "downloads desc"


def _text_field(doc: dict, key: str) -> Optional[str]:
    """Normalizes a value-or-list field, dropping it if it has neither shape."""
    try:
        decoded = StringOrList.decode(doc.get(key))
    except TypeError as exc:
        LOGGER.warning("Ignoring field %r of %s: %s", key, doc.get("identifier"), exc)
        return None
    return decoded.text if decoded else None


def parse_doc(doc: Any) -> Optional[CatalogItem]:
    """Parses a single raw search document into our CatalogItem model."""
    if not isinstance(doc, dict):
        return None
    identifier = doc.get("identifier")
    if not isinstance(identifier, str) or not identifier:
        LOGGER.warning("Skipping search document without an identifier")
        return None
    return CatalogItem(
        identifier=identifier,
        title=_text_field(doc, "title") or "Untitled",
        creator=_text_field(doc, "creator"),
        date=_text_field(doc, "date"),
        description=_text_field(doc, "description"),
        media_kind=MediaKind.from_raw(doc.get("mediatype")),
    )


def decode_page(payload: Any) -> Tuple[List[CatalogItem], int]:
    """Returns the decoded items of one page and the number of raw documents."""
    response = payload.get("response") if isinstance(payload, dict) else None
    docs = response.get("docs") if isinstance(response, dict) else None
    if not isinstance(docs, list):
        raise InvalidResponse("The archive returned a search page without results.")
    items = [item for item in (parse_doc(doc) for doc in docs) if item is not None]
    return items, len(docs)


class ArchiveSearchService:
    """A service to run paginated searches against the archive.

    Owns the single SearchSession; callers only ever see snapshots. Failures
    are reported through the session's `error` field instead of raising.
    """

    def __init__(
        self,
        base_url: str,
        page_size: int = 50,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
        item_filter: Optional[Callable[[CatalogItem], bool]] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.page_size = page_size
        self.session = session or requests.Session()
        self.timeout = timeout
        self.item_filter = item_filter
        self._state = SearchSession()
        self._generation = 0
        self._last_params: Optional[Tuple[str, Optional[str], Optional[Category]]] = None
        self._listeners: List[Callable[[SearchSession], None]] = []

    def snapshot(self) -> SearchSession:
        return replace(self._state, results=list(self._state.results))

    def subscribe(self, listener: Callable[[SearchSession], None]) -> None:
        self._listeners.append(listener)

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for listener in self._listeners:
            listener(snapshot)

    def _fetch_page(self, query: str, page: int) -> Any:
        url = f"{self.base_url}/advancedsearch.php?q={query}"
        params = {
            "fl": SEARCH_FIELDS,
            "rows": self.page_size,
            "page": page,
            "output": "json",
            "sort": SORT_ORDER,
        }
        LOGGER.debug("Archive search %s page %d", url, page)
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            LOGGER.warning("Search request failed: %s", exc)
            raise NetworkError(f"Could not reach the archive: {exc}") from exc
        try:
            return response.json()
        except ValueError as exc:
            LOGGER.warning("Search response is not valid JSON")
            raise InvalidResponse("The archive returned an unreadable search page.") from exc

    async def search(
        self,
        query: str,
        media_kind: Optional[str] = None,
        category: Optional[Category] = None,
        append: bool = False,
    ) -> SearchSession:
        state = self._state
        if append:
            if state.is_loading:
                return self.snapshot()
            state.is_loading_more = True
        else:
            self._generation += 1
            state.is_loading = True
            state.is_loading_more = False
            state.current_page = 0
            state.results = []
            state.has_more = True
        state.error = None
        state.query, state.media_kind_hint, state.category = query, media_kind, category
        self._last_params = (query, media_kind, category)
        generation = self._generation

        archive_query = build_query(query, category, media_kind)
        if not archive_query:
            state.is_loading = False
            state.is_loading_more = False
            self._notify()
            return self.snapshot()

        self._notify()
        try:
            payload = await asyncio.to_thread(self._fetch_page, archive_query, state.current_page + 1)
            items, fetched = decode_page(payload)
        except ArchiveError as exc:
            if generation != self._generation:
                LOGGER.debug("Dropping failure of a superseded search")
                return self.snapshot()
            state.error = str(exc)
            state.is_loading = False
            state.is_loading_more = False
            self._notify()
            return self.snapshot()

        if generation != self._generation:
            LOGGER.debug("Dropping response of a superseded search for %r", query)
            return self.snapshot()

        if self.item_filter is not None:
            items = [item for item in items if not self.item_filter(item)]

        if append:
            existing = {item.identifier for item in state.results}
            for item in items:
                if item.identifier not in existing:
                    existing.add(item.identifier)
                    state.results.append(item)
            state.current_page += 1
        else:
            unique = {}
            for item in items:
                unique.setdefault(item.identifier, item)
            state.results = list(unique.values())

        state.has_more = fetched >= self.page_size
        state.is_loading = False
        state.is_loading_more = False
        LOGGER.info("Search %r: %d new documents, %d total", query, fetched, len(state.results))
        self._notify()
        return self.snapshot()

    async def load_more(self) -> SearchSession:
        """Fetches the next page of the last search, unless one is pending or none is left."""
        state = self._state
        if state.is_loading or state.is_loading_more or not state.has_more or self._last_params is None:
            return self.snapshot()
        query, media_kind, category = self._last_params
        return await self.search(query, media_kind, category, append=True)


class Downloader:
    """A service to fetch resolved assets into the local blob store."""

    def __init__(
        self,
        resolver: AssetResolver,
        blob_store: LocalBlobStore,
        db_service: DatabaseService,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
    ):
        self.resolver = resolver
        self.blob_store = blob_store
        self.db_service = db_service
        self.session = session or requests.Session()
        self.timeout = timeout

    def _fetch(self, url: str) -> bytes:
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise NetworkError(str(exc)) from exc
        return response.content

    async def download(self, item: CatalogItem) -> Tuple[bool, str]:
        """Downloads the best file of an item, returning success status and message."""
        try:
            url = await self.resolver.resolve_downloadable(item)
        except NotFound as e:
            return False, str(e)
        except NetworkError as e:
            return False, f"Download failed for '{item.title}'. Details:\n{e}"

        DOWNLOAD_LOGGER.info("Downloading %s from %s", item.identifier, url)
        try:
            data = await asyncio.to_thread(self._fetch, url)
        except NetworkError as e:
            DOWNLOAD_LOGGER.warning("Download of %s failed: %s", item.identifier, e)
            return False, f"Download failed for '{item.title}'. Details:\n{e}"

        filename = f"{item.identifier}-{unquote(url.rsplit('/', 1)[-1])}"
        try:
            path = await asyncio.to_thread(self.blob_store.write, data, filename)
        except OSError as e:
            return False, f"Could not save '{item.title}': {e}"
        self.db_service.add_to_library(item, path)
        return True, f"Download successful for '{item.title}'."
