"""Shared fakes for the test-suite: an HTTP session, audio engines and a resolver."""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, List, Optional

import pytest
import requests

from errors import NotFound, PlaybackFailure
from models import CatalogItem, MediaKind


class FakeResponse:
    def __init__(self, payload: Any = None, status_code: int = 200, content: bytes = b"", invalid_json: bool = False):
        self.payload = payload
        self.status_code = status_code
        self.content = content
        self.invalid_json = invalid_json

    def json(self) -> Any:
        if self.invalid_json:
            raise ValueError("No JSON object could be decoded")
        return self.payload

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)


class FakeSession:
    """Answers `get` calls from a handler and records every call."""

    def __init__(self, handler: Callable[[str, Optional[dict]], FakeResponse]):
        self.handler = handler
        self.calls: List[tuple] = []

    def get(self, url: str, params: Optional[dict] = None, timeout: Optional[float] = None) -> FakeResponse:
        self.calls.append((url, params))
        return self.handler(url, params)


def queued_session(*responses: Any) -> FakeSession:
    """A session returning the given responses (or raising given exceptions) in order."""
    pending = list(responses)

    def handler(url: str, params: Optional[dict]) -> FakeResponse:
        outcome = pending.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    return FakeSession(handler)


def make_doc(index: int, **overrides: Any) -> Dict[str, Any]:
    doc = {
        "identifier": f"item-{index}",
        "title": f"Item {index}",
        "creator": f"Creator {index}",
        "date": "1999-01-01",
        "description": f"Description {index}",
        "mediatype": "audio",
    }
    doc.update(overrides)
    return doc


def search_page(docs: List[Dict[str, Any]]) -> FakeResponse:
    return FakeResponse({"responseHeader": {"status": 0}, "response": {"numFound": 1000, "docs": docs}})


def make_item(identifier: str, kind: MediaKind = MediaKind.AUDIO, **fields: Any) -> CatalogItem:
    return CatalogItem(identifier=identifier, title=fields.pop("title", identifier.upper()), media_kind=kind, **fields)


class FakeEngine:
    def __init__(self, source: str, factory: "FakeEngineFactory"):
        self.source = source
        self.factory = factory
        self.live = False
        self.paused = False
        self.exit_code: Optional[int] = None

    def play(self) -> None:
        if self.source in self.factory.failing_sources:
            raise PlaybackFailure(f"cannot play {self.source}")
        self.live = True
        self.factory.events.append(("play", self.source))
        self.factory.max_live = max(self.factory.max_live, len(self.factory.live))

    def pause(self) -> None:
        self.paused = True

    def resume(self) -> None:
        self.paused = False

    def stop(self) -> None:
        if self.factory.stop_delay:
            time.sleep(self.factory.stop_delay)
        if self.live:
            self.factory.events.append(("stop", self.source))
        self.live = False

    def poll(self) -> Optional[int]:
        return self.exit_code


class FakeEngineFactory:
    command_name = "fake-player"
    is_available = True

    def __init__(self) -> None:
        self.stop_delay = 0.0
        self.engines: List[FakeEngine] = []
        self.events: List[tuple] = []
        self.failing_sources: set = set()
        self.max_live = 0

    def __call__(self, source: str) -> FakeEngine:
        engine = FakeEngine(source, self)
        self.engines.append(engine)
        return engine

    @property
    def live(self) -> List[FakeEngine]:
        return [engine for engine in self.engines if engine.live]


class FakeResolver:
    def __init__(self, missing: Optional[set] = None):
        self.missing = missing or set()
        self.calls: List[str] = []

    @staticmethod
    def url_for(identifier: str) -> str:
        return f"https://archive.org/download/{identifier}/{identifier}.mp3"

    async def resolve_streamable(self, item: CatalogItem) -> str:
        self.calls.append(item.identifier)
        if item.identifier in self.missing:
            raise NotFound(f"No streamable file available for '{item.title}'.")
        return self.url_for(item.identifier)


@pytest.fixture
def engine_factory() -> FakeEngineFactory:
    return FakeEngineFactory()


@pytest.fixture
def fake_resolver() -> FakeResolver:
    return FakeResolver()
