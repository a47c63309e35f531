"""Startup and navigation behaviour of the Textual application."""

from __future__ import annotations

import asyncio
from typing import List, Optional

import pytest
from textual.widgets import Select

from classifier import ContentClassifier
from config import Config
from conftest import FakeEngineFactory, FakeResolver, make_item
from main import ArchiveDeckApp
from models import Category, SearchSession
from playback import PlaybackArbiter
from storage import DatabaseService
from ui import ResultsDisplay


class StubSearchService:
    """Answers every search with one item named after the category."""

    def __init__(self) -> None:
        self.searches: List[tuple] = []
        self.load_more_calls = 0
        self.session = SearchSession()
        self.listeners = []

    def subscribe(self, listener) -> None:
        self.listeners.append(listener)

    def snapshot(self) -> SearchSession:
        return self.session

    async def search(self, query: str, media_kind_hint: Optional[str] = None,
                     category: Optional[Category] = None) -> SearchSession:
        self.searches.append((query, category))
        self.session = SearchSession(
            query=query, media_kind_hint=media_kind_hint, category=category,
            results=[make_item(f"{category.value}-1")], current_page=1,
        )
        return self.session

    async def load_more(self) -> SearchSession:
        self.load_more_calls += 1
        return self.session


@pytest.fixture
def db(tmp_path):
    service = DatabaseService(str(tmp_path / "app.db"))
    yield service
    service.close()


def build_app(db: DatabaseService, search: StubSearchService, classifier: ContentClassifier) -> ArchiveDeckApp:
    engine_factory = FakeEngineFactory()
    arbiter = PlaybackArbiter(FakeResolver(), engine_factory)
    return ArchiveDeckApp(search, arbiter, None, classifier, db, engine_factory, Config())


async def settle(app: ArchiveDeckApp, pilot) -> None:
    await pilot.pause()
    await app.workers.wait_for_complete()
    await pilot.pause()


def test_restored_results_survive_startup(db) -> None:
    previous = make_item("saved-session", title="Saved Session")
    db.save_last_results([previous])
    search = StubSearchService()
    classifier = ContentClassifier(db)

    async def scenario():
        app = build_app(db, search, classifier)
        async with app.run_test() as pilot:
            await settle(app, pilot)
            app.query_one(ResultsDisplay).focus()
            await pilot.press("m")
            await settle(app, pilot)
            return list(app.app_state.results), app.app_state.is_live_search

    try:
        results, live = asyncio.run(scenario())
    finally:
        classifier.close()

    assert results == [previous]
    assert not live
    assert search.searches == []
    assert search.load_more_calls == 0


def test_fresh_start_searches_the_default_category_once(db) -> None:
    search = StubSearchService()
    classifier = ContentClassifier(db)

    async def scenario():
        app = build_app(db, search, classifier)
        async with app.run_test() as pilot:
            await settle(app, pilot)
            return list(app.app_state.results), app.app_state.is_live_search

    try:
        results, live = asyncio.run(scenario())
    finally:
        classifier.close()

    assert search.searches == [("", Category.MUSIC)]
    assert [item.identifier for item in results] == ["music-1"]
    assert live


def test_library_view_does_not_page_the_search(db) -> None:
    db.add_to_library(make_item("kept"))
    search = StubSearchService()
    classifier = ContentClassifier(db)

    async def scenario():
        app = build_app(db, search, classifier)
        async with app.run_test() as pilot:
            await settle(app, pilot)
            app.query_one(ResultsDisplay).focus()
            calls_before = search.load_more_calls
            await pilot.press("l")
            await settle(app, pilot)
            await pilot.press("m")
            await settle(app, pilot)
            return calls_before, list(app.app_state.results)

    try:
        calls_before, results = asyncio.run(scenario())
    finally:
        classifier.close()

    assert [item.identifier for item in results] == ["kept"]
    assert search.load_more_calls == calls_before


def test_choosing_a_category_runs_a_new_search(db) -> None:
    search = StubSearchService()
    classifier = ContentClassifier(db)

    async def scenario():
        app = build_app(db, search, classifier)
        async with app.run_test() as pilot:
            await settle(app, pilot)
            app.query_one(Select).value = Category.BOOKS
            await settle(app, pilot)
            return list(app.app_state.results)

    try:
        results = asyncio.run(scenario())
    finally:
        classifier.close()

    assert search.searches == [("", Category.MUSIC), ("", Category.BOOKS)]
    assert [item.identifier for item in results] == ["books-1"]
