"""Tests for ArchiveSearchService and the search document decoding."""

from __future__ import annotations

import asyncio
import threading

import pytest
import requests

from classifier import is_explicit
from conftest import FakeResponse, FakeSession, make_doc, queued_session, search_page
from errors import InvalidResponse
from models import Category, MediaKind
from query_builder import build_query
from services import SEARCH_FIELDS, SORT_ORDER, ArchiveSearchService, decode_page, parse_doc

BASE_URL = "https://archive.org"


def make_service(session: FakeSession, **kwargs) -> ArchiveSearchService:
    return ArchiveSearchService(BASE_URL, page_size=50, session=session, **kwargs)


def test_parse_doc_joins_list_fields_and_tolerates_bad_shapes() -> None:
    item = parse_doc(make_doc(1, creator=["Ada", "Grace"], description=["Part one", "part two"], mediatype="texts"))
    assert item.creator == "Ada, Grace"
    assert item.description == "Part one, part two"
    assert item.media_kind == MediaKind.TEXTS

    odd = parse_doc(make_doc(2, creator=42, title=None, mediatype=None))
    assert odd.creator is None
    assert odd.title == "Untitled"
    assert odd.media_kind == MediaKind.OTHER


def test_decode_page_skips_documents_without_identifier() -> None:
    payload = {"response": {"docs": [make_doc(1), {"title": "orphan"}, "junk"]}}

    items, fetched = decode_page(payload)

    assert [item.identifier for item in items] == ["item-1"]
    assert fetched == 3


def test_decode_page_rejects_pages_without_docs() -> None:
    with pytest.raises(InvalidResponse):
        decode_page({"error": "query parse error"})


def test_search_sends_expected_request() -> None:
    session = queued_session(search_page([make_doc(1)]))
    service = make_service(session)

    asyncio.run(service.search("jazz", "audio", Category.MUSIC))

    url, params = session.calls[0]
    assert url == f"{BASE_URL}/advancedsearch.php?q={build_query('jazz', Category.MUSIC, 'audio')}"
    assert params == {"fl": SEARCH_FIELDS, "rows": 50, "page": 1, "output": "json", "sort": SORT_ORDER}


def test_has_more_follows_page_fill() -> None:
    session = queued_session(
        search_page([make_doc(i) for i in range(50)]),
        search_page([make_doc(i) for i in range(50, 62)]),
    )
    service = make_service(session)

    first = asyncio.run(service.search("", "audio", Category.MUSIC))
    assert len(first.results) == 50
    assert first.has_more is True
    assert first.current_page == 0

    second = asyncio.run(service.load_more())
    assert len(second.results) == 62
    assert second.has_more is False
    assert second.current_page == 1
    assert session.calls[1][1]["page"] == 1


def test_load_more_appends_without_duplicates_in_order() -> None:
    session = queued_session(
        search_page([make_doc(i) for i in range(50)]),
        search_page([make_doc(i) for i in range(40, 90)]),
    )
    service = make_service(session)

    async def scenario():
        await service.search("", "audio", Category.MUSIC)
        return await service.load_more()

    session_state = asyncio.run(scenario())

    identifiers = [item.identifier for item in session_state.results]
    assert identifiers == [f"item-{i}" for i in range(90)]
    assert len(set(identifiers)) == len(identifiers)


def test_load_more_is_a_no_op_without_more_pages() -> None:
    session = queued_session(search_page([make_doc(i) for i in range(12)]))
    service = make_service(session)

    asyncio.run(service.search("", "audio", Category.MUSIC))
    asyncio.run(service.load_more())

    assert len(session.calls) == 1


def test_load_more_is_a_no_op_while_a_page_is_pending() -> None:
    session = queued_session(search_page([make_doc(i) for i in range(50)]))
    service = make_service(session)
    asyncio.run(service.search("", "audio", Category.MUSIC))

    service._state.is_loading_more = True
    asyncio.run(service.load_more())
    service._state.is_loading_more = False
    service._state.is_loading = True
    asyncio.run(service.load_more())

    assert len(session.calls) == 1


def test_load_more_without_a_prior_search_does_nothing() -> None:
    session = queued_session()
    service = make_service(session)

    asyncio.run(service.load_more())

    assert session.calls == []


def test_local_only_category_makes_no_request() -> None:
    session = queued_session()
    service = make_service(session)

    state = asyncio.run(service.search("anything", None, Category.JOURNAL))

    assert session.calls == []
    assert state.results == []
    assert state.is_loading is False
    assert state.error is None


def test_malformed_page_keeps_previous_results() -> None:
    session = queued_session(
        search_page([make_doc(i) for i in range(50)]),
        FakeResponse({"error": "boom"}),
    )
    service = make_service(session)

    async def scenario():
        await service.search("", "audio", Category.MUSIC)
        return await service.load_more()

    state = asyncio.run(scenario())

    assert len(state.results) == 50
    assert state.error
    assert state.is_loading is False
    assert state.is_loading_more is False
    assert state.current_page == 0


def test_unreadable_json_is_reported() -> None:
    service = make_service(queued_session(FakeResponse(invalid_json=True)))

    state = asyncio.run(service.search("jazz", "audio", Category.MUSIC))

    assert state.error == "The archive returned an unreadable search page."
    assert state.results == []


def test_network_failure_is_reported_and_flags_cleared() -> None:
    service = make_service(queued_session(requests.ConnectionError("no route to host")))

    state = asyncio.run(service.search("jazz", "audio", Category.MUSIC))

    assert "no route to host" in state.error
    assert state.is_loading is False
    assert state.is_loading_more is False


def test_http_error_status_is_reported() -> None:
    service = make_service(queued_session(FakeResponse(status_code=503)))

    state = asyncio.run(service.search("jazz", "audio", Category.MUSIC))

    assert "503" in state.error


def test_superseded_search_response_is_dropped() -> None:
    release = threading.Event()

    def handler(url, params):
        if "slow" in url:
            release.wait(timeout=5)
            return search_page([make_doc(i, identifier=f"slow-{i}") for i in range(3)])
        return search_page([make_doc(i, identifier=f"fast-{i}") for i in range(2)])

    service = make_service(FakeSession(handler))

    async def scenario():
        slow = asyncio.create_task(service.search("slow", "audio", Category.MUSIC))
        await asyncio.sleep(0)
        await service.search("fast", "audio", Category.MUSIC)
        release.set()
        await slow
        return service.snapshot()

    state = asyncio.run(scenario())

    assert [item.identifier for item in state.results] == ["fast-0", "fast-1"]
    assert state.query == "fast"
    assert state.is_loading is False


def test_new_search_replaces_results() -> None:
    session = queued_session(
        search_page([make_doc(i) for i in range(3)]),
        search_page([make_doc(i, identifier=f"other-{i}") for i in range(2)]),
    )
    service = make_service(session)

    asyncio.run(service.search("first", "audio", Category.MUSIC))
    state = asyncio.run(service.search("second", "texts", Category.BOOKS))

    assert [item.identifier for item in state.results] == ["other-0", "other-1"]
    assert state.category == Category.BOOKS
    assert state.media_kind_hint == "texts"


def test_item_filter_hides_matches_without_ending_pagination() -> None:
    docs = [make_doc(i) for i in range(49)] + [make_doc(99, title="NSFW compilation")]
    service = make_service(queued_session(search_page(docs)), item_filter=is_explicit)

    state = asyncio.run(service.search("", "audio", Category.MUSIC))

    assert len(state.results) == 49
    assert all(item.identifier != "item-99" for item in state.results)
    assert state.has_more is True


def test_listeners_receive_snapshots() -> None:
    service = make_service(queued_session(search_page([make_doc(1)])))
    seen = []
    service.subscribe(lambda snapshot: seen.append((snapshot.is_loading, len(snapshot.results))))

    asyncio.run(service.search("jazz", "audio", Category.MUSIC))

    assert seen[0] == (True, 0)
    assert seen[-1] == (False, 1)
