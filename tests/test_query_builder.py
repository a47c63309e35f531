"""Tests for query_builder."""

from __future__ import annotations

import pytest

from models import Category
from query_builder import (
    AUDIO_FORMATS,
    CURATED_QUERIES,
    EXCLUSION_CLAUSE,
    FORMAT_ALLOW_LISTS,
    base_clause,
    build_query,
)


def test_empty_books_term_uses_curated_query() -> None:
    assert base_clause("", Category.BOOKS, "texts") == CURATED_QUERIES[Category.BOOKS]
    assert CURATED_QUERIES[Category.BOOKS].startswith("(subject:philosophy+OR+")
    assert CURATED_QUERIES[Category.BOOKS].endswith(")+AND+mediatype:texts")

    query = build_query("", Category.BOOKS, "texts")
    assert query == CURATED_QUERIES[Category.BOOKS] + FORMAT_ALLOW_LISTS[Category.BOOKS] + EXCLUSION_CLAUSE


def test_whitespace_only_term_counts_as_empty() -> None:
    assert base_clause("   ", Category.RADIO, None) == CURATED_QUERIES[Category.RADIO]


@pytest.mark.parametrize("category", [Category.JOURNAL, Category.HUB])
def test_local_only_categories_yield_no_query(category: Category) -> None:
    assert build_query("", category) == ""
    assert build_query("stoicism", category, "texts") == ""


def test_no_category_and_no_term_yields_no_query() -> None:
    assert build_query("", None, None) == ""


def test_user_term_is_encoded_and_refined_for_audiobooks() -> None:
    query = build_query("marcus aurelius & co", Category.AUDIOBOOKS, "audio")

    assert query.startswith("marcus%20aurelius%20%26%20co+AND+mediatype:audio+AND+(collection:librivoxaudio")
    assert AUDIO_FORMATS in query
    assert query.endswith(EXCLUSION_CLAUSE)


def test_music_refinement_excludes_spoken_word() -> None:
    query = build_query("jazz", Category.MUSIC, "audio")

    assert "+AND+NOT+collection:librivoxaudio" in query
    assert "+AND+(format:mp3+OR+format:ogg+OR+format:flac+OR+format:wav)" in query


def test_field_syntax_in_user_term_is_preserved() -> None:
    query = build_query("creator:(twain)", Category.BOOKS, "texts")

    assert query.startswith("creator:(twain)+AND+mediatype:texts+AND+(format:pdf+OR+format:epub+OR+format:text)")


def test_term_without_category_only_gets_exclusions() -> None:
    assert build_query("radio", None, None) == "radio" + EXCLUSION_CLAUSE
