# query_builder.py
"""Builds advanced-search query strings in the archive's boolean syntax.

Query strings are emitted already URL-safe: spaces inside clauses are written
as ``+`` and the user's free text is percent-encoded, so the result can be
placed directly after ``q=`` in the request URL.
"""
from typing import Optional
from urllib.parse import quote

from models import Category

CURATED_QUERIES = {
    Category.MUSIC: (
        "(subject:classical+OR+subject:jazz+OR+subject:electronic+OR+subject:folk+OR+subject:ambient)"
        "+AND+mediatype:audio+AND+NOT+subject:audiobook+AND+NOT+collection:librivoxaudio"
    ),
    Category.AUDIOBOOKS: (
        "(subject:philosophy+OR+subject:stoicism+OR+subject:history+OR+subject:classics"
        "+OR+subject:fiction+OR+subject:science)"
        "+AND+mediatype:audio+AND+(collection:librivoxaudio+OR+subject:audiobook)"
    ),
    Category.BOOKS: (
        "(subject:philosophy+OR+subject:stoicism+OR+subject:science+OR+subject:history"
        "+OR+subject:literature+OR+subject:classics)+AND+mediatype:texts"
    ),
    Category.RADIO: (
        '(collection:oldtimeradio+OR+subject:"old+time+radio"+OR+subject:drama'
        "+OR+subject:comedy+OR+subject:talk)+AND+mediatype:audio"
    ),
}

REFINEMENTS = {
    Category.AUDIOBOOKS: (
        '+AND+(collection:librivoxaudio+OR+subject:audiobook+OR+subject:"audio+book"'
        "+OR+collection:audio_bookspoetry)"
    ),
    Category.MUSIC: (
        '+AND+NOT+collection:librivoxaudio+AND+NOT+subject:audiobook+AND+NOT+subject:"audio+book"'
    ),
    Category.RADIO: (
        "+AND+(collection:oldtimeradio+OR+collection:radioprograms"
        '+OR+subject:"old+time+radio"+OR+subject:radio)'
    ),
}

AUDIO_FORMATS = "+AND+(format:mp3+OR+format:ogg+OR+format:flac+OR+format:wav)"

FORMAT_ALLOW_LISTS = {
    Category.BOOKS: "+AND+(format:pdf+OR+format:epub+OR+format:text)",
    Category.AUDIOBOOKS: AUDIO_FORMATS,
    Category.MUSIC: AUDIO_FORMATS,
    Category.RADIO: "+AND+(format:mp3+OR+format:ogg)",
}

EXCLUSION_CLAUSE = "+AND+NOT+collection:printdisabled+AND+NOT+collection:inlibrary+AND+NOT+collection:americana"

# Characters a user may type to write their own field terms.
_TERM_SAFE_CHARS = ":()*'!"


def encode_term(term: str) -> str:
    return quote(term, safe=_TERM_SAFE_CHARS)


def base_clause(term: str, category: Optional[Category], media_kind: Optional[str]) -> str:
    """The curated query for an empty term, or the refined user clause."""
    if category is not None and category.is_local_only:
        return ""
    term = term.strip()
    if not term:
        if category is None:
            return ""
        return CURATED_QUERIES.get(category, "")
    clause = encode_term(term)
    if media_kind:
        clause += f"+AND+mediatype:{media_kind}"
    if category is not None:
        clause += REFINEMENTS.get(category, "")
    return clause


def build_query(term: str, category: Optional[Category] = None, media_kind: Optional[str] = None) -> str:
    """Returns the full query string, or "" when no network call should be made."""
    clause = base_clause(term, category, media_kind)
    if not clause:
        return ""
    if category is not None:
        clause += FORMAT_ALLOW_LISTS.get(category, "")
    return clause + EXCLUSION_CLAUSE
