"""Search string construction for slskd searches.

A template set renders a primary query plus an ordered list of fallback
queries for a ``SearchContext``. Retries walk that list and, from the second
attempt on, may simplify the query by dropping qualifiers that commonly keep
Soulseek peers from matching (bracketed tags, exclude filters, years).
"""

from __future__ import annotations

import re
import string
import unicodedata
from dataclasses import dataclass

from engine.config import QueryTemplates
from engine.types import SearchContext

_WS_RE = re.compile(r"\s+")
_BRACKETED_SEGMENT_RE = re.compile(r"[\(\[\{][^)\]\}]*[\)\]\}]")
_EXCLUDE_TERM_RE = re.compile(r"(?:^|\s)-\S+")
_YEAR_RE = re.compile(r"\b(?:19|20)\d{2}\b")
_PLACEHOLDERS = ("artist", "album", "title", "year")


@dataclass(frozen=True)
class BuiltQuery:
    primary: str
    fallbacks: tuple[str, ...] = ()


def _collapse(value: str) -> str:
    return _WS_RE.sub(" ", value).strip()


def _context_values(context: SearchContext) -> dict[str, str]:
    values = {
        "artist": context.artist,
        "album": context.album,
        "title": context.title,
        "year": str(context.year) if context.year else None,
    }
    return {key: _collapse(unicodedata.normalize("NFKC", str(v))) for key, v in values.items() if v}


def render_template(template: str, context: SearchContext) -> str:
    """Fill ``{artist}``-style placeholders, dropping those with no value."""
    values = _context_values(context)
    out = []
    for literal, field_name, _spec, _conv in string.Formatter().parse(template or ""):
        out.append(literal)
        if field_name is None:
            continue
        if field_name in _PLACEHOLDERS:
            out.append(values.get(field_name, ""))
        else:
            # Unknown placeholders are kept verbatim so a typo is visible in logs.
            out.append("{" + field_name + "}")
    return _collapse("".join(out))


def _template_for(context: SearchContext, templates: QueryTemplates) -> str:
    if context.kind == "artist":
        return templates.artist_query_template
    if context.kind == "track":
        return templates.track_query_template
    return templates.album_query_template


def _with_excludes(query: str, exclude_terms) -> str:
    excludes = []
    for term in exclude_terms or ():
        term = _collapse(str(term)).lstrip("-")
        if term and " " not in term:
            excludes.append(f"-{term}")
    return _collapse(" ".join([query, *excludes])) if query else ""


def build_query(context: SearchContext, templates: QueryTemplates | None = None) -> BuiltQuery:
    templates = templates or QueryTemplates()
    primary = _with_excludes(render_template(_template_for(context, templates), context), templates.exclude_terms)
    if not primary:
        primary = context.artist.strip()

    seen = {primary}
    fallbacks = []
    for template in templates.fallback_queries:
        query = _with_excludes(render_template(template, context), templates.exclude_terms)
        if not query or query in seen:
            continue
        seen.add(query)
        fallbacks.append(query)
    return BuiltQuery(primary=primary, fallbacks=tuple(fallbacks))


def simplify_query(query: str) -> str:
    """Strip bracketed qualifiers, ``-term`` excludes and four-digit years."""
    text = unicodedata.normalize("NFKC", str(query or ""))
    text = _BRACKETED_SEGMENT_RE.sub(" ", text)
    text = _EXCLUDE_TERM_RE.sub(" ", text)
    text = _YEAR_RE.sub(" ", text)
    simplified = _collapse(text)
    return simplified or _collapse(str(query or ""))


def query_for_attempt(built: BuiltQuery, attempt: int, simplify_on_retry: bool = True) -> str:
    """Return the query to submit on the 1-based ``attempt``."""
    if attempt <= 1 or not built.fallbacks:
        query = built.primary
    else:
        index = min(attempt - 2, len(built.fallbacks) - 1)
        query = built.fallbacks[index]
    if attempt > 1 and simplify_on_retry:
        return simplify_query(query)
    return query
