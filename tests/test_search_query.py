from engine.config import QueryTemplates
from engine.search_query import (
    BuiltQuery,
    build_query,
    query_for_attempt,
    render_template,
    simplify_query,
)
from engine.types import SearchContext


def test_default_templates_by_kind() -> None:
    album = SearchContext(artist="Radiohead", album="OK Computer", kind="album")
    track = SearchContext(artist="Radiohead", title="Airbag", kind="track")
    artist = SearchContext(artist="Radiohead", kind="artist")

    assert build_query(album).primary == "Radiohead OK Computer"
    assert build_query(track).primary == "Radiohead Airbag"
    assert build_query(artist).primary == "Radiohead"


def test_absent_placeholders_are_dropped_without_blanks() -> None:
    context = SearchContext(artist="Boards of Canada", album="Geogaddi", kind="album")
    assert render_template("{artist}  {album} {year}", context) == "Boards of Canada Geogaddi"
    assert render_template("{artist} - {title} ({year})", context) == "Boards of Canada - ()"


def test_year_placeholder_and_excludes() -> None:
    templates = QueryTemplates(album_query_template="{artist} {album} {year}", exclude_terms=("live", "-karaoke", ""))
    context = SearchContext(artist="Portishead", album="Dummy", year=1994, kind="album")
    built = build_query(context, templates)
    assert built.primary == "Portishead Dummy 1994 -live -karaoke"


def test_fallbacks_are_rendered_deduplicated_and_skip_primary() -> None:
    templates = QueryTemplates(
        album_query_template="{artist} {album}",
        fallback_queries=("{artist} {album}", "{album}", "{album}", "{title}"),
    )
    context = SearchContext(artist="Portishead", album="Dummy", kind="album")
    built = build_query(context, templates)
    assert built.primary == "Portishead Dummy"
    assert built.fallbacks == ("Dummy",)


def test_simplify_strips_qualifiers_excludes_and_years() -> None:
    assert simplify_query("Artist Album (Deluxe Edition) [2011 Remaster] 2011 -live") == "Artist Album"
    assert simplify_query("Blink-182 Enema of the State") == "Blink-182 Enema of the State"


def test_simplify_never_returns_empty() -> None:
    assert simplify_query("(2001)") == "(2001)"


def test_query_for_attempt_walks_fallbacks_and_simplifies_from_second_attempt() -> None:
    built = BuiltQuery(primary="Artist Album (Deluxe)", fallbacks=("Album (Live)", "Artist"))

    assert query_for_attempt(built, 1, True) == "Artist Album (Deluxe)"
    assert query_for_attempt(built, 2, True) == "Album"
    assert query_for_attempt(built, 3, True) == "Artist"
    assert query_for_attempt(built, 4, True) == "Artist"
    assert query_for_attempt(built, 2, False) == "Album (Live)"


def test_query_for_attempt_without_fallbacks_reuses_primary() -> None:
    built = BuiltQuery(primary="Artist Album (Deluxe)")
    assert query_for_attempt(built, 1, True) == "Artist Album (Deluxe)"
    assert query_for_attempt(built, 2, True) == "Artist Album"
    assert query_for_attempt(built, 2, False) == "Artist Album (Deluxe)"


def test_build_is_deterministic() -> None:
    templates = QueryTemplates(fallback_queries=("{album}", "{artist}"), exclude_terms=("flac",))
    context = SearchContext(artist="Air", album="Moon Safari", year=1998)
    assert build_query(context, templates) == build_query(context, templates)
