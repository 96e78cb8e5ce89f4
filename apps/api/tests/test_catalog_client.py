from urllib.parse import parse_qs

import httpx
import pytest

from streamsense_catalog.candidate_source import TMDBCandidateSource, genre_filter
from streamsense_catalog.tmdb_client import TMDBClient
from streamsense_user.affinity.schemas import CategoryScore


def _result(i, **kw):
    row = {
        "id": i,
        "title": f"Movie {i}",
        "genre_ids": [28],
        "vote_average": 7.5,
        "vote_count": 900,
        "popularity": 40.0,
        "release_date": "2020-01-01",
    }
    row.update(kw)
    return row


def _client(handler) -> TMDBClient:
    transport = httpx.MockTransport(handler)
    return TMDBClient(
        api_key="k",
        client=httpx.AsyncClient(transport=transport),
        retry_delay=0,
    )


def _page(request: httpx.Request) -> int:
    return int(parse_qs(request.url.query.decode())["page"][0])


def test_discover_url_filters():
    client = TMDBClient(api_key="k")
    movie = client.build_discover_url("movie", 2, 6.0, 100, [28, 35])
    assert "/discover/movie" in movie
    assert "page=2" in movie and "vote_count.gte=100" in movie
    assert "with_genres=28|35" in movie
    assert "without_genres=10770" in movie
    tv = client.build_discover_url("tv", 1, 6.0, 50)
    assert "first_air_date.lte" in tv and "with_genres" not in tv


@pytest.mark.anyio
async def test_fetch_candidates_parses_items():
    def handler(request):
        return httpx.Response(200, json={"results": [_result(1), _result(2, genre_ids=[])]})

    client = _client(handler)
    items = await client.fetch_candidates("movie", [28], page=1)
    assert [i.id for i in items] == [1, 2]
    assert items[0].media_type.value == "movie"
    assert items[1].primary_genre is None
    await client.aclose()


@pytest.mark.anyio
async def test_failed_page_is_retried_on_offset_page():
    seen = []

    def handler(request):
        page = _page(request)
        seen.append(page)
        if page == 1:
            return httpx.Response(500)
        return httpx.Response(200, json={"results": [_result(40)]})

    client = _client(handler)
    items = await client.fetch_candidates("movie", page=1)
    assert [i.id for i in items] == [40]
    assert seen == [1, 1, 1, 4]
    await client.aclose()


@pytest.mark.anyio
async def test_total_failure_returns_empty():
    client = _client(lambda request: httpx.Response(503))
    assert await client.fetch_candidates("tv", page=1) == []
    assert await client.fetch_item("movie", 1) is None
    await client.aclose()


@pytest.mark.anyio
async def test_trending_mixed_keeps_both_kinds_and_limit():
    def handler(request):
        assert "/trending/all/day" in request.url.path
        return httpx.Response(
            200,
            json={
                "results": [
                    _result(1, media_type="movie"),
                    {"id": 2, "name": "Show", "media_type": "tv", "genre_ids": [18]},
                    {"id": 3, "name": "Person", "media_type": "person"},
                ]
            },
        )

    client = _client(handler)
    items = await client.fetch_trending("mixed", limit=3)
    assert [(i.id, i.media_type.value) for i in items] == [(1, "movie"), (2, "tv"), (1, "movie")]
    await client.aclose()


@pytest.mark.anyio
async def test_fetch_items_reads_detail_genres():
    def handler(request):
        mid = int(request.url.path.rsplit("/", 1)[-1])
        return httpx.Response(200, json={"id": mid, "title": "X", "genres": [{"id": 18, "name": "Drama"}]})

    client = _client(handler)
    items = await client.fetch_items([("movie", 5), ("movie", 6)])
    assert [(i.id, i.genre_ids) for i in items] == [(5, [18]), (6, [18])]
    await client.aclose()


def test_genre_filter_maps_per_media_type():
    assert genre_filter(["Action", "Comedy"], "movie") == [28, 35]
    assert genre_filter(["Action", "Adventure"], "tv") == [10759]
    assert genre_filter(["Nope"], "movie") == []


@pytest.mark.anyio
async def test_candidate_source_pulls_extra_page_when_thin():
    pages = []

    def handler(request):
        page = _page(request)
        pages.append((request.url.path, page))
        base = 1000 if "/tv" in request.url.path else 0
        return httpx.Response(200, json={"results": [_result(base + page * 10 + j) for j in range(2)]})

    client = _client(handler)
    source = TMDBCandidateSource(client)
    top = [CategoryScore(genre_id=35, genre_name="Comedy", raw_score=3, effective_score=3, decay_factor=1)]
    items = await source.fetch_candidates(user_id="u1", media_kind="movie", top_categories=top, page=1)

    assert {p for _, p in pages} == {1, 4}
    assert [i.id for i in items] == [10, 40, 11, 41]
    await client.aclose()
