from __future__ import annotations

import asyncio
from datetime import date
from typing import Any, Callable

import httpx
import pytest

from movista.config import Settings
from movista.errors import UpstreamError
from movista.models import MediaItem, MovieSuggestion, SearchResultPage
from movista.services.aggregator import (
    DiscoveryService,
    cap_total_pages,
    combine_by_genre,
    filter_displayable,
    sort_results,
)
from movista.services.tmdb import TMDBClient

BASE_URL = "https://api.themoviedb.org/3"

MOVIE_GENRES = {"genres": [{"id": 28, "name": "Action"}, {"id": 35, "name": "Comedy"}]}
TV_GENRES = {"genres": [{"id": 10759, "name": "Action & Adventure"}, {"id": 35, "name": "Comedy"}]}


def _item(media_type: str, media_id: int, **fields: Any) -> MediaItem:
    fields.setdefault("title", f"{media_type}-{media_id}")
    fields.setdefault("poster_path", f"/{media_type}-{media_id}.jpg")
    return MediaItem(id=media_id, media_type=media_type, **fields)


def _page(*items: MediaItem, total_pages: int = 1, total_results: int | None = None) -> SearchResultPage:
    return SearchResultPage(
        results=list(items),
        total_pages=total_pages,
        current_page=1,
        total_results=len(items) if total_results is None else total_results,
    )


def _service(
    routes: dict[str, Callable[[httpx.Request], httpx.Response]],
    requests: list[httpx.Request] | None = None,
) -> tuple[DiscoveryService, httpx.AsyncClient]:
    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        path = request.url.path.removeprefix("/3")
        route = routes.get(path)
        if route is None:
            return httpx.Response(404, json={"status_message": f"No route for {path}"})
        return route(request)

    http_client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url=BASE_URL
    )
    settings = Settings(_env_file=None, TMDB_API_KEY="tmdb-key")  # type: ignore[arg-type]
    return DiscoveryService(TMDBClient(settings, http_client)), http_client


def _json(payload: dict[str, Any]) -> Callable[[httpx.Request], httpx.Response]:
    return lambda _: httpx.Response(200, json=payload)


def test_combine_orders_by_popularity_and_keeps_both_types():
    movie_page = _page(_item("movie", 1, popularity=10.0), total_pages=3, total_results=50)
    tv_page = _page(_item("tv", 1, popularity=20.0), total_pages=5, total_results=90)

    combined = combine_by_genre(movie_page, tv_page)

    assert [item.key for item in combined.results] == [("tv", 1), ("movie", 1)]
    assert combined.total_pages == 5
    assert combined.total_results == 140
    assert combined.current_page == 1


def test_combine_keeps_upstream_order_for_equal_popularity():
    movie_page = _page(
        _item("movie", 1, popularity=5.0),
        _item("movie", 2, popularity=5.0),
    )
    tv_page = _page(_item("tv", 3, popularity=5.0))

    combined = combine_by_genre(movie_page, tv_page, page=2)

    assert [item.id for item in combined.results] == [1, 2, 3]
    assert combined.current_page == 2


def test_sort_by_title_ascending_ignores_case():
    items = [_item("movie", 1, title="Zeta"), _item("movie", 2, title="alpha")]

    ordered = sort_results(items, "title", "asc")

    assert [item.title for item in ordered] == ["alpha", "Zeta"]


def test_sort_by_release_date_treats_missing_dates_as_oldest():
    items = [
        _item("movie", 1, release_date=None),
        _item("movie", 2, release_date=date(2001, 5, 1)),
        _item("tv", 3, release_date=date(1990, 1, 1)),
    ]

    newest_first = sort_results(items, "release_date", "desc")
    oldest_first = sort_results(items, "release_date", "asc")

    assert [item.id for item in newest_first] == [2, 3, 1]
    assert [item.id for item in oldest_first] == [1, 3, 2]


def test_sorting_title_ordered_items_by_date_is_repeatable():
    items = sort_results(
        [
            _item("movie", 1, title="Heat", release_date=date(1995, 12, 15)),
            _item("movie", 2, title="Alien"),
            _item("tv", 3, title="Fargo", release_date=date(1995, 12, 15)),
            _item("movie", 4, title="Brazil"),
        ],
        "title",
        "asc",
    )

    first = sort_results(items, "release_date", "desc")
    second = sort_results(items, "release_date", "desc")

    assert first == second
    assert [item.title for item in first] == ["Fargo", "Heat", "Alien", "Brazil"]


def test_sort_by_rating_is_stable_for_ties():
    items = [
        _item("movie", 1, vote_average=7.0),
        _item("movie", 2, vote_average=9.0),
        _item("movie", 3, vote_average=7.0),
        _item("movie", 4),
    ]

    descending = sort_results(items, "vote_average", "desc")
    ascending = sort_results(items, "vote_average", "asc")

    assert [item.id for item in descending] == [2, 1, 3, 4]
    assert [item.id for item in ascending] == [4, 1, 3, 2]


def test_relevance_keeps_upstream_order():
    items = [_item("movie", 3), _item("tv", 1), _item("movie", 2)]

    assert sort_results(items, "relevance", "asc") == items
    assert sort_results(items, "relevance", "desc") == items


def test_unknown_sort_key_is_rejected():
    with pytest.raises(ValueError):
        sort_results([_item("movie", 1)], "runtime")  # type: ignore[arg-type]


def test_filter_displayable_drops_items_without_posters():
    items = [_item("movie", 1), _item("tv", 2, poster_path=None), _item("tv", 3, poster_path="")]

    assert [item.key for item in filter_displayable(items)] == [("movie", 1)]


def test_cap_total_pages():
    assert cap_total_pages(12) == 12
    assert cap_total_pages(40_000) == 500
    assert cap_total_pages(-1) == 0


@pytest.mark.anyio("asyncio")
async def test_search_by_unknown_genre_is_empty_without_discover_calls():
    requests: list[httpx.Request] = []
    service, http_client = _service(
        {"/genre/movie/list": _json(MOVIE_GENRES), "/genre/tv/list": _json(TV_GENRES)},
        requests,
    )
    async with http_client:
        page = await service.search(genre="Documentary")

    assert page.results == []
    assert page.total_pages == 0
    assert all("/discover/" not in request.url.path for request in requests)


@pytest.mark.anyio("asyncio")
async def test_search_by_genre_merges_matching_types():
    requests: list[httpx.Request] = []
    service, http_client = _service(
        {
            "/genre/movie/list": _json(MOVIE_GENRES),
            "/genre/tv/list": _json(TV_GENRES),
            "/discover/movie": _json(
                {
                    "page": 1,
                    "total_pages": 2,
                    "total_results": 30,
                    "results": [
                        {"id": 1, "title": "Airplane!", "poster_path": "/a.jpg", "popularity": 10},
                        {"id": 2, "title": "No Poster", "poster_path": None, "popularity": 99},
                    ],
                }
            ),
            "/discover/tv": _json(
                {
                    "page": 1,
                    "total_pages": 4,
                    "total_results": 60,
                    "results": [
                        {"id": 1, "name": "Seinfeld", "poster_path": "/s.jpg", "popularity": 20}
                    ],
                }
            ),
        },
        requests,
    )
    async with http_client:
        page = await service.search(genre="comedy")

    assert [item.key for item in page.results] == [("tv", 1), ("movie", 1)]
    assert page.total_pages == 4
    assert page.total_results == 90
    discover_params = {
        request.url.path: request.url.params
        for request in requests
        if "/discover/" in request.url.path
    }
    assert discover_params["/3/discover/movie"]["with_genres"] == "35"
    assert discover_params["/3/discover/tv"]["with_genres"] == "35"
    assert discover_params["/3/discover/tv"]["sort_by"] == "popularity.desc"


@pytest.mark.anyio("asyncio")
async def test_search_by_genre_known_to_one_type_only():
    service, http_client = _service(
        {
            "/genre/movie/list": _json(MOVIE_GENRES),
            "/genre/tv/list": _json(TV_GENRES),
            "/discover/movie": _json(
                {
                    "page": 1,
                    "total_pages": 1,
                    "total_results": 1,
                    "results": [{"id": 7, "title": "Speed", "poster_path": "/s.jpg"}],
                }
            ),
        }
    )
    async with http_client:
        page = await service.search(genre="Action")

    assert [item.key for item in page.results] == [("movie", 7)]


@pytest.mark.anyio("asyncio")
async def test_text_search_caps_pages_filters_and_sorts():
    service, http_client = _service(
        {
            "/search/multi": _json(
                {
                    "page": 1,
                    "total_pages": 912,
                    "total_results": 18_000,
                    "results": [
                        {"id": 1, "media_type": "movie", "title": "Zeta", "poster_path": "/z.jpg"},
                        {"id": 2, "media_type": "person", "name": "Alpha Person"},
                        {"id": 3, "media_type": "tv", "name": "alpha", "poster_path": "/a.jpg"},
                        {"id": 4, "media_type": "movie", "title": "Beta", "poster_path": None},
                    ],
                }
            )
        }
    )
    async with http_client:
        page = await service.search(query="a", sort_by="title", sort_order="asc")

    assert [item.title for item in page.results] == ["alpha", "Zeta"]
    assert page.total_pages == 500
    assert page.total_results == 18_000


@pytest.mark.anyio("asyncio")
async def test_same_query_returns_same_order():
    payload = {
        "page": 1,
        "total_pages": 1,
        "total_results": 3,
        "results": [
            {"id": i, "media_type": "movie", "title": "Same", "poster_path": "/p.jpg"}
            for i in (5, 3, 9)
        ],
    }
    service, http_client = _service({"/search/multi": _json(payload)})
    async with http_client:
        first = await service.search(query="same", sort_by="title")
        second = await service.search(query="same", sort_by="title")

    assert [item.id for item in first.results] == [item.id for item in second.results] == [5, 3, 9]


@pytest.mark.anyio("asyncio")
async def test_empty_search_makes_no_requests():
    requests: list[httpx.Request] = []
    service, http_client = _service({}, requests)
    async with http_client:
        page = await service.search(query="   ", genre="")

    assert page.results == []
    assert requests == []


@pytest.mark.anyio("asyncio")
async def test_load_home_slices_rows():
    def listing(media_type: str, count: int):
        results = [
            {"id": i, "title" if media_type == "movie" else "name": f"{media_type} {i}"}
            for i in range(count)
        ]
        return _json({"page": 1, "total_pages": 1, "total_results": count, "results": results})

    service, http_client = _service(
        {
            "/trending/movie/day": listing("movie", 20),
            "/trending/tv/day": listing("tv", 20),
            "/movie/popular": listing("movie", 20),
            "/tv/popular": listing("tv", 20),
            "/genre/movie/list": _json(MOVIE_GENRES),
            "/genre/tv/list": _json(TV_GENRES),
        }
    )
    async with http_client:
        feed = await service.load_home()

    assert len(feed.trending_movies) == 10
    assert len(feed.trending_tv) == 10
    assert len(feed.popular_movies) == 8
    assert len(feed.popular_tv) == 8
    assert feed.trending_tv[0].media_type == "tv"
    assert feed.movie_genres == {28: "Action", 35: "Comedy"}


@pytest.mark.anyio("asyncio")
async def test_load_home_fails_when_one_row_fails():
    empty = _json({"page": 1, "total_pages": 1, "total_results": 0, "results": []})
    service, http_client = _service(
        {
            "/trending/movie/day": empty,
            "/trending/tv/day": lambda _: httpx.Response(
                500, json={"status_message": "Internal error."}
            ),
            "/movie/popular": empty,
            "/tv/popular": empty,
            "/genre/movie/list": _json(MOVIE_GENRES),
            "/genre/tv/list": _json(TV_GENRES),
        }
    )
    async with http_client:
        with pytest.raises(UpstreamError) as excinfo:
            await service.load_home()

    assert excinfo.value.status_code == 500


@pytest.mark.anyio("asyncio")
async def test_popular_page_past_the_end_is_not_found():
    service, http_client = _service(
        {
            "/movie/popular": _json(
                {"page": 9, "total_pages": 8, "total_results": 160, "results": []}
            ),
            "/genre/movie/list": _json(MOVIE_GENRES),
        }
    )
    async with http_client:
        with pytest.raises(UpstreamError) as excinfo:
            await service.popular_page("movie", 9)
        with pytest.raises(ValueError):
            await service.popular_page("movie", 0)

    assert excinfo.value.is_not_found


@pytest.mark.anyio("asyncio")
async def test_popular_page_bundles_genres_and_caps_pages():
    service, http_client = _service(
        {
            "/tv/popular": _json(
                {
                    "page": 2,
                    "total_pages": 7_000,
                    "total_results": 140_000,
                    "results": [{"id": 1399, "name": "Game of Thrones", "genre_ids": [10759]}],
                }
            ),
            "/genre/tv/list": _json(TV_GENRES),
        }
    )
    async with http_client:
        listing = await service.popular_page("tv", 2)

    assert listing.total_pages == 500
    assert listing.current_page == 2
    assert listing.genres[10759] == "Action & Adventure"
    assert listing.results[0].media_type == "tv"


@pytest.mark.anyio("asyncio")
async def test_attach_matches_survives_failed_lookups():
    def search_movie(request: httpx.Request) -> httpx.Response:
        if request.url.params["query"] == "Broken":
            return httpx.Response(500, json={"status_message": "Internal error."})
        return httpx.Response(
            200,
            json={
                "page": 1,
                "total_pages": 1,
                "total_results": 1,
                "results": [
                    {
                        "id": 11,
                        "title": "Star Wars",
                        "release_date": "1977-05-25",
                        "poster_path": "/sw.jpg",
                    }
                ],
            },
        )

    service, http_client = _service({"/search/movie": search_movie})
    suggestions = [
        MovieSuggestion(title="Star Wars", year=1977),
        MovieSuggestion(title="Broken", year=2000),
    ]
    async with http_client:
        matched = await service.attach_matches(suggestions)

    assert matched[0].match is not None and matched[0].match.id == 11
    assert matched[1].match is None
    assert matched[1].title == "Broken"


def test_discovery_service_exposes_client():
    async def runner() -> None:
        service, http_client = _service({})
        async with http_client:
            assert isinstance(service.tmdb, TMDBClient)

    asyncio.run(runner())
