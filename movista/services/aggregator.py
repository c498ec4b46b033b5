"""Merging, sorting and page-count handling for catalog results."""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from typing import Any, Callable, Iterable, Sequence

from ..errors import MovistaError, UpstreamError
from ..models import (
    MEDIA_TYPES,
    HomeFeed,
    ListingPage,
    MediaDetails,
    MediaItem,
    MediaType,
    MovieSuggestion,
    SearchResultPage,
    SortBy,
    SortOrder,
    TimeWindow,
)
from .tmdb import TMDBClient

logger = logging.getLogger(__name__)

MAX_TOTAL_PAGES = 500
MISSING_RELEASE_DATE = date(1900, 1, 1)
HOME_TRENDING_LIMIT = 10
HOME_POPULAR_LIMIT = 8

_SORT_KEYS: dict[str, Callable[[MediaItem], Any]] = {
    "title": lambda item: item.title.casefold(),
    "release_date": lambda item: item.release_date or MISSING_RELEASE_DATE,
    "vote_average": lambda item: item.vote_average or 0.0,
}


def cap_total_pages(total_pages: int) -> int:
    """Bound a reported page count to what the catalog actually serves."""

    return max(0, min(total_pages, MAX_TOTAL_PAGES))


def filter_displayable(items: Iterable[MediaItem]) -> list[MediaItem]:
    """Keep movies and shows that have a poster image."""

    return [
        item
        for item in items
        if item.media_type in MEDIA_TYPES and item.poster_path
    ]


def dedupe_items(items: Iterable[MediaItem]) -> list[MediaItem]:
    seen: set[tuple[str, int]] = set()
    unique: list[MediaItem] = []
    for item in items:
        if item.key in seen:
            continue
        seen.add(item.key)
        unique.append(item)
    return unique


def combine_by_genre(
    movie_page: SearchResultPage, tv_page: SearchResultPage, *, page: int = 1
) -> SearchResultPage:
    """Merge discover results for movies and shows into one page.

    Items are ordered by popularity, highest first, keeping upstream order for
    ties. Page counts are an approximation: the larger of the two page counts
    and the sum of both result counts. Beyond page 1 the combined page does not
    line up with either source.
    """

    tagged = [item.model_copy(update={"media_type": "movie"}) for item in movie_page.results]
    tagged += [item.model_copy(update={"media_type": "tv"}) for item in tv_page.results]
    combined = sorted(dedupe_items(tagged), key=lambda item: item.popularity, reverse=True)
    return SearchResultPage(
        results=combined,
        total_pages=max(movie_page.total_pages, tv_page.total_pages),
        current_page=page,
        total_results=movie_page.total_results + tv_page.total_results,
    )


def sort_results(
    items: Sequence[MediaItem], sort_by: SortBy = "relevance", sort_order: SortOrder = "desc"
) -> list[MediaItem]:
    """Return ``items`` sorted by the requested key.

    ``relevance`` keeps upstream order whatever the sort order. Sorting is
    stable in both directions.
    """

    if sort_by == "relevance":
        return list(items)
    try:
        key = _SORT_KEYS[sort_by]
    except KeyError:
        raise ValueError(f"Unsupported sort key: {sort_by}") from None
    return sorted(items, key=key, reverse=sort_order == "desc")


class DiscoveryService:
    """Page-level flows built on top of the TMDB client."""

    def __init__(self, tmdb: TMDBClient):
        self._tmdb = tmdb

    @property
    def tmdb(self) -> TMDBClient:
        return self._tmdb

    async def load_home(self) -> HomeFeed:
        """Load every row of the landing view; any failure fails the view."""

        (
            trending_movies,
            trending_tv,
            popular_movies,
            popular_tv,
            movie_genres,
            tv_genres,
        ) = await asyncio.gather(
            self._tmdb.fetch_trending("movie", "day"),
            self._tmdb.fetch_trending("tv", "day"),
            self._tmdb.fetch_popular("movie", 1),
            self._tmdb.fetch_popular("tv", 1),
            self._tmdb.get_genre_map("movie"),
            self._tmdb.get_genre_map("tv"),
        )
        return HomeFeed(
            trending_movies=trending_movies.results[:HOME_TRENDING_LIMIT],
            trending_tv=trending_tv.results[:HOME_TRENDING_LIMIT],
            popular_movies=popular_movies.results[:HOME_POPULAR_LIMIT],
            popular_tv=popular_tv.results[:HOME_POPULAR_LIMIT],
            movie_genres=movie_genres,
            tv_genres=tv_genres,
        )

    async def trending_page(
        self, media_type: MediaType, window: TimeWindow = "day", page: int = 1
    ) -> ListingPage:
        result, genres = await asyncio.gather(
            self._tmdb.fetch_trending(media_type, window, page),
            self._tmdb.get_genre_map(media_type),
        )
        return self._listing(result, genres)

    async def popular_page(self, media_type: MediaType, page: int = 1) -> ListingPage:
        if page < 1:
            raise ValueError("Page numbers start at 1")
        result, genres = await asyncio.gather(
            self._tmdb.fetch_popular(media_type, page),
            self._tmdb.get_genre_map(media_type),
        )
        if not result.results and page > 1:
            raise UpstreamError(404, f"Page {page} is past the last page")
        return self._listing(result, genres)

    async def search(
        self,
        *,
        query: str | None = None,
        genre: str | None = None,
        page: int = 1,
        sort_by: SortBy = "relevance",
        sort_order: SortOrder = "desc",
    ) -> SearchResultPage:
        """Run a genre discover or free-text search and prepare it for display.

        A genre takes precedence over a text query. An unknown genre yields an
        empty page for that media type rather than an error.
        """

        genre = (genre or "").strip()
        query = (query or "").strip()
        if genre:
            movie_page, tv_page = await asyncio.gather(
                self._discover_by_genre_name("movie", genre, page),
                self._discover_by_genre_name("tv", genre, page),
            )
            result = combine_by_genre(movie_page, tv_page, page=page)
        elif query:
            result = await self._tmdb.fetch_search(query, page)
        else:
            return SearchResultPage.empty(page)

        visible = sort_results(filter_displayable(result.results), sort_by, sort_order)
        return result.model_copy(
            update={
                "results": visible,
                "total_pages": cap_total_pages(result.total_pages),
            }
        )

    async def details(self, media_type: MediaType, media_id: int) -> MediaDetails:
        return await self._tmdb.fetch_details(media_type, media_id)

    async def attach_matches(
        self, suggestions: Sequence[MovieSuggestion]
    ) -> list[MovieSuggestion]:
        """Look each suggested title up in the catalog.

        Lookups that fail leave ``match`` empty; they never fail the batch.
        """

        async def _lookup(suggestion: MovieSuggestion) -> MovieSuggestion:
            try:
                match = await self._tmdb.find_best_match(
                    suggestion.title, year=suggestion.year
                )
            except MovistaError as exc:
                logger.warning("Catalog lookup failed for %s: %s", suggestion.title, exc)
                return suggestion
            if match is None:
                return suggestion
            return suggestion.model_copy(update={"match": match})

        return list(await asyncio.gather(*(_lookup(item) for item in suggestions)))

    async def _discover_by_genre_name(
        self, media_type: MediaType, genre_name: str, page: int
    ) -> SearchResultPage:
        genre_id = await self._tmdb.resolve_genre_id(media_type, genre_name)
        if genre_id is None:
            logger.info("No %s genre named %r", media_type, genre_name)
            return SearchResultPage.empty(page)
        return await self._tmdb.discover(media_type, genre_id, page)

    @staticmethod
    def _listing(result: SearchResultPage, genres: dict[int, str]) -> ListingPage:
        return ListingPage(
            results=result.results,
            total_pages=cap_total_pages(result.total_pages),
            current_page=result.current_page,
            total_results=result.total_results,
            genres=genres,
        )
