"""Client for The Movie Database (TMDB) catalog API."""

from __future__ import annotations

import logging
from typing import Any, Iterable

import httpx

from ..config import Settings
from ..errors import MissingCredentialError, UpstreamError, UpstreamTimeoutError
from ..models import (
    Genre,
    MediaDetails,
    MediaItem,
    MediaType,
    SearchResultPage,
    TimeWindow,
)
from .genres import GenreCache, resolve_genre_id

logger = logging.getLogger(__name__)

DEFAULT_DETAIL_SECTIONS: tuple[str, ...] = ("videos", "release_dates", "content_ratings")


class TMDBClient:
    """Single point of contact with the TMDB REST API."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        *,
        genre_cache: GenreCache | None = None,
    ):
        self._settings = settings
        self._client = http_client
        self._genres = genre_cache if genre_cache is not None else GenreCache()

    async def fetch_trending(
        self, media_type: MediaType, window: TimeWindow = "day", page: int = 1
    ) -> SearchResultPage:
        payload = await self._get(f"/trending/{media_type}/{window}", page=page)
        return SearchResultPage.from_payload(payload, media_type=media_type)

    async def fetch_popular(self, media_type: MediaType, page: int = 1) -> SearchResultPage:
        payload = await self._get(f"/{media_type}/popular", page=page)
        return SearchResultPage.from_payload(payload, media_type=media_type)

    async def fetch_details(
        self,
        media_type: MediaType,
        media_id: int,
        append: Iterable[str] = DEFAULT_DETAIL_SECTIONS,
    ) -> MediaDetails:
        sections = [section for section in append if section]
        # Rating blocks are type specific; TMDB rejects the other one silently.
        if media_type == "movie":
            sections = [section for section in sections if section != "content_ratings"]
        else:
            sections = [section for section in sections if section != "release_dates"]
        params: dict[str, Any] = {}
        if sections:
            params["append_to_response"] = ",".join(sections)
        payload = await self._get(f"/{media_type}/{media_id}", **params)
        image_base = str(self._settings.tmdb_image_base_url)
        return MediaDetails.model_validate(
            {
                **payload,
                "media_type": media_type,
                "poster_url": build_image_url(image_base, payload.get("poster_path")),
                "backdrop_url": build_image_url(
                    image_base, payload.get("backdrop_path"), "original"
                ),
            }
        )

    async def fetch_search(self, query: str, page: int = 1) -> SearchResultPage:
        """Multi-search across movies, shows and people."""

        payload = await self._get(
            "/search/multi", query=query, page=page, include_adult="false"
        )
        return SearchResultPage.from_payload(payload)

    async def fetch_genre_list(self, media_type: MediaType) -> list[Genre]:
        payload = await self._get(f"/genre/{media_type}/list")
        genres: list[Genre] = []
        for entry in payload.get("genres") or []:
            if not isinstance(entry, dict):
                continue
            if entry.get("id") is None or not entry.get("name"):
                continue
            genres.append(Genre(id=int(entry["id"]), name=str(entry["name"])))
        return genres

    async def get_genre_map(self, media_type: MediaType) -> dict[int, str]:
        """Return the memoized ``{id: name}`` map for ``media_type``."""

        return await self._genres.get_or_load(media_type, self.fetch_genre_list)

    async def resolve_genre_id(self, media_type: MediaType, genre_name: str) -> int | None:
        genre_map = await self.get_genre_map(media_type)
        return resolve_genre_id(genre_map, genre_name)

    async def discover(
        self, media_type: MediaType, genre_id: int, page: int = 1
    ) -> SearchResultPage:
        payload = await self._get(
            f"/discover/{media_type}",
            with_genres=genre_id,
            page=page,
            sort_by="popularity.desc",
        )
        return SearchResultPage.from_payload(payload, media_type=media_type)

    async def find_best_match(
        self, title: str, *, year: int | None = None, media_type: MediaType = "movie"
    ) -> MediaItem | None:
        """Return the best search match for the supplied title."""

        params: dict[str, Any] = {"query": title, "include_adult": "false", "page": 1}
        if year:
            if media_type == "movie":
                params["year"] = year
            else:
                params["first_air_date_year"] = year
        payload = await self._get(f"/search/{media_type}", **params)
        results = SearchResultPage.from_payload(payload, media_type=media_type).results
        if not results:
            return None

        normalized_title = title.casefold()
        best_match: MediaItem | None = None
        for candidate in results:
            candidate_year = candidate.release_date.year if candidate.release_date else None
            if candidate.title.casefold() == normalized_title:
                if year is None or candidate_year == year:
                    best_match = candidate
                    break
            if best_match is None:
                best_match = candidate
            elif year is not None and candidate_year == year:
                best_match = candidate
        return best_match

    async def _get(self, endpoint: str, **params: Any) -> dict[str, Any]:
        api_key = self._settings.tmdb_api_key
        if not api_key:
            raise MissingCredentialError("TMDB API key is missing")

        query: dict[str, Any] = {
            "api_key": api_key,
            "language": self._settings.tmdb_language,
        }
        query.update({key: value for key, value in params.items() if value is not None})

        try:
            response = await self._client.get(endpoint, params=query)
        except httpx.TimeoutException as exc:
            logger.error("TMDB request to %s timed out", endpoint)
            raise UpstreamTimeoutError(f"TMDB request to {endpoint} timed out") from exc
        except httpx.HTTPError as exc:
            logger.error("TMDB request to %s failed: %s", endpoint, exc)
            raise UpstreamError(None, f"Failed to reach TMDB: {exc}") from exc

        if response.status_code >= 400:
            message = self._error_message(response)
            logger.error(
                "TMDB API error (%s) for %s: %s", response.status_code, endpoint, message
            )
            raise UpstreamError(response.status_code, message)

        try:
            data = response.json()
        except ValueError as exc:
            logger.error("TMDB returned a non-JSON body for %s", endpoint)
            raise UpstreamError(response.status_code, "Invalid JSON from TMDB") from exc
        if not isinstance(data, dict):
            raise UpstreamError(response.status_code, "Unexpected TMDB response shape")
        return data

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        fallback = f"Failed to fetch data from TMDB: {response.status_code}"
        try:
            payload = response.json()
        except ValueError:
            return fallback
        if isinstance(payload, dict):
            message = payload.get("status_message")
            if isinstance(message, str) and message.strip():
                return message.strip()
        return fallback


def build_image_url(base_url: str, path: str | None, size: str = "w500") -> str | None:
    """Return the absolute image URL for a catalog image path."""

    if not isinstance(path, str) or not path:
        return None
    if path.startswith("http"):
        return path
    return f"{base_url.rstrip('/')}/{size}{path}"
