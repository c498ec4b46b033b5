"""Genre maps and genre-name resolution."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Mapping

from ..errors import MovistaError
from ..models import Genre, MediaType

logger = logging.getLogger(__name__)

GenreLoader = Callable[[MediaType], Awaitable[list[Genre]]]


class GenreCache:
    """Memoized ``{id: name}`` maps, one per media type.

    Maps never expire: the first caller for a media type pays for the fetch
    and every later caller reuses the result. Concurrent first callers share
    a single fetch. Failed fetches are not cached.
    """

    def __init__(self) -> None:
        self._maps: dict[str, dict[int, str]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def peek(self, media_type: MediaType) -> dict[int, str] | None:
        return self._maps.get(media_type)

    def clear(self) -> None:
        self._maps.clear()

    async def get_or_load(
        self, media_type: MediaType, loader: GenreLoader
    ) -> dict[int, str]:
        cached = self._maps.get(media_type)
        if cached is not None:
            return cached

        lock = self._locks.setdefault(media_type, asyncio.Lock())
        async with lock:
            cached = self._maps.get(media_type)
            if cached is not None:
                return cached
            try:
                genres = await loader(media_type)
            except MovistaError as exc:
                logger.warning("Failed to load %s genre map: %s", media_type, exc)
                return {}
            genre_map = {genre.id: genre.name for genre in genres}
            self._maps[media_type] = genre_map
            return genre_map


def resolve_genre_id(genre_map: Mapping[int, str], genre_name: str) -> int | None:
    """Return the id whose name equals ``genre_name`` ignoring case.

    Only exact matches count; there is no fuzzy or partial matching.
    """

    target = (genre_name or "").strip().casefold()
    if not target:
        return None
    for genre_id, name in genre_map.items():
        if name.casefold() == target:
            return genre_id
    return None
