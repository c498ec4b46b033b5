from __future__ import annotations

import asyncio

import pytest

from movista.errors import UpstreamError
from movista.models import Genre
from movista.services.genres import GenreCache, resolve_genre_id


GENRE_MAP = {28: "Action", 35: "Comedy", 10751: "Family"}


def test_resolve_genre_id_ignores_case_and_whitespace():
    assert resolve_genre_id(GENRE_MAP, "action") == 28
    assert resolve_genre_id(GENRE_MAP, "  COMEDY ") == 35


def test_resolve_genre_id_requires_exact_name():
    assert resolve_genre_id(GENRE_MAP, "Act") is None
    assert resolve_genre_id(GENRE_MAP, "Action Comedy") is None
    assert resolve_genre_id(GENRE_MAP, "") is None
    assert resolve_genre_id({}, "Action") is None


@pytest.mark.anyio("asyncio")
async def test_cache_loads_each_media_type_once():
    calls: list[str] = []

    async def loader(media_type):
        calls.append(media_type)
        await asyncio.sleep(0)
        return [Genre(id=28, name="Action"), Genre(id=35, name="Comedy")]

    cache = GenreCache()
    results = await asyncio.gather(*(cache.get_or_load("movie", loader) for _ in range(5)))
    again = await cache.get_or_load("movie", loader)

    assert all(result == {28: "Action", 35: "Comedy"} for result in results)
    assert again == {28: "Action", 35: "Comedy"}
    assert calls == ["movie"]
    assert cache.peek("movie") == {28: "Action", 35: "Comedy"}
    assert cache.peek("tv") is None


@pytest.mark.anyio("asyncio")
async def test_cache_does_not_keep_failures():
    attempts = 0

    async def loader(media_type):
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            raise UpstreamError(503, "Service unavailable")
        return [Genre(id=18, name="Drama")]

    cache = GenreCache()

    assert await cache.get_or_load("tv", loader) == {}
    assert cache.peek("tv") is None
    assert await cache.get_or_load("tv", loader) == {18: "Drama"}
    assert attempts == 2


@pytest.mark.anyio("asyncio")
async def test_clear_forces_a_reload():
    calls = 0

    async def loader(media_type):
        nonlocal calls
        calls += 1
        return [Genre(id=28, name="Action")]

    cache = GenreCache()
    await cache.get_or_load("movie", loader)
    cache.clear()
    await cache.get_or_load("movie", loader)

    assert calls == 2
