"""Favorited movies and shows with a write-through local mirror."""

from __future__ import annotations

import json
import logging

from pydantic import TypeAdapter, ValidationError

from ..errors import PersistenceReadError, PersistenceWriteError
from ..models import MAX_LIKED_TITLES, FavoriteItem, MediaType
from ..storage import KeyValueStore
from ..utils import unique_titles

logger = logging.getLogger(__name__)

FAVORITES_KEY = "movista-favorites"

_FAVORITES_ADAPTER = TypeAdapter(list[FavoriteItem])


class FavoritesStore:
    """Canonical in-memory favorites, mirrored to a key-value store.

    The mirror is read once by :meth:`load`. Afterwards every mutation
    rewrites it in full. Read and write failures are logged and never reach
    the caller: a broken mirror loads as an empty list and a failed write
    leaves the in-memory state as it is.
    """

    def __init__(self, backend: KeyValueStore, *, key: str = FAVORITES_KEY) -> None:
        self._backend = backend
        self._key = key
        self._items: list[FavoriteItem] = []
        self._loaded = False

    @property
    def loaded(self) -> bool:
        return self._loaded

    async def load(self) -> list[FavoriteItem]:
        try:
            raw = await self._backend.get(self._key)
            items = self._parse(raw)
        except (PersistenceReadError, ValueError) as exc:
            logger.warning("Error loading favorites from local storage: %s", exc)
            items = []
        self._items = items
        self._loaded = True
        return self.all()

    def all(self) -> list[FavoriteItem]:
        return list(self._items)

    def contains(self, media_id: int, media_type: MediaType) -> bool:
        return self.get(media_id, media_type) is not None

    def get(self, media_id: int, media_type: MediaType) -> FavoriteItem | None:
        for item in self._items:
            if item.id == media_id and item.media_type == media_type:
                return item
        return None

    async def add(self, item: FavoriteItem) -> bool:
        """Append ``item`` unless it is already a favorite."""

        if self.contains(item.id, item.media_type):
            return False
        self._items.append(item)
        await self._persist()
        return True

    async def remove(self, media_id: int, media_type: MediaType) -> bool:
        remaining = [
            item
            for item in self._items
            if not (item.id == media_id and item.media_type == media_type)
        ]
        if len(remaining) == len(self._items):
            return False
        self._items = remaining
        await self._persist()
        return True

    def liked_titles(self, limit: int = MAX_LIKED_TITLES) -> list[str]:
        """Favorites as ``Title (Year)`` labels, oldest favorite first."""

        return unique_titles((item.label() for item in self._items), limit=limit)

    async def _persist(self) -> None:
        if not self._loaded:
            return
        payload = json.dumps(
            _FAVORITES_ADAPTER.dump_python(self._items, mode="json", by_alias=True)
        )
        try:
            await self._backend.set(self._key, payload)
        except PersistenceWriteError as exc:
            logger.warning("Error saving favorites to local storage: %s", exc)

    @staticmethod
    def _parse(raw: str | None) -> list[FavoriteItem]:
        if raw is None or not raw.strip():
            return []
        try:
            return _FAVORITES_ADAPTER.validate_json(raw)
        except ValidationError as exc:
            raise ValueError(f"Stored favorites are corrupt: {exc.error_count()} errors") from exc
