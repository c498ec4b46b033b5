"""Key-value ports backing the favorites mirror."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .db_models import KeyValueEntry
from .errors import PersistenceReadError, PersistenceWriteError

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Get, set and remove a string blob under a key."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def remove(self, key: str) -> None: ...


class MemoryKeyValueStore:
    """Process-local store, mostly useful for tests."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self.data[key] = value

    async def remove(self, key: str) -> None:
        self.data.pop(key, None)


class JsonFileKeyValueStore:
    """All keys kept in one JSON object file, rewritten on every change."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    async def get(self, key: str) -> str | None:
        async with self._lock:
            data = await asyncio.to_thread(self._read)
        value = data.get(key)
        return value if isinstance(value, str) else None

    async def set(self, key: str, value: str) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._read_for_update)
            data[key] = value
            await asyncio.to_thread(self._write, data)

    async def remove(self, key: str) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._read_for_update)
            if data.pop(key, None) is not None:
                await asyncio.to_thread(self._write, data)

    def _read(self) -> dict[str, object]:
        if not self._path.exists():
            return {}
        try:
            contents = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            raise PersistenceReadError(f"Could not read {self._path}: {exc}") from exc
        except UnicodeDecodeError as exc:
            raise PersistenceReadError(f"{self._path} is not valid UTF-8") from exc
        if not contents.strip():
            return {}
        try:
            data = json.loads(contents)
        except json.JSONDecodeError as exc:
            raise PersistenceReadError(f"{self._path} is not valid JSON") from exc
        if not isinstance(data, dict):
            raise PersistenceReadError(f"{self._path} does not hold a JSON object")
        return data

    def _read_for_update(self) -> dict[str, object]:
        # A corrupt file must not block writes; it is replaced wholesale.
        try:
            return self._read()
        except PersistenceReadError as exc:
            logger.warning("Replacing unreadable store file: %s", exc)
            return {}

    def _write(self, data: dict[str, object]) -> None:
        temp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            temp_path.write_text(json.dumps(data), encoding="utf-8")
            temp_path.replace(self._path)
        except OSError as exc:
            raise PersistenceWriteError(f"Could not write {self._path}: {exc}") from exc


class DatabaseKeyValueStore:
    """Store entries in the ``kv_entries`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, key: str) -> str | None:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(KeyValueEntry.value).where(KeyValueEntry.key == key)
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise PersistenceReadError(f"Could not read {key!r}: {exc}") from exc

    async def set(self, key: str, value: str) -> None:
        try:
            async with self._session_factory() as session:
                entry = await session.get(KeyValueEntry, key)
                if entry is None:
                    session.add(KeyValueEntry(key=key, value=value))
                else:
                    entry.value = value
                await session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceWriteError(f"Could not write {key!r}: {exc}") from exc

    async def remove(self, key: str) -> None:
        try:
            async with self._session_factory() as session:
                entry = await session.get(KeyValueEntry, key)
                if entry is not None:
                    await session.delete(entry)
                    await session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceWriteError(f"Could not remove {key!r}: {exc}") from exc
