"""Debounced, cancellable query-as-you-type suggestions."""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from pydantic import BaseModel, Field

from ..models import MediaItem, SearchResultPage
from .aggregator import filter_displayable

logger = logging.getLogger(__name__)

MIN_QUERY_LENGTH = 2

SearchFunction = Callable[[str], Awaitable[SearchResultPage]]


class TypeaheadState(str, enum.Enum):
    IDLE = "idle"
    DEBOUNCING = "debouncing"
    FETCHING = "fetching"
    RESOLVED = "resolved"
    FAILED = "failed"


class TypeaheadMode(str, enum.Enum):
    SEARCH = "search"
    PICKER = "picker"


@dataclass(frozen=True)
class TypeaheadProfile:
    """Fixed timing and sizing for one kind of input field."""

    mode: TypeaheadMode
    debounce_seconds: float
    limit: int


SEARCH_BAR = TypeaheadProfile(TypeaheadMode.SEARCH, debounce_seconds=0.3, limit=7)
MEDIA_PICKER = TypeaheadProfile(TypeaheadMode.PICKER, debounce_seconds=0.5, limit=10)

PROFILES: dict[TypeaheadMode, TypeaheadProfile] = {
    SEARCH_BAR.mode: SEARCH_BAR,
    MEDIA_PICKER.mode: MEDIA_PICKER,
}


def pick_suggestions(page: SearchResultPage, limit: int) -> list[MediaItem]:
    """Movies and shows with a poster, capped at ``limit``."""

    return filter_displayable(page.results)[:limit]


class TypeaheadSnapshot(BaseModel):
    """Visible state of one type-ahead field."""

    mode: TypeaheadMode
    state: TypeaheadState
    query: str
    is_open: bool
    suggestions: list[MediaItem] = Field(default_factory=list)
    selected: list[str] = Field(default_factory=list)


class TypeaheadSession:
    """State machine behind one search bar or media picker.

    ``IDLE -> DEBOUNCING -> FETCHING -> RESOLVED | FAILED``; every keystroke
    returns the session to ``DEBOUNCING``. Each keystroke bumps a sequence
    number and cancels the pending request. A response whose sequence number
    is no longer current is dropped, so a slow answer for an earlier query
    never overwrites a later one.
    """

    def __init__(
        self,
        search: SearchFunction,
        profile: TypeaheadProfile = SEARCH_BAR,
        *,
        on_change: Callable[["TypeaheadSession"], None] | None = None,
        cancel_superseded: bool = True,
    ) -> None:
        self._search = search
        self._profile = profile
        self._on_change = on_change
        self._cancel_superseded = cancel_superseded
        self._sequence = 0
        self._tasks: set[asyncio.Task[None]] = set()
        self.state = TypeaheadState.IDLE
        self.query = ""
        self.is_open = False
        self.suggestions: list[MediaItem] = []
        self.selected: list[str] = []

    @property
    def profile(self) -> TypeaheadProfile:
        return self._profile

    @property
    def sequence(self) -> int:
        return self._sequence

    def update(self, text: str) -> None:
        """Register a keystroke; ``text`` is the full input value."""

        self.query = text
        self._sequence += 1
        self._cancel_pending()

        trimmed = text.strip()
        if len(trimmed) < MIN_QUERY_LENGTH:
            self.suggestions = []
            self.is_open = False
            self.state = TypeaheadState.IDLE
            self._notify()
            return

        self.state = TypeaheadState.DEBOUNCING
        self.is_open = True
        self._notify()
        task = asyncio.create_task(self._run(self._sequence, trimmed))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def select(self, item: MediaItem) -> str:
        """Accept a suggestion and return the value it produced.

        The search bar returns the title to navigate to. The picker adds the
        ``Title (Year)`` label to the selection and returns it.
        """

        self._reset_input()
        if self._profile.mode is TypeaheadMode.PICKER:
            label = item.label()
            if label not in self.selected:
                self.selected.append(label)
            self._notify()
            return label
        self._notify()
        return item.title

    def deselect(self, label: str) -> None:
        if label in self.selected:
            self.selected.remove(label)
            self._notify()

    def dismiss(self) -> None:
        """Close the popup after a click outside the field."""

        if self.is_open:
            self.is_open = False
            self._notify()

    def blur(self) -> None:
        """Losing focus keeps the popup open so a pending click can land."""

    async def settle(self) -> None:
        """Wait until every in-flight request has finished or been cancelled."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        self._sequence += 1
        for task in self._tasks:
            task.cancel()
        await self.settle()

    def snapshot(self) -> TypeaheadSnapshot:
        return TypeaheadSnapshot(
            mode=self._profile.mode,
            state=self.state,
            query=self.query,
            is_open=self.is_open,
            suggestions=list(self.suggestions),
            selected=list(self.selected),
        )

    async def _run(self, sequence: int, query: str) -> None:
        await asyncio.sleep(self._profile.debounce_seconds)
        if sequence != self._sequence:
            return

        self.state = TypeaheadState.FETCHING
        self._notify()
        try:
            page = await self._search(query)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if sequence != self._sequence:
                return
            logger.warning("Type-ahead search for %r failed: %s", query, exc)
            self.suggestions = []
            self.state = TypeaheadState.FAILED
            self._notify()
            return

        if sequence != self._sequence:
            logger.debug("Dropping stale type-ahead response for %r", query)
            return
        self.suggestions = pick_suggestions(page, self._profile.limit)
        self.state = TypeaheadState.RESOLVED
        self._notify()

    def _reset_input(self) -> None:
        self._sequence += 1
        self._cancel_pending()
        self.query = ""
        self.suggestions = []
        self.is_open = False
        self.state = TypeaheadState.IDLE

    def _cancel_pending(self) -> None:
        if not self._cancel_superseded:
            return
        for task in self._tasks:
            if not task.done():
                task.cancel()

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change(self)
