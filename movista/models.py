"""Pydantic models describing catalog payloads."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .utils import media_label, parse_date, unique_titles

MediaType = Literal["movie", "tv"]
TimeWindow = Literal["day", "week"]
SortBy = Literal["relevance", "title", "release_date", "vote_average"]
SortOrder = Literal["asc", "desc"]

MEDIA_TYPES: tuple[str, ...] = ("movie", "tv")
MAX_SUGGESTION_COUNT = 10
MAX_LIKED_TITLES = 10


class Genre(BaseModel):
    """A catalog genre for one media type."""

    id: int
    name: str


class MediaItem(BaseModel):
    """A movie or TV show as consumed by the UI."""

    model_config = ConfigDict(populate_by_name=True)

    id: int
    media_type: MediaType
    title: str = Field(default="", validation_alias=AliasChoices("title", "name"))
    release_date: date | None = Field(
        default=None,
        validation_alias=AliasChoices("release_date", "first_air_date"),
    )
    poster_path: str | None = None
    backdrop_path: str | None = None
    overview: str = ""
    vote_average: float = 0.0
    genre_ids: list[int] = Field(default_factory=list)
    popularity: float = 0.0

    @field_validator("release_date", mode="before")
    @classmethod
    def _parse_release_date(cls, value: object) -> date | None:
        return parse_date(value)

    @field_validator("title", "overview", mode="before")
    @classmethod
    def _blank_text(cls, value: object) -> object:
        return "" if value is None else value

    @field_validator("vote_average", "popularity", mode="before")
    @classmethod
    def _zero_when_missing(cls, value: object) -> object:
        return 0.0 if value is None else value

    @field_validator("genre_ids", mode="before")
    @classmethod
    def _empty_genres(cls, value: object) -> object:
        return [] if value is None else value

    @property
    def key(self) -> tuple[str, int]:
        """Identity of the item; ids are only unique per media type."""

        return (self.media_type, self.id)

    def label(self) -> str:
        return media_label(self.title, self.release_date)


class Video(BaseModel):
    key: str
    name: str = ""
    site: str = ""
    type: str = ""
    official: bool = False
    published_at: str | None = None


class MediaDetails(MediaItem):
    """Detail payload for a single movie or show."""

    genres: list[Genre] = Field(default_factory=list)
    runtime: int | None = None
    episode_run_time: list[int] = Field(default_factory=list)
    tagline: str | None = None
    status: str | None = None
    homepage: str | None = None
    imdb_id: str | None = None
    number_of_seasons: int | None = None
    number_of_episodes: int | None = None
    videos: list[Video] = Field(default_factory=list)
    release_dates: list[dict[str, Any]] = Field(default_factory=list)
    content_ratings: list[dict[str, Any]] = Field(default_factory=list)
    poster_url: str | None = None
    backdrop_url: str | None = None

    @field_validator("videos", "release_dates", "content_ratings", mode="before")
    @classmethod
    def _unwrap_results(cls, value: object) -> object:
        # Appended sections arrive as {"results": [...]}.
        if isinstance(value, dict):
            return value.get("results") or []
        if value is None:
            return []
        return value

    @model_validator(mode="after")
    def _derive_genre_ids(self) -> "MediaDetails":
        if not self.genre_ids and self.genres:
            self.genre_ids = [genre.id for genre in self.genres]
        return self

    def trailer(self) -> Video | None:
        """Return the preferred YouTube trailer, official uploads first."""

        for kind in ("Trailer", "Teaser"):
            candidates = [
                video
                for video in self.videos
                if video.site == "YouTube" and video.type == kind
            ]
            if candidates:
                candidates.sort(key=lambda video: not video.official)
                return candidates[0]
        return None

    def certification(self, country: str = "US") -> str | None:
        """Return the age certification for ``country`` if published."""

        if self.media_type == "tv":
            for entry in self.content_ratings:
                if entry.get("iso_3166_1") == country:
                    rating = str(entry.get("rating") or "").strip()
                    return rating or None
            return None

        for entry in self.release_dates:
            if entry.get("iso_3166_1") != country:
                continue
            releases = entry.get("release_dates") or []
            # Theatrical releases (type 3) carry the canonical rating.
            releases = sorted(releases, key=lambda release: release.get("type") != 3)
            for release in releases:
                rating = str(release.get("certification") or "").strip()
                if rating:
                    return rating
        return None


class SearchResultPage(BaseModel):
    """One page of media results with upstream pagination metadata."""

    model_config = ConfigDict(populate_by_name=True)

    results: list[MediaItem] = Field(default_factory=list)
    total_pages: int = 0
    current_page: int = Field(
        default=1, validation_alias=AliasChoices("current_page", "page")
    )
    total_results: int = 0

    @classmethod
    def from_payload(
        cls,
        payload: dict[str, Any],
        *,
        media_type: MediaType | None = None,
    ) -> "SearchResultPage":
        """Build a page from a catalog list response.

        Entries are tagged with ``media_type`` when the endpoint is scoped to
        one type. Entries that are neither movies nor shows (people from a
        multi-search) and malformed entries are skipped.
        """

        items: list[MediaItem] = []
        for entry in payload.get("results") or []:
            if not isinstance(entry, dict):
                continue
            kind = entry.get("media_type") or media_type
            if kind not in MEDIA_TYPES:
                continue
            try:
                items.append(MediaItem.model_validate({**entry, "media_type": kind}))
            except ValidationError:
                continue

        return cls(
            results=items,
            total_pages=int(payload.get("total_pages") or 0),
            current_page=int(payload.get("page") or 1),
            total_results=int(payload.get("total_results") or 0),
        )

    @classmethod
    def empty(cls, page: int = 1) -> "SearchResultPage":
        return cls(results=[], total_pages=0, current_page=page, total_results=0)


class ListingPage(SearchResultPage):
    """A result page bundled with the genre map needed to label it."""

    genres: dict[int, str] = Field(default_factory=dict)


class HomeFeed(BaseModel):
    """Everything the landing view renders."""

    trending_movies: list[MediaItem] = Field(default_factory=list)
    trending_tv: list[MediaItem] = Field(default_factory=list)
    popular_movies: list[MediaItem] = Field(default_factory=list)
    popular_tv: list[MediaItem] = Field(default_factory=list)
    movie_genres: dict[int, str] = Field(default_factory=dict)
    tv_genres: dict[int, str] = Field(default_factory=dict)


class FavoriteItem(BaseModel):
    """Reduced projection of a media item kept in the favorites mirror."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    id: int
    media_type: MediaType
    title: str
    poster_path: str | None = None
    overview: str = ""
    vote_average: float = 0.0
    genre_ids: list[int] = Field(default_factory=list)
    release_date: date | None = None
    first_air_date: date | None = None

    @field_validator("release_date", "first_air_date", mode="before")
    @classmethod
    def _parse_dates(cls, value: object) -> date | None:
        return parse_date(value)

    @field_validator("overview", mode="before")
    @classmethod
    def _blank_overview(cls, value: object) -> object:
        return "" if value is None else value

    @model_validator(mode="after")
    def _one_date_per_type(self) -> "FavoriteItem":
        """Keep only the date field that matches the media type."""

        if self.media_type == "movie":
            self.release_date = self.release_date or self.first_air_date
            self.first_air_date = None
        else:
            self.first_air_date = self.first_air_date or self.release_date
            self.release_date = None
        return self

    @classmethod
    def from_media(cls, item: MediaItem) -> "FavoriteItem":
        released = item.release_date
        return cls(
            id=item.id,
            media_type=item.media_type,
            title=item.title or "Untitled",
            poster_path=item.poster_path,
            overview=item.overview,
            vote_average=item.vote_average,
            genre_ids=list(item.genre_ids),
            release_date=released if item.media_type == "movie" else None,
            first_air_date=released if item.media_type == "tv" else None,
        )

    @property
    def key(self) -> tuple[str, int]:
        return (self.media_type, self.id)

    @property
    def released(self) -> date | None:
        return self.release_date or self.first_air_date

    def label(self) -> str:
        return media_label(self.title, self.released)


class SuggestionQuery(BaseModel):
    """Validated input for one AI suggestion request."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    liked_movies: list[str] = Field(default_factory=list)
    watched_movies: list[str] = Field(default_factory=list)
    genre_preferences: list[str] = Field(default_factory=list)
    moods: list[str] = Field(default_factory=list)
    mood_text: str | None = None
    decade: str | None = None
    language: str | None = None
    count: int = Field(default=3, ge=1, le=MAX_SUGGESTION_COUNT)

    @field_validator(
        "liked_movies", "watched_movies", "genre_preferences", "moods", mode="before"
    )
    @classmethod
    def _normalise_titles(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = value.split(",")
        if not isinstance(value, (list, tuple)):
            raise ValueError("Expected a list of strings or a comma separated string")
        return unique_titles(value)

    @field_validator("liked_movies", mode="after")
    @classmethod
    def _cap_liked(cls, value: list[str]) -> list[str]:
        return value[:MAX_LIKED_TITLES]

    @field_validator("mood_text", "decade", "language", mode="before")
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if isinstance(value, str):
            value = value.strip()
            if not value:
                return None
        return value

    @model_validator(mode="after")
    def _require_signal(self) -> "SuggestionQuery":
        if not (self.liked_movies or self.moods or self.mood_text):
            raise ValueError(
                "Add at least one liked movie, a mood, or describe what you're in the mood for"
            )
        return self


class MovieSuggestion(BaseModel):
    """One title recommended by the suggestion service."""

    title: str = Field(min_length=1)
    year: int | None = None
    genres: list[str] = Field(default_factory=list)
    reason: str = ""
    match: MediaItem | None = None

    @field_validator("title", mode="before")
    @classmethod
    def _strip_title(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value

    @field_validator("year", mode="before")
    @classmethod
    def _parse_year(cls, value: object) -> object:
        if value in (None, ""):
            return None
        if isinstance(value, str):
            digits = value.strip()[:4]
            return int(digits) if digits.isdigit() else None
        return value

    @field_validator("genres", mode="before")
    @classmethod
    def _split_genres(cls, value: object) -> object:
        if value is None:
            return []
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @field_validator("reason", mode="before")
    @classmethod
    def _blank_reason(cls, value: object) -> object:
        return "" if value is None else value


class SuggestionResult(BaseModel):
    """Suggestions returned for a query."""

    suggestions: list[MovieSuggestion] = Field(default_factory=list)
    model: str | None = None
    generated_at: datetime
