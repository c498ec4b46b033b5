"""AI movie suggestions through the OpenRouter API."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..errors import MissingCredentialError, UpstreamError, UpstreamTimeoutError
from ..models import (
    MAX_LIKED_TITLES,
    FavoriteItem,
    MovieSuggestion,
    SuggestionQuery,
    SuggestionResult,
)
from ..utils import extract_json_object, unique_titles
from .favorites import FavoritesStore

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are Movista, a professional movie recommendation engine. You always respond "
    "with a single JSON object that matches the documented schema and never include "
    "commentary outside JSON."
)

SUGGESTION_REQUEST_TEMPLATE = """
Suggest exactly {count} real films that match ALL of these criteria.

1. Core matching (must follow):
{core_lines}

2. Context (optional):
{context_lines}

3. Strict rules:
- Never suggest genres outside the user's preferences when preferences are given.
- Never suggest a title the user already liked or watched: {avoid_list}
- Never invent films; every title must exist on TMDB with its real release year.
{mood_rules}
4. For each suggestion give the exact title, the release year, 2-3 main genres and
one sentence connecting it to the user's input.

Respond strictly with JSON following this structure:
{{
  "suggestions": [
    {{
      "title": "Title",
      "year": 2024,
      "genres": ["Genre"],
      "reason": "one sentence"
    }}
  ]
}}
"""


def build_suggestion_query(
    form: Mapping[str, Any],
    favorites: FavoritesStore | Sequence[FavoriteItem] | None = None,
    *,
    include_favorites: bool = True,
) -> SuggestionQuery:
    """Assemble and validate a suggestion request from form input.

    Favorites are merged after the titles the user picked, deduplicated
    case-insensitively, and the combined liked list is capped at
    ``MAX_LIKED_TITLES``. Raises :class:`pydantic.ValidationError` when the
    request breaks a form rule.
    """

    data = dict(form)
    liked_raw = data.pop("liked_movies", None)
    if liked_raw is None:
        liked_raw = data.pop("likedMovies", None)
    if isinstance(liked_raw, str):
        liked_raw = liked_raw.split(",")
    liked: list[object] = list(liked_raw or [])

    if include_favorites and favorites is not None:
        if isinstance(favorites, FavoritesStore):
            liked.extend(favorites.liked_titles())
        else:
            liked.extend(item.label() for item in favorites)

    data["liked_movies"] = unique_titles(liked, limit=MAX_LIKED_TITLES)
    return SuggestionQuery.model_validate(data)


def render_prompt(query: SuggestionQuery) -> str:
    """Render the user prompt for ``query``."""

    core_lines: list[str] = []
    if query.liked_movies:
        core_lines.append("- Prioritize movies similar to: " + "; ".join(query.liked_movies))
    if query.genre_preferences:
        core_lines.append("- Only suggest genres from: " + ", ".join(query.genre_preferences))
    if query.moods:
        core_lines.append("- Tone must match these moods: " + ", ".join(query.moods))

    context_lines: list[str] = []
    if query.mood_text:
        context_lines.append(f'- User description: "{query.mood_text}"')
    if query.decade:
        context_lines.append(f"- Decade preference: {query.decade}")
    if query.language:
        context_lines.append(f"- Language preference: {query.language}")

    mood_rules: list[str] = []
    moods = {mood.casefold() for mood in query.moods}
    if "funny" in moods:
        mood_rules.append('- "Funny" is requested, so prioritize comedies.')
    if "feel-good" in moods:
        mood_rules.append('- "Feel-Good" is requested, so avoid dark or depressing films.')

    avoid = unique_titles([*query.liked_movies, *query.watched_movies])
    return SUGGESTION_REQUEST_TEMPLATE.format(
        count=query.count,
        core_lines="\n".join(core_lines) or "- No hard constraints supplied.",
        context_lines="\n".join(context_lines) or "- None supplied.",
        avoid_list="; ".join(avoid) if avoid else "none supplied.",
        mood_rules="\n".join(mood_rules) + ("\n" if mood_rules else ""),
    )


class SuggestionClient:
    """Client responsible for talking to OpenRouter."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    async def suggest(
        self,
        query: SuggestionQuery,
        *,
        api_key: str | None = None,
        model: str | None = None,
    ) -> SuggestionResult:
        """Ask the model for ``query.count`` suggestions."""

        resolved_key = api_key or self._settings.openrouter_api_key
        if not resolved_key:
            raise MissingCredentialError("OpenRouter API key is required to suggest movies")
        resolved_model = model or self._settings.openrouter_model

        logger.info(
            "Requesting %s suggestions (%s liked, %s moods)",
            query.count,
            len(query.liked_movies),
            len(query.moods),
        )
        payload = {
            "model": resolved_model,
            "temperature": 0.8,
            "max_output_tokens": self._estimate_token_budget(query.count),
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": render_prompt(query)},
            ],
        }
        headers = {
            "Authorization": f"Bearer {resolved_key}",
            "Content-Type": "application/json",
            "X-Title": "Movista",
        }

        try:
            response = await self._client.post(
                "/chat/completions", json=payload, headers=headers
            )
        except httpx.TimeoutException as exc:
            raise UpstreamTimeoutError("Suggestion request timed out") from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(None, f"Failed to reach the suggestion service: {exc}") from exc
        if response.status_code >= 400:
            logger.error(
                "Suggestion request failed (%s): %s", response.status_code, response.text
            )
            raise UpstreamError(response.status_code, "Suggestion service returned an error")

        try:
            data = response.json()
        except ValueError as exc:
            raise UpstreamError(
                response.status_code, "Invalid JSON from the suggestion service"
            ) from exc
        if not isinstance(data, dict):
            raise UpstreamError(response.status_code, "Unexpected suggestion response shape")
        choices = data.get("choices") or []
        if not isinstance(choices, list) or not choices:
            raise UpstreamError(response.status_code, "Model returned no choices")
        first = choices[0] if isinstance(choices[0], dict) else {}
        message = first.get("message") or {}
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str):
            raise UpstreamError(response.status_code, "Model response missing content")

        try:
            parsed = extract_json_object(content)
        except ValueError as exc:
            raise UpstreamError(response.status_code, str(exc)) from exc

        suggestions = self._parse_suggestions(parsed)[: query.count]
        logger.info("Received %s suggestions", len(suggestions))
        return SuggestionResult(
            suggestions=suggestions,
            model=resolved_model,
            generated_at=datetime.now(timezone.utc),
        )

    @staticmethod
    def _parse_suggestions(parsed: dict[str, Any]) -> list[MovieSuggestion]:
        raw_items = parsed.get("suggestions")
        if not isinstance(raw_items, list):
            raw_items = parsed.get("items") if isinstance(parsed.get("items"), list) else []

        suggestions: list[MovieSuggestion] = []
        seen: set[str] = set()
        for entry in raw_items:
            if not isinstance(entry, dict):
                continue
            try:
                suggestion = MovieSuggestion.model_validate(
                    {key: value for key, value in entry.items() if key != "match"}
                )
            except ValidationError:
                continue
            key = suggestion.title.casefold()
            if key in seen:
                continue
            seen.add(key)
            suggestions.append(suggestion)
        return suggestions

    @staticmethod
    def _estimate_token_budget(count: int) -> int:
        estimated = 400 + max(int(count), 1) * 80
        return max(800, min(4_000, estimated))
