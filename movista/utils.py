"""Utility helpers for the Movista service."""

from __future__ import annotations

import json
import re
from datetime import date
from typing import Any, Iterable


JSON_BLOCK_RE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)
BARE_JSON_RE = re.compile(r"\{.*\}", re.DOTALL)


def extract_json_object(content: str) -> dict[str, Any]:
    """Extract and parse the first JSON object from the model response."""

    match = JSON_BLOCK_RE.search(content)
    if match:
        payload = match.group(1)
    else:
        match = BARE_JSON_RE.search(content)
        if not match:
            raise ValueError("No JSON object found in response")
        payload = match.group(0)

    try:
        return json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ValueError("Invalid JSON payload produced by the model") from exc


def parse_date(value: object) -> date | None:
    """Parse an upstream ``YYYY-MM-DD`` value, treating blanks as missing."""

    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def media_label(title: str, released: date | None) -> str:
    """Return the ``Title (Year)`` label used by pickers and prompts."""

    cleaned = (title or "").strip()
    if released is None:
        return cleaned
    return f"{cleaned} ({released.year})"


def unique_titles(titles: Iterable[object], *, limit: int | None = None) -> list[str]:
    """Strip, drop blanks and case-insensitively dedupe titles in order."""

    seen: set[str] = set()
    cleaned: list[str] = []
    for title in titles:
        if not isinstance(title, str):
            continue
        value = title.strip()
        if not value:
            continue
        key = value.casefold()
        if key in seen:
            continue
        seen.add(key)
        cleaned.append(value)
        if limit is not None and len(cleaned) >= limit:
            break
    return cleaned
