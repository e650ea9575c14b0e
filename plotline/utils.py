"""Utility helpers for the Plotline service."""

from __future__ import annotations

import re
from typing import Any


# Suffix order matters: the first matching suffix decides the scale.
RATING_SCALES: tuple[tuple[str, float], ...] = (
    ("%", 100.0),
    ("/10", 10.0),
    ("/100", 100.0),
)

EPISODE_RATING_SENTINELS = frozenset({"", "n/a", "na", "-"})

_OSCAR_WIN_PATTERNS = (r"won\s+(\d+)\s+oscar", r"won\s+(\d+)\s+academy")
_OSCAR_NOMINATION_PATTERNS = (
    r"nominated\s+for\s+(\d+)\s+oscar",
    r"(\d+)\s+oscar\s+nomination",
    r"nominated\s+for\s+(\d+)\s+academy",
)
_WIN_PATTERNS = (r"(\d+)\s+wins?\b",)
_NOMINATION_PATTERNS = (r"(\d+)\s+nominations?\b",)


def normalize_rating(raw: str | None) -> float | None:
    """Convert a display rating such as ``"8.9/10"`` to the ``[0, 1]`` scale."""

    if raw is None:
        return None
    cleaned = raw.strip()
    for suffix, scale in RATING_SCALES:
        if not cleaned.endswith(suffix):
            continue
        number = parse_float(cleaned[: -len(suffix)])
        if number is None:
            return None
        normalized = number / scale
        if 0.0 <= normalized <= 1.0:
            return normalized
        return None
    return None


def parse_float(value: Any) -> float | None:
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        return None
    text = value.strip().replace(",", "")
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def parse_int(value: Any) -> int | None:
    """Parse upstream numeric strings like ``"5"`` or ``"N/A"``."""

    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text.isdigit():
        return None
    return int(text)


def is_valid_episode_rating(raw: str | None) -> bool:
    """Return whether an episode rating is usable for charts and averages."""

    cleaned = (raw or "").strip()
    if cleaned.lower() in EPISODE_RATING_SENTINELS:
        return False
    value = parse_float(cleaned)
    return value is not None and value > 0.0


def parse_awards(text: str | None) -> dict[str, int] | None:
    """Extract Oscar and overall award counts from an awards sentence.

    ``"Won 2 Oscars. 85 wins & 95 nominations total"`` yields two Oscar wins,
    85 total wins and 95 total nominations. Returns ``None`` when the text is
    missing, ``N/A`` or mentions no counts at all.
    """

    if not text:
        return None
    lowered = text.strip().lower()
    if not lowered or lowered == "n/a":
        return None

    oscar_wins = _first_count(lowered, _OSCAR_WIN_PATTERNS)
    oscar_nominations = _first_count(lowered, _OSCAR_NOMINATION_PATTERNS)
    total_wins = _first_count(lowered, _WIN_PATTERNS) or oscar_wins
    total_nominations = _first_count(lowered, _NOMINATION_PATTERNS) or oscar_nominations

    if not (oscar_wins or oscar_nominations or total_wins or total_nominations):
        return None
    return {
        "oscar_wins": oscar_wins,
        "oscar_nominations": oscar_nominations,
        "total_wins": total_wins,
        "total_nominations": total_nominations,
    }


def _first_count(text: str, patterns: tuple[str, ...]) -> int:
    for pattern in patterns:
        match = re.search(pattern, text)
        if match:
            return int(match.group(1))
    return 0


def build_image_url(base_url: str, size: str, path: str | None) -> str | None:
    """Join an image path from the catalog with its CDN base and size."""

    if not path:
        return None
    if path.startswith("http"):
        return path
    base = base_url if base_url.endswith("/") else f"{base_url}/"
    if not path.startswith("/"):
        path = f"/{path}"
    return f"{base}{size}{path}"


_CURRENCY_UNITS: tuple[tuple[int, str, str], ...] = (
    (1_000_000_000, "B", "{:.1f}"),
    (1_000_000, "M", "{:.0f}"),
    (1_000, "K", "{:.0f}"),
)


def format_currency(amount: int) -> str:
    """Abbreviate a dollar amount, e.g. ``$1.2B``, ``$150M`` or ``-$50K``."""

    sign = "-" if amount < 0 else ""
    magnitude = abs(amount)
    for threshold, suffix, template in _CURRENCY_UNITS:
        if magnitude >= threshold:
            return f"{sign}${template.format(magnitude / threshold)}{suffix}"
    return f"{sign}${magnitude}"
