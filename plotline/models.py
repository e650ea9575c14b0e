"""Pydantic models describing enriched media payloads."""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field

from .utils import format_currency, is_valid_episode_rating, normalize_rating, parse_float

MediaKind = Literal["movie", "series"]


class RatingKind(str, Enum):
    IMDB = "imdb"
    ROTTEN_TOMATOES = "rotten_tomatoes"
    METACRITIC = "metacritic"
    UNKNOWN = "unknown"


_RATING_SOURCES = {
    "Internet Movie Database": RatingKind.IMDB,
    "Rotten Tomatoes": RatingKind.ROTTEN_TOMATOES,
    "Metacritic": RatingKind.METACRITIC,
}


class MediaRecord(BaseModel):
    """A movie or series from the primary catalog.

    ``id`` and ``kind`` are fixed at construction; the remaining fields may be
    patched in place as enrichment data arrives.
    """

    model_config = ConfigDict(validate_assignment=True)

    id: int = Field(frozen=True)
    kind: MediaKind = Field(frozen=True)
    title: str | None = None
    overview: str | None = None
    release_date: str | None = None
    poster_path: str | None = None
    backdrop_path: str | None = None
    vote_average: float = 0.0
    vote_count: int = 0
    genre_ids: list[int] = Field(default_factory=list)
    linking_id: str | None = None
    total_seasons: int | None = None
    runtime_minutes: int | None = None
    budget: int | None = None
    revenue: int | None = None
    collection_id: int | None = None

    @property
    def is_series(self) -> bool:
        return self.kind == "series"

    @property
    def display_title(self) -> str:
        return (self.title or "").strip() or "Unknown"

    @property
    def year(self) -> int | None:
        if not self.release_date or len(self.release_date) < 4:
            return None
        try:
            return int(self.release_date[:4])
        except ValueError:
            return None

    @property
    def box_office(self) -> BoxOfficeSummary | None:
        """Budget and revenue figures for a movie, when the catalog reports any."""

        if self.is_series:
            return None
        summary = BoxOfficeSummary(budget=self.budget or 0, revenue=self.revenue or 0)
        return summary if summary.has_data else None

    def to_payload(self) -> dict[str, object]:
        payload = self.model_dump()
        payload["displayTitle"] = self.display_title
        payload["year"] = self.year
        box_office = self.box_office
        payload["boxOffice"] = box_office.to_payload() if box_office is not None else None
        return payload


class BoxOfficeSummary(BaseModel):
    """Derived figures for a movie's budget and worldwide revenue."""

    model_config = ConfigDict(frozen=True)

    # Revenue ratios above this are clamped for display.
    RATIO_CAP: ClassVar[float] = 10.0

    budget: int = 0
    revenue: int = 0

    @property
    def has_data(self) -> bool:
        return self.budget > 0 or self.revenue > 0

    @property
    def is_profitable(self) -> bool:
        return self.budget > 0 and self.revenue > self.budget

    @property
    def profit(self) -> int:
        return self.revenue - self.budget

    @property
    def roi(self) -> float | None:
        """Revenue as a multiple of budget; ``None`` without a budget."""

        if self.budget <= 0:
            return None
        return self.revenue / self.budget

    @property
    def roi_percentage(self) -> float | None:
        roi = self.roi
        return None if roi is None else (roi - 1) * 100

    @property
    def revenue_ratio(self) -> float:
        roi = self.roi
        return 0.0 if roi is None else min(roi, self.RATIO_CAP)

    @property
    def formatted_profit(self) -> str:
        prefix = "+" if self.profit >= 0 else ""
        return prefix + format_currency(self.profit)

    @property
    def formatted_roi(self) -> str | None:
        roi = self.roi
        if roi is None:
            return None
        if roi >= 2:
            return f"{roi:.1f}x"
        return f"{(roi - 1) * 100:+.0f}%"

    def to_payload(self) -> dict[str, object]:
        return {
            "budget": self.budget,
            "revenue": self.revenue,
            "hasData": self.has_data,
            "isProfitable": self.is_profitable,
            "profit": self.profit,
            "roi": self.roi,
            "roiPercentage": self.roi_percentage,
            "revenueRatio": self.revenue_ratio,
            "formattedBudget": format_currency(self.budget),
            "formattedRevenue": format_currency(self.revenue),
            "formattedProfit": self.formatted_profit,
            "formattedRoi": self.formatted_roi,
        }


class RatingRecord(BaseModel):
    """A rating from one platform as reported by the ratings source."""

    model_config = ConfigDict(frozen=True)

    source: str
    value: str

    @property
    def normalized(self) -> float | None:
        return normalize_rating(self.value)

    @property
    def kind(self) -> RatingKind:
        return _RATING_SOURCES.get(self.source, RatingKind.UNKNOWN)

    def to_payload(self) -> dict[str, object]:
        return {
            "source": self.source,
            "value": self.value,
            "kind": self.kind.value,
            "normalized": self.normalized,
        }


class EpisodeRecord(BaseModel):
    """Per-episode rating data for one season of a series."""

    model_config = ConfigDict(frozen=True)

    season: int
    episode: int
    title: str
    rating: str
    linking_id: str | None = None
    released: str | None = None

    @property
    def has_valid_rating(self) -> bool:
        return is_valid_episode_rating(self.rating)

    @property
    def rating_value(self) -> float:
        return parse_float(self.rating) or 0.0

    @property
    def short_code(self) -> str:
        return f"S{self.season}E{self.episode}"

    def to_payload(self) -> dict[str, object]:
        payload = self.model_dump()
        payload["shortCode"] = self.short_code
        payload["hasValidRating"] = self.has_valid_rating
        return payload


class AwardsSummary(BaseModel):
    """Award counts parsed from the ratings source's awards sentence."""

    model_config = ConfigDict(frozen=True)

    oscar_wins: int = 0
    oscar_nominations: int = 0
    total_wins: int = 0
    total_nominations: int = 0
    raw: str

    @property
    def has_awards(self) -> bool:
        return self.total_wins > 0 or self.total_nominations > 0


class Favorite(BaseModel):
    """A record the caller has marked as a favorite."""

    id: int
    kind: MediaKind
    title: str = ""
    poster_path: str | None = None
    backdrop_path: str | None = None
    vote_average: float = 0.0


class DailyPick(BaseModel):
    """The recommendation chosen for a calendar day and where it came from."""

    recommendation: MediaRecord
    based_on_id: int
    created_at: datetime

    def is_valid_on(self, day: date) -> bool:
        return self.created_at.date() == day
