"""Cross-source enrichment of catalog records with ratings and episode data."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Hashable, TypeVar

from ..cache import DedupCache
from ..config import Settings
from ..errors import FetchError, is_transient
from ..models import AwardsSummary, EpisodeRecord, MediaRecord, RatingKind, RatingRecord
from ..schemas import RatingsDetail
from ..utils import parse_awards
from .omdb import RatingsService
from .tmdb import CatalogService

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Fields that always follow the latest catalog detail rather than the caller's copy.
_REFRESHED_FIELDS = frozenset({"linking_id", "total_seasons"})
_IDENTITY_FIELDS = frozenset({"id", "kind"})


class LinkStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    MISSING = "missing"


class SeasonCountSource(str, Enum):
    SECONDARY = "secondary"
    PRIMARY = "primary"
    UNKNOWN = "unknown"


@dataclass(slots=True)
class FieldState(Generic[T]):
    """Loading/error/value triple for one independently fetched field."""

    value: T | None = None
    loading: bool = False
    error: str | None = None

    def begin(self) -> None:
        # A value from an earlier load never outlives a reload.
        self.value = None
        self.loading = True
        self.error = None

    def succeed(self, value: T | None) -> None:
        self.value = value
        self.loading = False
        self.error = None

    def fail(self, error: str) -> None:
        self.loading = False
        self.error = error

    def to_payload(self, serialize: Callable[[T], Any]) -> dict[str, Any]:
        return {
            "loading": self.loading,
            "error": self.error,
            "value": serialize(self.value) if self.value is not None else None,
        }


@dataclass(slots=True)
class SeasonFetchResult:
    """Outcome of one season request inside a fan-out."""

    season: int
    episodes: list[EpisodeRecord] | None = None
    error: str | None = None

    @property
    def absent(self) -> bool:
        return self.episodes is None


@dataclass
class EnrichmentState:
    """Everything known about one record's enrichment, field by field."""

    record: MediaRecord
    selected_season: int = 1
    suspect_threshold: int = 25
    link_status: LinkStatus = LinkStatus.PENDING
    detail_error: str | None = None
    total_seasons: int | None = None
    season_count_source: SeasonCountSource = SeasonCountSource.UNKNOWN
    ratings: FieldState[list[RatingRecord]] = field(default_factory=FieldState)
    awards: FieldState[AwardsSummary] = field(default_factory=FieldState)
    episodes: FieldState[list[EpisodeRecord]] = field(default_factory=FieldState)
    seasons: FieldState[dict[int, SeasonFetchResult]] = field(default_factory=FieldState)

    @property
    def season_numbers(self) -> list[int]:
        return list(range(1, (self.total_seasons or 0) + 1))

    @property
    def suspect_seasons(self) -> list[int]:
        """Seasons whose episode count hit the source's page ceiling.

        Such listings are probably truncated; a grid built from them is
        misleading, but the data is kept and only flagged.
        """

        results = self.seasons.value or {}
        return sorted(
            season
            for season, result in results.items()
            if result.episodes is not None and len(result.episodes) >= self.suspect_threshold
        )

    @property
    def grid_is_suspect(self) -> bool:
        return bool(self.suspect_seasons)

    @property
    def selected_season_is_suspect(self) -> bool:
        return len(self.episodes.value or []) >= self.suspect_threshold

    def rating_for(self, kind: RatingKind) -> RatingRecord | None:
        for rating in self.ratings.value or []:
            if rating.kind is kind:
                return rating
        return None

    def _valid_episodes(self) -> list[EpisodeRecord]:
        return [episode for episode in self.episodes.value or [] if episode.has_valid_rating]

    @property
    def average_episode_rating(self) -> float | None:
        valid = self._valid_episodes()
        if not valid:
            return None
        return sum(episode.rating_value for episode in valid) / len(valid)

    @property
    def highest_rated_episode(self) -> EpisodeRecord | None:
        return max(self._valid_episodes(), key=lambda episode: episode.rating_value, default=None)

    @property
    def lowest_rated_episode(self) -> EpisodeRecord | None:
        return min(self._valid_episodes(), key=lambda episode: episode.rating_value, default=None)

    def to_payload(self) -> dict[str, Any]:
        def _episodes(values: list[EpisodeRecord]) -> list[dict[str, object]]:
            return [episode.to_payload() for episode in values]

        def _seasons(values: dict[int, SeasonFetchResult]) -> dict[str, Any]:
            return {
                str(season): {
                    "episodes": _episodes(result.episodes) if result.episodes is not None else None,
                    "error": result.error,
                }
                for season, result in sorted(values.items())
            }

        return {
            "media": self.record.to_payload(),
            "linkStatus": self.link_status.value,
            "detailError": self.detail_error,
            "selectedSeason": self.selected_season,
            "totalSeasons": self.total_seasons,
            "seasonCountSource": self.season_count_source.value,
            "ratings": self.ratings.to_payload(
                lambda values: [rating.to_payload() for rating in values]
            ),
            "awards": self.awards.to_payload(lambda summary: summary.model_dump()),
            "episodes": self.episodes.to_payload(_episodes),
            "seasons": self.seasons.to_payload(_seasons),
            "suspectSeasons": self.suspect_seasons,
            "gridIsSuspect": self.grid_is_suspect,
            "selectedSeasonIsSuspect": self.selected_season_is_suspect,
            "averageEpisodeRating": self.average_episode_rating,
        }


class EnrichmentOrchestrator:
    """Chain the catalog and ratings sources into one enriched view.

    Public operations never raise for upstream failures: each failure lands in
    the matching :class:`FieldState` and sibling fetches carry on.
    """

    def __init__(
        self,
        settings: Settings,
        catalog: CatalogService,
        ratings: RatingsService,
        cache: DedupCache[Hashable, Any],
    ) -> None:
        self._catalog = catalog
        self._ratings = ratings
        self._cache = cache
        self._retry_limit = settings.upstream_retry_limit
        self._page_ceiling = settings.episode_page_ceiling

    async def enrich(self, record: MediaRecord, *, selected_season: int = 1) -> EnrichmentState:
        """Resolve the linking id, then load ratings and episodes concurrently."""

        state = self._new_state(record, selected_season)
        linking_id = await self._resolve_link(state)
        if linking_id is None:
            return state

        jobs: list[Awaitable[None]] = [self._load_ratings(state, linking_id)]
        if record.is_series:
            jobs.append(self._load_series(state, linking_id))
        await asyncio.gather(*jobs)
        return state

    async def enrich_season(self, record: MediaRecord, season: int) -> EnrichmentState:
        """Resolve the linking id and load one season of ``record``.

        Ratings and the all-season fan-out are skipped; only the season count
        is reconciled so the range check uses the authoritative total.
        """

        state = self._new_state(record, season)
        linking_id = await self._resolve_link(state)
        if linking_id is None or not record.is_series:
            return state

        await self._reconcile_season_count(state, linking_id)
        if self._out_of_range(state, season):
            state.episodes.fail(f"Season {season} is out of range")
            return state
        await self._load_selected_season(state, linking_id)
        return state

    async def select_season(self, state: EnrichmentState, season: int) -> EnrichmentState:
        """Load episodes for ``season`` alone, leaving other seasons untouched."""

        if not state.record.is_series or state.link_status is not LinkStatus.RESOLVED:
            return state
        if season == state.selected_season and (
            state.episodes.loading or _holds_season(state.episodes.value, season)
        ):
            return state
        if self._out_of_range(state, season):
            state.episodes.fail(f"Season {season} is out of range")
            return state

        state.selected_season = season
        await self._load_selected_season(state, state.record.linking_id or "")
        return state

    async def fetch_seasons(self, linking_id: str, total: int) -> list[SeasonFetchResult]:
        """Fetch seasons ``1..total`` concurrently; failures become absences."""

        if total < 1:
            return []
        results = await asyncio.gather(
            *(self._season_result(linking_id, season) for season in range(1, total + 1))
        )
        return sorted(results, key=lambda result: result.season)

    async def season_episodes(self, linking_id: str, season: int) -> list[EpisodeRecord]:
        return await self._cache.get_or_load(
            ("season", linking_id, season),
            lambda: self._with_retries(
                lambda: self._ratings.season(linking_id, season),
                f"season {season} of {linking_id}",
            ),
        )

    async def secondary_details(self, linking_id: str) -> RatingsDetail:
        return await self._cache.get_or_load(
            ("detail", linking_id),
            lambda: self._with_retries(
                lambda: self._ratings.details(linking_id), f"ratings for {linking_id}"
            ),
        )

    async def clear_cache(self) -> None:
        await self._cache.clear()

    def _new_state(self, record: MediaRecord, selected_season: int) -> EnrichmentState:
        state = EnrichmentState(
            record=record,
            selected_season=max(1, selected_season),
            suspect_threshold=self._page_ceiling,
        )
        if record.total_seasons is not None:
            state.total_seasons = record.total_seasons
            state.season_count_source = SeasonCountSource.PRIMARY
        return state

    async def _resolve_link(self, state: EnrichmentState) -> str | None:
        record = state.record
        if record.linking_id is None:
            await self._refresh_from_catalog(state)

        linking_id = record.linking_id
        if linking_id is None:
            state.link_status = LinkStatus.MISSING
            logger.info("No linking id for %s %s; skipping ratings", record.kind, record.id)
            return None
        state.link_status = LinkStatus.RESOLVED
        return linking_id

    @staticmethod
    def _out_of_range(state: EnrichmentState, season: int) -> bool:
        return season < 1 or (state.total_seasons is not None and season > state.total_seasons)

    async def _refresh_from_catalog(self, state: EnrichmentState) -> None:
        record = state.record
        try:
            detail = await self._catalog.details(record.kind, record.id)
        except FetchError as exc:
            state.detail_error = str(exc)
            logger.warning("Failed to fetch catalog details for %s %s: %s", record.kind, record.id, exc)
            return

        _patch_record(record, detail)
        if record.total_seasons is not None:
            state.total_seasons = record.total_seasons
            state.season_count_source = SeasonCountSource.PRIMARY

    async def _load_ratings(self, state: EnrichmentState, linking_id: str) -> None:
        state.ratings.begin()
        state.awards.begin()
        try:
            detail = await self.secondary_details(linking_id)
        except FetchError as exc:
            logger.warning("Failed to fetch ratings for %s: %s", linking_id, exc)
            state.ratings.fail(str(exc))
            state.awards.fail(str(exc))
            return

        state.ratings.succeed(detail.rating_records())
        counts = parse_awards(detail.awards)
        state.awards.succeed(
            AwardsSummary(raw=detail.awards or "", **counts) if counts else None
        )

    async def _load_series(self, state: EnrichmentState, linking_id: str) -> None:
        total = await self._reconcile_season_count(state, linking_id)
        jobs: list[Awaitable[None]] = [self._load_selected_season(state, linking_id)]
        if total is not None:
            jobs.append(self._load_all_seasons(state, linking_id, total))
        await asyncio.gather(*jobs)

    async def _reconcile_season_count(self, state: EnrichmentState, linking_id: str) -> int | None:
        """Prefer the ratings source's season count over the catalog's."""

        primary = state.record.total_seasons
        secondary: int | None = None
        try:
            secondary = (await self.secondary_details(linking_id)).season_count
        except FetchError as exc:
            logger.info(
                "Season count lookup for %s failed (%s); using catalog count %s",
                linking_id,
                exc,
                primary,
            )

        if secondary is not None:
            if primary is not None and primary != secondary:
                logger.info(
                    "Season count mismatch for %s: catalog %s, ratings source %s",
                    linking_id,
                    primary,
                    secondary,
                )
            total, source = secondary, SeasonCountSource.SECONDARY
        elif primary is not None:
            total, source = primary, SeasonCountSource.PRIMARY
        else:
            total, source = None, SeasonCountSource.UNKNOWN

        state.total_seasons = total
        state.season_count_source = source
        if total is not None:
            state.record.total_seasons = total
        return total

    async def _load_all_seasons(self, state: EnrichmentState, linking_id: str, total: int) -> None:
        state.seasons.begin()
        results = await self.fetch_seasons(linking_id, total)
        state.seasons.succeed({result.season: result for result in results})
        if results and all(result.absent for result in results):
            state.seasons.fail("No season data could be loaded")

    async def _load_selected_season(self, state: EnrichmentState, linking_id: str) -> None:
        season = state.selected_season
        state.episodes.begin()
        result = await self._season_result(linking_id, season)
        if state.selected_season != season:
            # A newer selection owns the field now.
            return
        if result.absent:
            state.episodes.fail(result.error or "Failed to load episodes")
        else:
            state.episodes.succeed(result.episodes)
        if state.seasons.value is not None and not result.absent:
            state.seasons.value[season] = result

    async def _season_result(self, linking_id: str, season: int) -> SeasonFetchResult:
        try:
            episodes = await self.season_episodes(linking_id, season)
        except FetchError as exc:
            logger.warning("Failed to fetch season %s of %s: %s", season, linking_id, exc)
            return SeasonFetchResult(season=season, error=str(exc))
        except Exception as exc:  # pragma: no cover - unexpected failure
            logger.exception("Unexpected failure fetching season %s of %s", season, linking_id)
            return SeasonFetchResult(season=season, error=str(exc))
        return SeasonFetchResult(season=season, episodes=episodes)

    async def _with_retries(self, operation: Callable[[], Awaitable[T]], description: str) -> T:
        attempt = 0
        while True:
            try:
                return await operation()
            except FetchError as exc:
                if not is_transient(exc) or attempt >= self._retry_limit:
                    raise
                attempt += 1
                backoff = min(2 ** (attempt - 1), 5) + (0.1 * attempt)
                logger.info(
                    "Transient error fetching %s (%s). Retrying in %.1fs",
                    description,
                    exc.__class__.__name__,
                    backoff,
                )
                await asyncio.sleep(backoff)


def _patch_record(record: MediaRecord, detail: MediaRecord) -> None:
    """Copy catalog detail into ``record`` without clobbering caller data."""

    for name in MediaRecord.model_fields:
        if name in _IDENTITY_FIELDS:
            continue
        incoming = getattr(detail, name)
        if incoming is None:
            continue
        if name in _REFRESHED_FIELDS or _is_absent(record, name):
            setattr(record, name, incoming)


def _is_absent(record: MediaRecord, name: str) -> bool:
    if name not in record.model_fields_set:
        return True
    return getattr(record, name) in (None, "", [])


def _holds_season(episodes: list[EpisodeRecord] | None, season: int) -> bool:
    if episodes is None:
        return False
    return all(episode.season == season for episode in episodes)
