"""Enrichment orchestrator tests against mocked catalog and ratings sources."""

from __future__ import annotations

import asyncio
from collections import Counter
from typing import Any

import httpx
import pytest

from plotline.cache import domain_cache
from plotline.models import MediaRecord, RatingKind
from plotline.services.enrichment import (
    EnrichmentOrchestrator,
    LinkStatus,
    SeasonCountSource,
)
from plotline.services.fetch import FetchClient
from plotline.services.omdb import RatingsService
from plotline.services.tmdb import CatalogService

from conftest import build_settings


class FakeUpstreams:
    """Route mocked requests to catalog or ratings responses and count them."""

    def __init__(
        self,
        *,
        catalog_detail: dict[str, Any] | None = None,
        total_seasons: str = "N/A",
        episodes_per_season: int = 3,
        failing_seasons: set[int] | None = None,
        detail_status: int = 200,
        awards: str = "N/A",
    ) -> None:
        self.catalog_detail = catalog_detail or {}
        self.total_seasons = total_seasons
        self.episodes_per_season = episodes_per_season
        self.failing_seasons = failing_seasons or set()
        self.detail_status = detail_status
        self.awards = awards
        self.catalog_calls = 0
        self.detail_calls = 0
        self.season_calls: Counter[int] = Counter()
        self.season_statuses: dict[int, list[int]] = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "api.themoviedb.org":
            self.catalog_calls += 1
            return httpx.Response(200, json=self.catalog_detail)

        season = request.url.params.get("Season")
        if season is None:
            self.detail_calls += 1
            if self.detail_status != 200:
                return httpx.Response(self.detail_status)
            return httpx.Response(
                200,
                json={
                    "Title": "Show",
                    "totalSeasons": self.total_seasons,
                    "Awards": self.awards,
                    "Ratings": [
                        {"Source": "Internet Movie Database", "Value": "8.7/10"},
                        {"Source": "Metacritic", "Value": "81/100"},
                    ],
                    "Response": "True",
                },
            )

        number = int(season)
        self.season_calls[number] += 1
        scripted = self.season_statuses.get(number)
        if scripted:
            status = scripted.pop(0)
            if status != 200:
                return httpx.Response(status)
        if number in self.failing_seasons:
            return httpx.Response(500)
        return httpx.Response(
            200,
            json={
                "Season": season,
                "Episodes": [
                    {
                        "Title": f"Episode {index}",
                        "Episode": str(index),
                        "imdbRating": "N/A" if index == 1 else f"{7 + index / 10:.1f}",
                    }
                    for index in range(1, self.episodes_per_season + 1)
                ],
                "Response": "True",
            },
        )


def build_orchestrator(
    upstreams: FakeUpstreams, **overrides: Any
) -> tuple[httpx.AsyncClient, EnrichmentOrchestrator]:
    settings = build_settings(**overrides)
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(upstreams.handler))
    fetch = FetchClient(http_client)
    orchestrator = EnrichmentOrchestrator(
        settings,
        CatalogService(settings, fetch),
        RatingsService(settings, fetch),
        domain_cache(),
    )
    return http_client, orchestrator


def series(total_seasons: int | None = None, **fields: Any) -> MediaRecord:
    return MediaRecord(
        id=1396, kind="series", linking_id="tt0903747", total_seasons=total_seasons, **fields
    )


@pytest.mark.anyio("asyncio")
async def test_one_failed_season_does_not_hide_the_others() -> None:
    upstreams = FakeUpstreams(total_seasons="5", failing_seasons={3})
    http_client, orchestrator = build_orchestrator(upstreams)
    async with http_client:
        state = await orchestrator.enrich(series(5))

    seasons = state.seasons.value
    assert seasons is not None
    assert sorted(seasons) == [1, 2, 3, 4, 5]
    assert [season for season, result in seasons.items() if result.absent] == [3]
    assert seasons[3].error is not None
    assert state.seasons.error is None
    assert state.episodes.value is not None
    assert state.link_status is LinkStatus.RESOLVED


@pytest.mark.anyio("asyncio")
async def test_secondary_season_count_wins_over_primary() -> None:
    upstreams = FakeUpstreams(total_seasons="6")
    http_client, orchestrator = build_orchestrator(upstreams)
    record = series(5)
    async with http_client:
        state = await orchestrator.enrich(record)

    assert state.total_seasons == 6
    assert state.season_count_source is SeasonCountSource.SECONDARY
    assert record.total_seasons == 6
    assert state.season_numbers == [1, 2, 3, 4, 5, 6]
    assert sorted(upstreams.season_calls) == [1, 2, 3, 4, 5, 6]
    assert all(count == 1 for count in upstreams.season_calls.values())
    # Ratings and the season count share one detail request.
    assert upstreams.detail_calls == 1


@pytest.mark.anyio("asyncio")
async def test_primary_count_used_when_secondary_unavailable() -> None:
    upstreams = FakeUpstreams(total_seasons="N/A")
    http_client, orchestrator = build_orchestrator(upstreams)
    async with http_client:
        state = await orchestrator.enrich(series(2))

    assert state.total_seasons == 2
    assert state.season_count_source is SeasonCountSource.PRIMARY
    assert sorted(upstreams.season_calls) == [1, 2]


@pytest.mark.anyio("asyncio")
async def test_ratings_failure_leaves_episode_loading_intact() -> None:
    upstreams = FakeUpstreams(detail_status=404)
    http_client, orchestrator = build_orchestrator(upstreams)
    async with http_client:
        state = await orchestrator.enrich(series(2))

    assert state.ratings.error is not None
    assert state.ratings.value is None
    assert state.season_count_source is SeasonCountSource.PRIMARY
    assert state.episodes.value is not None
    assert len(state.seasons.value or {}) == 2


@pytest.mark.anyio("asyncio")
async def test_missing_linking_id_skips_ratings_source() -> None:
    upstreams = FakeUpstreams(catalog_detail={"id": 1396, "name": "Obscure Show"})
    http_client, orchestrator = build_orchestrator(upstreams)
    record = MediaRecord(id=1396, kind="series")
    async with http_client:
        state = await orchestrator.enrich(record)

    assert state.link_status is LinkStatus.MISSING
    assert upstreams.catalog_calls == 1
    assert upstreams.detail_calls == 0
    assert not upstreams.season_calls
    assert state.ratings.value is None
    assert state.ratings.error is None
    assert record.title == "Obscure Show"


@pytest.mark.anyio("asyncio")
async def test_catalog_detail_fills_gaps_without_overwriting_caller_fields() -> None:
    upstreams = FakeUpstreams(
        catalog_detail={
            "id": 1396,
            "name": "Catalog Title",
            "overview": "A chemistry teacher turns to crime.",
            "number_of_seasons": 5,
            "external_ids": {"imdb_id": "tt0903747"},
        },
        total_seasons="5",
    )
    http_client, orchestrator = build_orchestrator(upstreams)
    record = MediaRecord(id=1396, kind="series", title="My Title")
    async with http_client:
        state = await orchestrator.enrich(record)

    assert record.title == "My Title"
    assert record.overview == "A chemistry teacher turns to crime."
    assert record.linking_id == "tt0903747"
    assert record.total_seasons == 5
    assert state.link_status is LinkStatus.RESOLVED


@pytest.mark.anyio("asyncio")
async def test_catalog_detail_failure_is_reported_in_state() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    settings = build_settings()
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    fetch = FetchClient(http_client)
    orchestrator = EnrichmentOrchestrator(
        settings, CatalogService(settings, fetch), RatingsService(settings, fetch), domain_cache()
    )
    async with http_client:
        state = await orchestrator.enrich(MediaRecord(id=1, kind="movie"))

    assert state.detail_error is not None
    assert state.link_status is LinkStatus.MISSING


@pytest.mark.anyio("asyncio")
async def test_movie_enrichment_loads_ratings_and_awards_only() -> None:
    upstreams = FakeUpstreams(awards="Won 4 Oscars. 157 wins & 220 nominations total")
    http_client, orchestrator = build_orchestrator(upstreams)
    async with http_client:
        state = await orchestrator.enrich(MediaRecord(id=27205, kind="movie", linking_id="tt1375666"))

    imdb = state.rating_for(RatingKind.IMDB)
    assert imdb is not None
    assert imdb.normalized == pytest.approx(0.87)
    assert state.awards.value is not None
    assert state.awards.value.oscar_wins == 4
    assert state.awards.value.total_nominations == 220
    assert not upstreams.season_calls
    assert state.seasons.value is None


@pytest.mark.anyio("asyncio")
async def test_select_season_fetches_only_that_season() -> None:
    upstreams = FakeUpstreams(total_seasons="4")
    http_client, orchestrator = build_orchestrator(upstreams)
    async with http_client:
        state = await orchestrator.enrich(series(4))
        await orchestrator.clear_cache()
        upstreams.season_calls.clear()

        await orchestrator.select_season(state, 3)

    assert dict(upstreams.season_calls) == {3: 1}
    assert state.selected_season == 3
    assert state.episodes.value is not None
    assert {episode.season for episode in state.episodes.value} == {3}


@pytest.mark.anyio("asyncio")
async def test_select_season_out_of_range_marks_episode_error() -> None:
    upstreams = FakeUpstreams(total_seasons="2")
    http_client, orchestrator = build_orchestrator(upstreams)
    async with http_client:
        state = await orchestrator.enrich(series(2))
        upstreams.season_calls.clear()
        await orchestrator.select_season(state, 7)

    assert state.episodes.error == "Season 7 is out of range"
    assert not upstreams.season_calls


@pytest.mark.anyio("asyncio")
async def test_full_season_pages_are_flagged_but_kept() -> None:
    upstreams = FakeUpstreams(total_seasons="2", episodes_per_season=3)
    http_client, orchestrator = build_orchestrator(upstreams, EPISODE_PAGE_CEILING=3)
    async with http_client:
        state = await orchestrator.enrich(series(2))

    assert state.suspect_seasons == [1, 2]
    assert state.grid_is_suspect
    assert len(state.episodes.value or []) == 3
    assert state.to_payload()["gridIsSuspect"] is True


@pytest.mark.anyio("asyncio")
async def test_episode_statistics_ignore_unrated_episodes() -> None:
    upstreams = FakeUpstreams(total_seasons="1", episodes_per_season=4)
    http_client, orchestrator = build_orchestrator(upstreams)
    async with http_client:
        state = await orchestrator.enrich(series(1))

    # Episode 1 is "N/A"; the rest are 7.2, 7.3 and 7.4.
    assert state.average_episode_rating == pytest.approx(7.3)
    highest = state.highest_rated_episode
    lowest = state.lowest_rated_episode
    assert highest is not None and highest.episode == 4
    assert lowest is not None and lowest.episode == 2


@pytest.mark.anyio("asyncio")
async def test_concurrent_enrichment_shares_requests() -> None:
    upstreams = FakeUpstreams(total_seasons="3")
    http_client, orchestrator = build_orchestrator(upstreams)
    async with http_client:
        states = await asyncio.gather(
            orchestrator.enrich(series(3)),
            orchestrator.enrich(series(3)),
            orchestrator.enrich(series(3)),
        )

    assert all(state.total_seasons == 3 for state in states)
    assert upstreams.detail_calls == 1
    assert dict(upstreams.season_calls) == {1: 1, 2: 1, 3: 1}


@pytest.mark.anyio("asyncio")
async def test_transient_season_failure_is_retried() -> None:
    upstreams = FakeUpstreams(total_seasons="1")
    upstreams.season_statuses[1] = [503]
    http_client, orchestrator = build_orchestrator(upstreams, UPSTREAM_RETRY_LIMIT=1)
    async with http_client:
        state = await orchestrator.enrich(series(1))

    assert upstreams.season_calls[1] == 2
    assert state.episodes.value is not None


@pytest.mark.anyio("asyncio")
async def test_rate_limited_season_is_not_retried() -> None:
    upstreams = FakeUpstreams(total_seasons="1")
    upstreams.season_statuses[1] = [429]
    http_client, orchestrator = build_orchestrator(upstreams, UPSTREAM_RETRY_LIMIT=2)
    async with http_client:
        state = await orchestrator.enrich(series(1))

    assert upstreams.season_calls[1] == 1
    assert state.episodes.error == "Rate limited. Please try again later."
    assert state.seasons.error == "No season data could be loaded"


@pytest.mark.anyio("asyncio")
async def test_failed_season_switch_drops_previous_episodes_and_can_be_retried() -> None:
    upstreams = FakeUpstreams(total_seasons="3")
    upstreams.season_statuses[2] = [404, 404]
    http_client, orchestrator = build_orchestrator(upstreams)
    async with http_client:
        state = await orchestrator.enrich(series(3))
        assert {episode.season for episode in state.episodes.value or []} == {1}

        await orchestrator.select_season(state, 2)
        assert state.selected_season == 2
        assert state.episodes.value is None
        assert state.episodes.error is not None
        assert not state.episodes.loading

        calls_before = upstreams.season_calls[2]
        await orchestrator.select_season(state, 2)

    assert upstreams.season_calls[2] == calls_before + 1
    assert state.episodes.error is None
    assert state.episodes.value is not None
    assert {episode.season for episode in state.episodes.value} == {2}


@pytest.mark.anyio("asyncio")
async def test_reselecting_a_loaded_season_is_a_no_op() -> None:
    upstreams = FakeUpstreams(total_seasons="2")
    http_client, orchestrator = build_orchestrator(upstreams)
    async with http_client:
        state = await orchestrator.enrich(series(2))
        upstreams.season_calls.clear()
        await orchestrator.clear_cache()
        await orchestrator.select_season(state, 1)

    assert not upstreams.season_calls
    assert {episode.season for episode in state.episodes.value or []} == {1}


@pytest.mark.anyio("asyncio")
async def test_enrich_season_fetches_only_the_requested_season() -> None:
    upstreams = FakeUpstreams(
        catalog_detail={
            "id": 1396,
            "name": "Breaking Bad",
            "number_of_seasons": 5,
            "external_ids": {"imdb_id": "tt0903747"},
        },
        total_seasons="5",
    )
    http_client, orchestrator = build_orchestrator(upstreams)
    async with http_client:
        state = await orchestrator.enrich_season(MediaRecord(id=1396, kind="series"), 2)

    assert upstreams.catalog_calls == 1
    assert upstreams.detail_calls == 1
    assert dict(upstreams.season_calls) == {2: 1}
    assert state.link_status is LinkStatus.RESOLVED
    assert state.selected_season == 2
    assert state.total_seasons == 5
    assert state.ratings.value is None
    assert state.seasons.value is None
    assert {episode.season for episode in state.episodes.value or []} == {2}
    assert state.to_payload()["selectedSeasonIsSuspect"] is False


@pytest.mark.anyio("asyncio")
async def test_enrich_season_range_follows_secondary_count() -> None:
    upstreams = FakeUpstreams(total_seasons="6")
    http_client, orchestrator = build_orchestrator(upstreams)
    async with http_client:
        allowed = await orchestrator.enrich_season(series(5), 6)
        rejected = await orchestrator.enrich_season(series(5), 7)

    assert allowed.season_count_source is SeasonCountSource.SECONDARY
    assert allowed.episodes.value is not None
    assert rejected.episodes.error == "Season 7 is out of range"
    assert dict(upstreams.season_calls) == {6: 1}


@pytest.mark.anyio("asyncio")
async def test_enrich_season_flags_a_full_page_listing() -> None:
    upstreams = FakeUpstreams(total_seasons="2", episodes_per_season=3)
    http_client, orchestrator = build_orchestrator(upstreams, EPISODE_PAGE_CEILING=3)
    async with http_client:
        state = await orchestrator.enrich_season(series(2), 1)

    assert state.selected_season_is_suspect
    assert not state.grid_is_suspect


@pytest.mark.anyio("asyncio")
async def test_enrich_season_for_a_movie_loads_nothing() -> None:
    upstreams = FakeUpstreams()
    http_client, orchestrator = build_orchestrator(upstreams)
    async with http_client:
        state = await orchestrator.enrich_season(
            MediaRecord(id=27205, kind="movie", linking_id="tt1375666"), 1
        )

    assert state.episodes.value is None
    assert upstreams.detail_calls == 0
    assert not upstreams.season_calls
