"""Typed operations against the Open Movie Database (OMDb) ratings source."""

from __future__ import annotations

import logging
from typing import Any

from ..config import Settings
from ..models import EpisodeRecord, RatingRecord
from ..schemas import RatingsDetail, SeasonListing
from .fetch import FetchClient

logger = logging.getLogger(__name__)


class RatingsService:
    """Client for the secondary source, addressed by linking (IMDb) id.

    The source is rate limited, so callers are expected to put a
    :class:`~plotline.cache.DedupCache` in front of it.
    """

    def __init__(self, settings: Settings, fetch_client: FetchClient):
        if not settings.omdb_api_key:
            logger.warning("OMDb API key is not configured; ratings requests will fail")
        self._settings = settings
        self._fetch = fetch_client
        self._base_url = str(settings.omdb_api_url).rstrip("/") + "/"

    async def details(self, linking_id: str) -> RatingsDetail:
        """Fetch the full record: ratings array, season count and awards."""

        return await self._get(RatingsDetail, {"i": linking_id, "plot": "full"})

    async def ratings(self, linking_id: str) -> list[RatingRecord]:
        detail = await self.details(linking_id)
        return detail.rating_records()

    async def season(self, linking_id: str, season: int) -> list[EpisodeRecord]:
        """Fetch the episode listing for one season."""

        listing = await self._get(SeasonListing, {"i": linking_id, "Season": str(season)})
        return listing.episode_records(season)

    async def _get(self, model: type[Any], params: dict[str, Any]):
        query = {"apikey": self._settings.omdb_api_key or ""}
        query.update(params)
        return await self._fetch.fetch(self._base_url, model, params=query)
