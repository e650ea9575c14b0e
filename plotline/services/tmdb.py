"""Typed operations against The Movie Database (TMDB) catalog."""

from __future__ import annotations

import logging
from typing import Any, Literal

from ..config import Settings
from ..models import MediaKind, MediaRecord
from ..schemas import (
    CatalogDetail,
    CatalogPage,
    Collection,
    Credits,
    PersonCredits,
)
from .fetch import FetchClient

logger = logging.getLogger(__name__)

Category = Literal["trending", "popular", "top_rated"]
ListingKind = Literal["movie", "series", "all"]

CATEGORIES: tuple[str, ...] = ("trending", "popular", "top_rated")


class CatalogService:
    """Client for the primary catalog: listings, details, search and credits.

    Every method is a single request/response mapping; caching is layered on
    top by callers.
    """

    def __init__(self, settings: Settings, fetch_client: FetchClient):
        if not settings.tmdb_api_key:
            logger.warning("TMDB API key is not configured; catalog requests will fail")
        self._settings = settings
        self._fetch = fetch_client
        self._base_url = str(settings.tmdb_api_url).rstrip("/")

    async def list_category(
        self,
        kind: ListingKind,
        category: Category,
        *,
        page: int = 1,
    ) -> list[MediaRecord]:
        """Return one page of trending, popular or top rated titles."""

        if category not in CATEGORIES:
            raise ValueError(f"Unknown catalog category: {category}")
        if category == "trending":
            path = f"/trending/{self._segment(kind, allow_all=True)}/week"
            params: dict[str, Any] = {}
        else:
            path = f"/{self._segment(kind)}/{category}"
            params = {"page": max(1, int(page))}

        payload = await self._get(path, CatalogPage, params)
        fixed_kind = None if kind == "all" else kind
        return [
            item.to_record(fixed_kind)
            for item in payload.results
            if fixed_kind is not None or item.media_type in {"movie", "tv"}
        ]

    async def details(self, kind: MediaKind, media_id: int) -> MediaRecord:
        """Fetch full details including the external (linking) identifier."""

        detail = await self._get(
            f"/{self._segment(kind)}/{media_id}",
            CatalogDetail,
            {"append_to_response": "external_ids"},
        )
        return detail.to_record(kind)

    async def search(self, query: str, *, page: int = 1) -> list[MediaRecord]:
        """Search movies and series, keeping only results that have a poster."""

        normalized = (query or "").strip()
        if not normalized:
            return []
        payload = await self._get(
            "/search/multi",
            CatalogPage,
            {"query": normalized, "page": max(1, int(page))},
        )
        return [
            item.to_record()
            for item in payload.results
            if item.media_type in {"movie", "tv"} and item.poster_path
        ]

    async def credits(self, kind: MediaKind, media_id: int) -> Credits:
        return await self._get(f"/{self._segment(kind)}/{media_id}/credits", Credits)

    async def collection(self, collection_id: int) -> Collection:
        """Fetch a franchise grouping with all of its parts."""

        return await self._get(f"/collection/{collection_id}", Collection)

    async def person_movie_credits(self, person_id: int) -> list[MediaRecord]:
        """Return a person's filmography as movie records, newest first."""

        payload = await self._get(f"/person/{person_id}/movie_credits", PersonCredits)
        unique: dict[int, MediaRecord] = {}
        for item in payload.cast:
            unique.setdefault(item.id, item.to_record("movie"))
        return sorted(
            unique.values(),
            key=lambda record: record.release_date or "",
            reverse=True,
        )

    async def recommendations(self, kind: MediaKind, media_id: int) -> list[MediaRecord]:
        """Return titles the catalog recommends for viewers of ``media_id``."""

        payload = await self._get(
            f"/{self._segment(kind)}/{media_id}/recommendations", CatalogPage
        )
        return [item.to_record(kind) for item in payload.results]

    async def _get(self, path: str, model: type[Any], params: dict[str, Any] | None = None):
        query: dict[str, Any] = {
            "api_key": self._settings.tmdb_api_key or "",
            "language": self._settings.tmdb_language,
        }
        if params:
            query.update(params)
        return await self._fetch.fetch(f"{self._base_url}{path}", model, params=query)

    @staticmethod
    def _segment(kind: str, *, allow_all: bool = False) -> str:
        if kind == "movie":
            return "movie"
        if kind == "series":
            return "tv"
        if kind == "all" and allow_all:
            return "all"
        raise ValueError(f"Unsupported media kind: {kind}")
