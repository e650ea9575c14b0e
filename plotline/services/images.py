"""Catalog artwork URLs and cached image loading."""

from __future__ import annotations

import logging
from typing import Literal

from ..cache import DedupCache
from ..config import Settings
from ..errors import FetchError
from ..utils import build_image_url
from .fetch import FetchClient

logger = logging.getLogger(__name__)

PosterSize = Literal["w185", "w342", "w500", "w780"]
BackdropSize = Literal["w300", "w780", "w1280", "original"]
ProfileSize = Literal["w45", "w185", "h632"]

IMAGE_SIZES: frozenset[str] = frozenset(
    {"w45", "w185", "w300", "w342", "w500", "w780", "w1280", "h632", "original"}
)


class ImageService:
    """Resolve artwork paths to URLs and load their bytes through a bounded cache."""

    def __init__(
        self,
        settings: Settings,
        fetch_client: FetchClient,
        cache: DedupCache[str, bytes],
    ) -> None:
        self._base_url = str(settings.tmdb_image_url)
        self._fetch = fetch_client
        self._cache = cache

    def poster_url(self, path: str | None, size: PosterSize = "w500") -> str | None:
        return build_image_url(self._base_url, size, path)

    def backdrop_url(self, path: str | None, size: BackdropSize = "original") -> str | None:
        return build_image_url(self._base_url, size, path)

    def profile_url(self, path: str | None, size: ProfileSize = "w185") -> str | None:
        return build_image_url(self._base_url, size, path)

    async def load(self, path: str | None, size: str = "w500") -> bytes | None:
        """Return the image bytes, or ``None`` when the image cannot be loaded."""

        if size not in IMAGE_SIZES:
            raise ValueError(f"Unsupported image size: {size}")
        url = build_image_url(self._base_url, size, path)
        if url is None:
            return None

        async def _loader() -> bytes:
            return await self._fetch.fetch_bytes(url)

        try:
            return await self._cache.get_or_load(url, _loader)
        except FetchError as exc:
            logger.warning("Failed to load image %s: %s", url, exc)
            return None

    async def clear(self) -> None:
        await self._cache.clear()
