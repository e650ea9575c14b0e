"""Daily recommendation derived from the caller's favorites."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Iterable

from pydantic import ValidationError
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings
from ..db_models import StoredPick
from ..errors import FetchError
from ..models import DailyPick, Favorite, MediaRecord
from .tmdb import CatalogService

logger = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = "Couldn't find new recommendations"


class PickStatus(str, Enum):
    GENERATED = "generated"
    CACHED = "cached"
    NOT_FOUND = "not_found"
    NO_FAVORITES = "no_favorites"


@dataclass(slots=True)
class PickResult:
    """Outcome of a daily pick request."""

    status: PickStatus
    recommendation: MediaRecord | None = None
    based_on: Favorite | None = None
    error: str | None = None
    attempts: int = 0

    @property
    def has_pick(self) -> bool:
        return self.recommendation is not None and self.based_on is not None

    def to_payload(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "recommendation": self.recommendation.to_payload() if self.recommendation else None,
            "basedOn": self.based_on.model_dump() if self.based_on else None,
            "error": self.error,
        }


class PickStore:
    """Persist the single daily pick row under an application-scoped key."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], key: str):
        self._session_factory = session_factory
        self._key = key

    async def load(self) -> DailyPick | None:
        async with self._session_factory() as session:
            row = await session.get(StoredPick, self._key)
            if row is None:
                return None
            try:
                return DailyPick(
                    recommendation=MediaRecord.model_validate(row.recommendation),
                    based_on_id=row.based_on_id,
                    created_at=row.created_at,
                )
            except ValidationError:
                logger.warning("Discarding unreadable daily pick stored under %s", self._key)
                return None

    async def save(self, pick: DailyPick) -> None:
        payload = pick.recommendation.model_dump(mode="json")
        async with self._session_factory() as session:
            row = await session.get(StoredPick, self._key)
            if row is None:
                session.add(
                    StoredPick(
                        key=self._key,
                        recommendation=payload,
                        based_on_id=pick.based_on_id,
                        created_at=pick.created_at,
                    )
                )
            else:
                row.recommendation = payload
                row.based_on_id = pick.based_on_id
                row.created_at = pick.created_at
            await session.commit()

    async def clear(self) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(StoredPick).where(StoredPick.key == self._key))
            await session.commit()


class DailyPickSelector:
    """Pick one recommended title per calendar day from the favorites.

    A pick stays valid for the day it was created. Forced refreshes discard it
    and never hand back the same title twice in a row.
    """

    def __init__(
        self,
        settings: Settings,
        catalog: CatalogService,
        store: PickStore,
        *,
        clock: Callable[[], datetime] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._catalog = catalog
        self._store = store
        self._max_attempts = settings.daily_pick_max_attempts
        self._clock = clock or datetime.now
        self._rng = rng or random.Random()
        self._current: DailyPick | None = None
        self._lock = asyncio.Lock()

    @property
    def current(self) -> DailyPick | None:
        return self._current

    async def load(
        self, favorites: Iterable[Favorite], favorite_ids: Iterable[int] | None = None
    ) -> PickResult:
        """Return today's pick, generating one when none is stored for today."""

        favorites = list(favorites)
        if not favorites:
            return PickResult(status=PickStatus.NO_FAVORITES)
        excluded = _favorite_id_set(favorites, favorite_ids)

        async with self._lock:
            stored = await self._read_stored()
            if stored is not None and stored.is_valid_on(self._clock().date()):
                based_on = next(
                    (favorite for favorite in favorites if favorite.id == stored.based_on_id),
                    None,
                )
                if based_on is not None:
                    self._current = stored
                    return PickResult(
                        status=PickStatus.CACHED,
                        recommendation=stored.recommendation,
                        based_on=based_on,
                    )
                logger.info("Stored pick came from a removed favorite; regenerating")
            return await self._generate(favorites, excluded, exclude_id=None)

    async def refresh(
        self, favorites: Iterable[Favorite], favorite_ids: Iterable[int] | None = None
    ) -> PickResult:
        """Discard the current pick and generate a different one."""

        favorites = list(favorites)
        if not favorites:
            return PickResult(status=PickStatus.NO_FAVORITES)
        excluded = _favorite_id_set(favorites, favorite_ids)

        async with self._lock:
            previous = self._current or await self._read_stored()
            exclude_id = previous.recommendation.id if previous is not None else None
            self._current = None
            await self._discard_stored()
            return await self._generate(favorites, excluded, exclude_id=exclude_id)

    async def _generate(
        self,
        favorites: list[Favorite],
        favorite_ids: set[int],
        *,
        exclude_id: int | None,
    ) -> PickResult:
        shuffled = list(favorites)
        self._rng.shuffle(shuffled)
        max_attempts = min(self._max_attempts, len(shuffled))

        attempts = 0
        for favorite in shuffled[:max_attempts]:
            attempts += 1
            try:
                candidates = await self._catalog.recommendations(favorite.kind, favorite.id)
            except FetchError as exc:
                logger.warning(
                    "Recommendations for favorite %s failed: %s", favorite.id, exc
                )
                continue

            usable = [
                candidate
                for candidate in candidates
                if candidate.id not in favorite_ids and candidate.id != exclude_id
            ]
            if not usable:
                continue

            choice = self._rng.choice(usable)
            pick = DailyPick(
                recommendation=choice,
                based_on_id=favorite.id,
                created_at=self._clock(),
            )
            self._current = pick
            await self._write_stored(pick)
            return PickResult(
                status=PickStatus.GENERATED,
                recommendation=choice,
                based_on=favorite,
                attempts=attempts,
            )

        logger.info("No usable recommendation after %s attempts", attempts)
        return PickResult(status=PickStatus.NOT_FOUND, error=NOT_FOUND_MESSAGE, attempts=attempts)

    async def _read_stored(self) -> DailyPick | None:
        try:
            return await self._store.load()
        except SQLAlchemyError:
            logger.exception("Failed to read the stored daily pick")
            return None

    async def _write_stored(self, pick: DailyPick) -> None:
        try:
            await self._store.save(pick)
        except SQLAlchemyError:
            logger.exception("Failed to persist the daily pick")

    async def _discard_stored(self) -> None:
        try:
            await self._store.clear()
        except SQLAlchemyError:
            logger.exception("Failed to clear the stored daily pick")


def _favorite_id_set(favorites: list[Favorite], favorite_ids: Iterable[int] | None) -> set[int]:
    if favorite_ids is None:
        return {favorite.id for favorite in favorites}
    return set(favorite_ids)
