"""Entry point for the FastAPI-powered enrichment service."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import TypeVar

import httpx
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from .cache import asset_cache, domain_cache
from .config import settings
from .database import Database
from .errors import FetchError, HTTPStatusError, RateLimitedError
from .models import Favorite, MediaKind, MediaRecord
from .services.daily_pick import DailyPickSelector, PickStore
from .services.enrichment import EnrichmentOrchestrator
from .services.fetch import FetchClient
from .services.images import ImageService
from .services.omdb import RatingsService
from .services.tmdb import CATEGORIES, CatalogService

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

ServiceT = TypeVar("ServiceT")

MEDIA_KINDS = {"movie", "series"}


class DailyPickRequest(BaseModel):
    """Favorites supplied by the caller for a daily pick request."""

    favorites: list[Favorite] = Field(default_factory=list)
    favorite_ids: list[int] | None = Field(default=None, alias="favoriteIds")
    refresh: bool = False


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            timeout=httpx.Timeout(
                settings.http_timeout_seconds,
                connect=settings.http_connect_timeout_seconds,
            ),
            headers={"User-Agent": f"{settings.app_name} (plotline)"},
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    fetch_client = FetchClient(http_client)
    catalog = CatalogService(settings, fetch_client)
    ratings = RatingsService(settings, fetch_client)
    orchestrator = EnrichmentOrchestrator(settings, catalog, ratings, domain_cache())
    images = ImageService(
        settings,
        fetch_client,
        asset_cache(settings.image_cache_max_items, settings.image_cache_max_bytes),
    )
    selector = DailyPickSelector(
        settings,
        catalog,
        PickStore(database.session_factory, settings.daily_pick_key),
    )

    fastapi_app.state.catalog = catalog
    fastapi_app.state.orchestrator = orchestrator
    fastapi_app.state.images = images
    fastapi_app.state.daily_pick = selector
    fastapi_app.state.database = database

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Catalog records enriched with cross-platform ratings and episode scores",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def _require(fastapi_app: FastAPI, name: str, expected: type[ServiceT]) -> ServiceT:
    service = getattr(fastapi_app.state, name, None)
    if not isinstance(service, expected):
        raise RuntimeError(f"{expected.__name__} not initialised")
    return service


def _validate_kind(kind: str) -> MediaKind:
    if kind not in MEDIA_KINDS:
        raise HTTPException(status_code=400, detail="Unsupported media kind")
    return kind  # type: ignore[return-value]


def _upstream_failure(exc: FetchError) -> HTTPException:
    if isinstance(exc, RateLimitedError):
        headers = None
        if exc.retry_after is not None:
            headers = {"Retry-After": str(int(exc.retry_after))}
        return HTTPException(status_code=429, detail=str(exc), headers=headers)
    if isinstance(exc, HTTPStatusError) and exc.status_code == 404:
        return HTTPException(status_code=404, detail="Not found upstream")
    return HTTPException(status_code=502, detail=str(exc))


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/catalog/{kind}/{category}")
    async def list_category(kind: str, category: str, page: int = 1) -> JSONResponse:
        if kind not in MEDIA_KINDS | {"all"}:
            raise HTTPException(status_code=400, detail="Unsupported media kind")
        if category not in CATEGORIES:
            raise HTTPException(status_code=404, detail="Unknown category")
        if kind == "all" and category != "trending":
            raise HTTPException(status_code=400, detail="Only trending lists mix media kinds")
        catalog = _require(fastapi_app, "catalog", CatalogService)
        try:
            records = await catalog.list_category(kind, category, page=page)  # type: ignore[arg-type]
        except FetchError as exc:
            raise _upstream_failure(exc) from exc
        return JSONResponse({"results": [record.to_payload() for record in records]})

    @fastapi_app.get("/search")
    async def search(query: str = "", page: int = 1) -> JSONResponse:
        catalog = _require(fastapi_app, "catalog", CatalogService)
        try:
            records = await catalog.search(query, page=page)
        except FetchError as exc:
            raise _upstream_failure(exc) from exc
        return JSONResponse({"results": [record.to_payload() for record in records]})

    @fastapi_app.get("/media/{kind}/{media_id}")
    async def media_detail(kind: str, media_id: int, season: int = 1) -> JSONResponse:
        record = MediaRecord(id=media_id, kind=_validate_kind(kind))
        orchestrator = _require(fastapi_app, "orchestrator", EnrichmentOrchestrator)
        state = await orchestrator.enrich(record, selected_season=season)
        return JSONResponse(state.to_payload())

    @fastapi_app.get("/media/{kind}/{media_id}/seasons/{season}")
    async def media_season(kind: str, media_id: int, season: int) -> JSONResponse:
        if _validate_kind(kind) != "series":
            raise HTTPException(status_code=400, detail="Only series have seasons")
        orchestrator = _require(fastapi_app, "orchestrator", EnrichmentOrchestrator)
        state = await orchestrator.enrich_season(MediaRecord(id=media_id, kind="series"), season)
        payload = state.to_payload()
        return JSONResponse(
            {
                "season": state.selected_season,
                "totalSeasons": state.total_seasons,
                "episodes": payload["episodes"],
                "suspect": state.selected_season_is_suspect,
            }
        )

    @fastapi_app.get("/media/{kind}/{media_id}/credits")
    async def media_credits(kind: str, media_id: int) -> JSONResponse:
        catalog = _require(fastapi_app, "catalog", CatalogService)
        try:
            credits = await catalog.credits(_validate_kind(kind), media_id)
        except FetchError as exc:
            raise _upstream_failure(exc) from exc
        return JSONResponse(credits.model_dump(exclude={"success", "status_message"}))

    @fastapi_app.get("/collections/{collection_id}")
    async def collection(collection_id: int) -> JSONResponse:
        catalog = _require(fastapi_app, "catalog", CatalogService)
        try:
            grouping = await catalog.collection(collection_id)
        except FetchError as exc:
            raise _upstream_failure(exc) from exc
        return JSONResponse(
            {
                "id": grouping.id,
                "name": grouping.name,
                "overview": grouping.overview,
                "parts": [record.to_payload() for record in grouping.ordered_parts()],
            }
        )

    @fastapi_app.get("/people/{person_id}/movies")
    async def filmography(person_id: int) -> JSONResponse:
        catalog = _require(fastapi_app, "catalog", CatalogService)
        try:
            records = await catalog.person_movie_credits(person_id)
        except FetchError as exc:
            raise _upstream_failure(exc) from exc
        return JSONResponse({"results": [record.to_payload() for record in records]})

    @fastapi_app.post("/daily-pick")
    async def daily_pick(body: DailyPickRequest) -> JSONResponse:
        selector = _require(fastapi_app, "daily_pick", DailyPickSelector)
        if body.refresh:
            result = await selector.refresh(body.favorites, body.favorite_ids)
        else:
            result = await selector.load(body.favorites, body.favorite_ids)
        return JSONResponse(result.to_payload())

    @fastapi_app.get("/images/{size}/{path:path}")
    async def image(size: str, path: str) -> Response:
        images = _require(fastapi_app, "images", ImageService)
        try:
            content = await images.load(f"/{path.lstrip('/')}", size)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        if content is None:
            raise HTTPException(status_code=404, detail="Image unavailable")
        return Response(content=content, media_type=_guess_media_type(path))


def _guess_media_type(path: str) -> str:
    lowered = path.lower()
    if lowered.endswith(".png"):
        return "image/png"
    if lowered.endswith(".webp"):
        return "image/webp"
    if lowered.endswith(".svg"):
        return "image/svg+xml"
    return "image/jpeg"


app = create_app()


