"""Entry point for the FastAPI-powered discovery service."""

from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager, suppress
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .config import Settings, settings as default_settings
from .database import Database
from .errors import MissingCredentialError, UpstreamError, UpstreamTimeoutError
from .models import (
    FavoriteItem,
    HomeFeed,
    ListingPage,
    MediaDetails,
    MediaItem,
    MediaType,
    SearchResultPage,
    SortBy,
    SortOrder,
    SuggestionResult,
    TimeWindow,
)
from .services.aggregator import DiscoveryService
from .services.favorites import FavoritesStore
from .services.openrouter import SuggestionClient, build_suggestion_query
from .services.tmdb import TMDBClient
from .services.typeahead import (
    MIN_QUERY_LENGTH,
    PROFILES,
    TypeaheadMode,
    TypeaheadSession,
    pick_suggestions,
)
from .storage import (
    DatabaseKeyValueStore,
    JsonFileKeyValueStore,
    KeyValueStore,
    MemoryKeyValueStore,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI


def create_app(
    settings: Settings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build the application; ``transport`` replaces the network in tests."""

    config = settings or default_settings

    @asynccontextmanager
    async def lifespan(fastapi_app: FastAPI):
        async with AsyncExitStack() as exit_stack:
            tmdb_http_client = await exit_stack.enter_async_context(
                httpx.AsyncClient(
                    base_url=str(config.tmdb_base_url),
                    timeout=httpx.Timeout(config.tmdb_timeout_seconds, connect=5.0),
                    transport=transport,
                )
            )
            openrouter_http_client = await exit_stack.enter_async_context(
                httpx.AsyncClient(
                    base_url=str(config.openrouter_api_url),
                    timeout=httpx.Timeout(60.0, connect=10.0),
                    transport=transport,
                )
            )

            backend: KeyValueStore
            if config.favorites_backend == "database":
                database = Database(config.database_url)
                exit_stack.push_async_callback(database.dispose)
                await database.create_all()
                backend = DatabaseKeyValueStore(database.session_factory)
            elif config.favorites_backend == "file":
                backend = JsonFileKeyValueStore(config.favorites_path)
            else:
                backend = MemoryKeyValueStore()

            favorites = FavoritesStore(backend)
            await favorites.load()

            tmdb = TMDBClient(config, tmdb_http_client)
            fastapi_app.state.discovery = DiscoveryService(tmdb)
            fastapi_app.state.favorites = favorites
            fastapi_app.state.suggestions = SuggestionClient(config, openrouter_http_client)
            yield

    fastapi_app = FastAPI(
        title=config.app_name,
        description="Movie and TV discovery with AI-assisted suggestions",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )

    register_error_handlers(fastapi_app)
    register_routes(fastapi_app)
    return fastapi_app


def get_discovery(fastapi_app: FastAPI) -> DiscoveryService:
    service = getattr(fastapi_app.state, "discovery", None)
    if not isinstance(service, DiscoveryService):
        raise RuntimeError("Discovery service not initialised")
    return service


def get_favorites(fastapi_app: FastAPI) -> FavoritesStore:
    store = getattr(fastapi_app.state, "favorites", None)
    if not isinstance(store, FavoritesStore):
        raise RuntimeError("Favorites store not initialised")
    return store


def get_suggestion_client(fastapi_app: FastAPI) -> SuggestionClient:
    client = getattr(fastapi_app.state, "suggestions", None)
    if not isinstance(client, SuggestionClient):
        raise RuntimeError("Suggestion client not initialised")
    return client


def register_error_handlers(fastapi_app: FastAPI) -> None:
    @fastapi_app.exception_handler(UpstreamError)
    async def _upstream_error(_: Request, exc: UpstreamError) -> JSONResponse:
        if isinstance(exc, UpstreamTimeoutError):
            return JSONResponse({"detail": exc.message}, status_code=504)
        if exc.is_not_found:
            return JSONResponse({"detail": "Not found"}, status_code=404)
        return JSONResponse({"detail": exc.message}, status_code=502)

    @fastapi_app.exception_handler(MissingCredentialError)
    async def _missing_credential(_: Request, exc: MissingCredentialError) -> JSONResponse:
        return JSONResponse({"detail": str(exc)}, status_code=503)


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/api/home", response_model=HomeFeed)
    async def home() -> HomeFeed:
        return await get_discovery(fastapi_app).load_home()

    @fastapi_app.get("/api/trending/{media_type}", response_model=ListingPage)
    async def trending(
        media_type: MediaType, window: TimeWindow = "day", page: int = 1
    ) -> ListingPage:
        return await get_discovery(fastapi_app).trending_page(media_type, window, page)

    @fastapi_app.get("/api/popular/{media_type}/{page}", response_model=ListingPage)
    async def popular(media_type: MediaType, page: int) -> ListingPage:
        try:
            return await get_discovery(fastapi_app).popular_page(media_type, page)
        except ValueError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    @fastapi_app.get("/api/search", response_model=SearchResultPage)
    async def search(
        query: str | None = None,
        genre: str | None = None,
        page: int = 1,
        sort_by: SortBy = "relevance",
        sort_order: SortOrder = "desc",
    ) -> SearchResultPage:
        return await get_discovery(fastapi_app).search(
            query=query,
            genre=genre,
            page=max(page, 1),
            sort_by=sort_by,
            sort_order=sort_order,
        )

    @fastapi_app.get("/api/typeahead")
    async def typeahead(
        query: str = "", mode: TypeaheadMode = TypeaheadMode.SEARCH
    ) -> dict[str, list[MediaItem]]:
        trimmed = query.strip()
        if len(trimmed) < MIN_QUERY_LENGTH:
            return {"suggestions": []}
        discovery = get_discovery(fastapi_app)
        try:
            page = await discovery.tmdb.fetch_search(trimmed)
        except (UpstreamError, MissingCredentialError) as exc:
            logger.warning("Type-ahead search for %r failed: %s", trimmed, exc)
            return {"suggestions": []}
        return {"suggestions": pick_suggestions(page, PROFILES[mode].limit)}

    @fastapi_app.get("/api/genres/{media_type}")
    async def genres(media_type: MediaType) -> dict[int, str]:
        return await get_discovery(fastapi_app).tmdb.get_genre_map(media_type)

    @fastapi_app.get("/api/favorites")
    async def list_favorites() -> dict[str, Any]:
        favorites = get_favorites(fastapi_app)
        return {"favorites": _dump_favorites(favorites)}

    @fastapi_app.post("/api/favorites")
    async def add_favorite(item: FavoriteItem) -> dict[str, Any]:
        favorites = get_favorites(fastapi_app)
        added = await favorites.add(item)
        return {"added": added, "favorites": _dump_favorites(favorites)}

    @fastapi_app.get("/api/favorites/{media_type}/{media_id}")
    async def favorite_status(media_type: MediaType, media_id: int) -> dict[str, bool]:
        return {"favorite": get_favorites(fastapi_app).contains(media_id, media_type)}

    @fastapi_app.delete("/api/favorites/{media_type}/{media_id}")
    async def remove_favorite(media_type: MediaType, media_id: int) -> dict[str, Any]:
        favorites = get_favorites(fastapi_app)
        removed = await favorites.remove(media_id, media_type)
        return {"removed": removed, "favorites": _dump_favorites(favorites)}

    @fastapi_app.post("/api/suggestions", response_model=SuggestionResult)
    async def suggestions(request: Request) -> SuggestionResult:
        try:
            payload = await request.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload")

        include_favorites = bool(payload.pop("includeFavorites", True))
        try:
            query = build_suggestion_query(
                payload,
                get_favorites(fastapi_app),
                include_favorites=include_favorites,
            )
        except ValidationError as exc:
            raise HTTPException(
                status_code=422,
                detail=exc.errors(include_url=False, include_context=False, include_input=False),
            ) from exc

        result = await get_suggestion_client(fastapi_app).suggest(query)
        matched = await get_discovery(fastapi_app).attach_matches(result.suggestions)
        return result.model_copy(update={"suggestions": matched})

    @fastapi_app.websocket("/ws/typeahead")
    async def typeahead_socket(
        websocket: WebSocket, mode: TypeaheadMode = TypeaheadMode.SEARCH
    ) -> None:
        await websocket.accept()
        discovery = get_discovery(fastapi_app)
        outbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        session = TypeaheadSession(
            discovery.tmdb.fetch_search,
            PROFILES[mode],
            on_change=lambda current: outbox.put_nowait(
                {"type": "snapshot", **current.snapshot().model_dump(mode="json")}
            ),
        )

        async def _pump() -> None:
            while True:
                message = await outbox.get()
                await websocket.send_json(message)

        pump = asyncio.create_task(_pump())
        try:
            while True:
                message = await websocket.receive_json()
                if not isinstance(message, dict):
                    continue
                action = message.get("action", "input")
                if action == "input":
                    session.update(str(message.get("query") or ""))
                elif action == "select":
                    try:
                        item = MediaItem.model_validate(message.get("item") or {})
                    except ValidationError:
                        continue
                    value = session.select(item)
                    outbox.put_nowait({"type": "selected", "value": value})
                elif action == "deselect":
                    session.deselect(str(message.get("label") or ""))
                elif action == "dismiss":
                    session.dismiss()
        except WebSocketDisconnect:
            logger.debug("Type-ahead socket closed")
        finally:
            await session.close()
            pump.cancel()
            with suppress(asyncio.CancelledError):
                await pump

    @fastapi_app.get("/api/{media_type}/{media_id}", response_model=MediaDetails)
    async def details(media_type: MediaType, media_id: int) -> MediaDetails:
        return await get_discovery(fastapi_app).details(media_type, media_id)


def _dump_favorites(favorites: FavoritesStore) -> list[dict[str, Any]]:
    return [item.model_dump(mode="json", by_alias=True) for item in favorites.all()]


app = create_app()
