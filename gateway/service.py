"""Application factory that exposes the account gateway over HTTP."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, List, Optional, Tuple

from fastapi import FastAPI, Request, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import GatewaySettings, load_settings
from .database import Database
from .handlers import GatewayContext
from .identity import IdentityProvider, LocalIdentityProvider, SupabaseAuthClient
from .ratelimit import RateLimiter
from .responses import error_response
from .router import RequestRouter
from .store import PostgRESTRecordStore, RecordStore, SQLiteRecordStore

logger = logging.getLogger("accounts.gateway.service")


def build_collaborators(settings: GatewaySettings) -> Tuple[RecordStore, IdentityProvider]:
    """Construct the record store and identity provider for ``settings.backend``."""

    if settings.backend == "supabase":
        if not settings.supabase_url or not settings.supabase_anon_key:
            raise ValueError("Supabase URL or Key is missing")
        logger.info("Using Supabase backend at %s", settings.supabase_url)
        store: RecordStore = PostgRESTRecordStore(
            settings.supabase_url,
            settings.service_key or settings.supabase_anon_key,
            timeout=settings.upstream_timeout,
        )
        identity: IdentityProvider = SupabaseAuthClient(
            settings.supabase_url,
            settings.supabase_anon_key,
            service_key=settings.supabase_service_key,
            timeout=settings.upstream_timeout,
        )
        return store, identity

    database = Database(settings.database_path)
    database.initialize()
    logger.info("Using SQLite backend at %s", settings.database_path)
    return SQLiteRecordStore(database), LocalIdentityProvider(database)


def create_app(
    settings: Optional[GatewaySettings] = None,
    *,
    store: Optional[RecordStore] = None,
    identity: Optional[IdentityProvider] = None,
    clock: Optional[Callable[[], int]] = None,
) -> FastAPI:
    """Create the gateway ASGI application.

    Collaborators that are not supplied are built from ``settings``; only those
    built here are closed when the application shuts down.
    """

    if settings is None:
        settings = load_settings()

    owned: List[object] = []
    if store is None or identity is None:
        default_store, default_identity = build_collaborators(settings)
        if store is None:
            store = default_store
            owned.append(store)
        if identity is None:
            identity = default_identity
            owned.append(identity)

    context = GatewayContext(
        settings=settings,
        store=store,
        identity=identity,
        limiter=RateLimiter(store, clock=clock),
    )
    router = RequestRouter(context)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        try:
            yield
        finally:
            for collaborator in owned:
                await collaborator.aclose()  # type: ignore[attr-defined]

    app = FastAPI(
        title="Account Gateway",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.context = context
    app.state.router = router

    async def gateway_entrypoint(request: Request) -> Response:
        return await router.dispatch(request)

    # methods=None matches every HTTP method, so unknown ones reach the router's 404.
    app.add_route("/{path:path}", gateway_entrypoint, methods=None, include_in_schema=False)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(_: Request, exc: StarletteHTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return error_response(message, exc.status_code)

    return app


__all__ = ["build_collaborators", "create_app"]
