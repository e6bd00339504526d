"""
FastAPI application factory.

``create_app()`` wires routers, error handlers and lifespan events into a
single ``FastAPI`` instance.

Manifesto:
    The app factory is the single composition root for the HTTP surface.
    The lifespan rebuilds gold from whatever silver is already persisted,
    starts the interval trigger, and on shutdown stops ticking and
    cancels any in-flight run.

Tags:
    api, app-factory, composition-root, FastAPI, lifespan
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from medallion.api.errors import medallion_error_handler, unhandled_exception_handler
from medallion.container import MedallionContainer
from medallion.core.errors import MedallionError
from medallion.core.logging import get_logger
from medallion.core.settings import MedallionSettings, get_settings

logger = get_logger("medallion.api")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan - startup / shutdown hooks."""
    container: MedallionContainer = app.state.container
    settings = container.settings
    logger.info(
        "api_starting",
        version=app.version,
        storage_backend=settings.storage_backend.value,
        scheduler_enabled=settings.scheduler_enabled,
    )

    container.materializer.rebuild()
    front = container.trigger_front
    if settings.scheduler_enabled:
        front.start()

    try:
        yield
    finally:
        await front.stop()
        if app.state.owns_container:
            container.close()
        logger.info("api_stopped")


def create_app(
    *,
    settings: MedallionSettings | None = None,
    container: MedallionContainer | None = None,
) -> FastAPI:
    """Build and return a fully-configured FastAPI application.

    Parameters
    ----------
    settings : MedallionSettings | None
        Override settings (useful for testing). When ``None`` the cached
        singleton from :func:`get_settings` is used.
    container : MedallionContainer | None
        Pre-built container (e.g. with an injected source). Closed by the
        caller, not by the app.
    """
    owns_container = container is None
    if container is None:
        container = MedallionContainer(settings or get_settings())
    settings = container.settings

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        lifespan=lifespan,
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        openapi_url=f"{settings.api_prefix}/openapi.json",
    )
    app.state.settings = settings
    app.state.container = container
    app.state.owns_container = owns_container

    # ── Exception handlers ───────────────────────────────────────────
    app.add_exception_handler(MedallionError, medallion_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # ── Routers ──────────────────────────────────────────────────────
    from medallion.api.routers import gold, health, runs

    prefix = settings.api_prefix

    # Health at root level (no prefix) for container healthchecks
    app.include_router(health.router)
    app.include_router(runs.router, prefix=prefix, tags=["runs"])
    app.include_router(gold.router, prefix=prefix, tags=["gold"])

    return app
