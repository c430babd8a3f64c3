"""FastAPI application factory."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from xobcat import __version__
from xobcat.config import XobcatSettings, database_url, load_settings
from xobcat.engine.manager import AnalysisManager
from xobcat.server.db import create_session_factory, get_engine, init_db
from xobcat.server.routes.auto_analyze import router as auto_analyze_router
from xobcat.server.routes.health import router as health_router
from xobcat.sources import SessionSource

logger = logging.getLogger(__name__)


def create_app(
    settings: XobcatSettings | None = None,
    *,
    db_url: str | None = None,
    source: SessionSource | None = None,
    manager: AnalysisManager | None = None,
    verbose: bool = False,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Application settings.  Loaded from the environment if None.
        db_url: Override database URL (e.g. "sqlite://" for in-memory tests).
        source: Session source for sampling.  Defaults to the remote session
                API when ``session_api_url`` is set, otherwise the imported
                sessions in the database.
        manager: Pre-built analysis manager (tests).
        verbose: When True, terminal handler shows DEBUG-level messages.
    """
    if settings is None:
        settings = load_settings()
        from xobcat.logging import setup_logging

        setup_logging(data_dir=settings.data_dir, verbose=verbose)

    engine = get_engine(db_url or database_url(settings))
    init_db(engine)
    session_factory = create_session_factory(engine)

    if source is None:
        if settings.session_api_url:
            from xobcat.sources.http import HttpSessionSource

            source = HttpSessionSource(
                settings.session_api_url,
                token=settings.session_api_token,
                timeout=settings.session_api_timeout,
            )
        else:
            from xobcat.sources.database import DatabaseSessionSource

            source = DatabaseSessionSource(session_factory)

    if manager is None:
        manager = AnalysisManager(settings, source)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await manager.shutdown()

    app = FastAPI(
        title="XOB CAT",
        version=__version__,
        docs_url="/api/docs",
        redoc_url=None,
        lifespan=lifespan,
    )

    # Store shared objects in app state for the routes
    app.state.settings = settings
    app.state.db_factory = session_factory
    app.state.manager = manager

    app.include_router(health_router)
    app.include_router(auto_analyze_router)

    logger.info("XOB CAT API ready (source: %s)", type(source).__name__)
    return app
