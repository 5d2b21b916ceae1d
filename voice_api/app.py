#!/usr/bin/env python3
"""
HighestVoice API server.

Read-only views over the replica the indexer maintains, plus an optional
in-process sync worker (RUN_SYNC_WORKER=true) that the POST /api/sync
endpoint can trigger.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from voice_indexer.config import load_config
from voice_indexer.indexer import build_scheduler
from voice_indexer.scheduler import SyncScheduler
from voice_indexer.store import Store

from .config import Settings, get_settings
from .database import check_database_connection
from .routes.profile import router as profile_router
from .routes.sync import router as sync_router
from .routes.winners import router as winners_router

logger = logging.getLogger(__name__)


def _start_sync_worker(settings: Settings, store: Store) -> Optional[SyncScheduler]:
    try:
        config = load_config(settings.indexer_config)
        scheduler = build_scheduler(config, store)
    except Exception as e:
        logger.error(f"❌ Could not start sync worker: {e}")
        return None
    scheduler.start()
    return scheduler


def create_app(settings: Settings = None, store: Store = None, scheduler: SyncScheduler = None) -> FastAPI:
    """Build the app; tests pass their own store and scheduler"""
    settings = settings or get_settings()
    store = store or Store.from_url(settings.get_effective_database_url())
    store.init_schema()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("=" * 60)
        logger.info("🚀 Starting HighestVoice API")
        logger.info(f"API Host: {settings.api_host}:{settings.api_port}")
        logger.info(f"Database: {store.engine.url.render_as_string(hide_password=True)}")
        logger.info(f"Default chain: {settings.default_chain_id}")
        logger.info("=" * 60)

        owns_worker = False
        if app.state.scheduler is None and settings.run_sync_worker:
            app.state.scheduler = _start_sync_worker(settings, store)
            owns_worker = app.state.scheduler is not None
        yield
        if owns_worker:
            app.state.scheduler.stop()
        logger.info("HighestVoice API stopped")

    app = FastAPI(
        title="HighestVoice API",
        description="Auction winners, tips and sync status",
        version="1.0.0",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.scheduler = scheduler

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(winners_router)
    app.include_router(profile_router)
    app.include_router(sync_router)

    @app.get("/api/health")
    def health_check(request: Request):
        """Health check endpoint"""
        healthy = check_database_connection(request.app.state.store)
        content = {
            "status": "healthy" if healthy else "unhealthy",
            "database": "connected" if healthy else "unavailable",
            "sync_worker": request.app.state.scheduler is not None,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if not healthy:
            return JSONResponse(status_code=503, content=content)
        return content

    return app


def main():
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    settings = get_settings()
    uvicorn.run(
        create_app(settings),
        host=settings.api_host,
        port=settings.api_port,
        log_level="info"
    )


if __name__ == "__main__":
    main()
