from __future__ import annotations

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from mempool_watcher.core.config import get_settings
from mempool_watcher.core.logging import configure_logging, request_id_middleware
from mempool_watcher.watcher.poller import get_watcher
from mempool_watcher.watcher.router import router as mempool_router

logger = structlog.get_logger(__name__)

settings = get_settings()
configure_logging(settings.ENV, debug=settings.DEBUG)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the watcher with the app and stop it on shutdown."""
    logger.info(
        "app.starting",
        env=settings.ENV,
        source=settings.SOURCE_TYPE,
        rpc_url=settings.RPC_URL,
        lcd_url=settings.LCD_URL,
    )

    watcher = get_watcher()
    if settings.WATCHER_AUTOSTART:
        await watcher.start()
    else:
        logger.warning("app.watcher_not_started", hint="POST /mempool/poll runs a single cycle")

    yield

    logger.info("app.stopping")
    if watcher.running:
        await watcher.stop()
    else:
        await watcher.source.close()
    logger.info("app.stopped")


app = FastAPI(title="Mempool Watcher", version="0.1.0", lifespan=lifespan)
app.middleware("http")(request_id_middleware)
app.include_router(mempool_router)


@app.get("/")
def health_check():
    return {"status": "ok"}


@app.get("/healthz")
def healthz():
    watcher = get_watcher()
    return {"status": "healthy", "env": settings.ENV, "watcher_running": watcher.running}
