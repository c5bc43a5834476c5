"""
Mempool watcher API routes.

Exposes watcher status and metrics, a manual poll trigger and a
server-sent event stream of newly surfaced transactions.
"""

from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from mempool_watcher.watcher.poller import get_watcher

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/mempool", tags=["mempool"])


class PollTriggerResponse(BaseModel):
    """Response for manual poll trigger."""

    run_id: str
    status: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class WatcherStatusResponse(BaseModel):
    """Response for watcher status."""

    running: bool
    enabled: bool
    last_poll_time: Optional[str]
    circuit_breaker: Dict[str, Any]
    cache_size: int
    subscribers: int
    last_run: Optional[Dict[str, Any]]
    metrics_24h: Dict[str, Any]
    success_rate_24h: float
    config: Dict[str, Any]


class MetricsResponse(BaseModel):
    """Response for metrics endpoint."""

    enabled: bool
    aggregate: Dict[str, Any]
    success_rate: float
    recent_runs: list[Dict[str, Any]]


@router.get("/status", response_model=WatcherStatusResponse)
async def get_status():
    """Current watcher state, cache size, subscriber count and last cycle."""
    return get_watcher().get_status()


@router.get("/metrics", response_model=MetricsResponse)
async def get_metrics(hours: Optional[int] = None):
    """
    Get aggregate metrics for polling cycles.

    Args:
        hours: Limit to last N hours (omit for all history)
    """
    return get_watcher().get_metrics(hours=hours)


@router.post("/poll", response_model=PollTriggerResponse)
async def trigger_poll():
    """
    Run one polling cycle immediately.

    Transactions surfaced by this cycle are delivered to current
    subscribers exactly like the ones found by the background loop.
    """
    watcher = get_watcher()
    if watcher.running:
        # The background loop owns the dedup cache.
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Watcher loop is running; manual polls are only allowed while it is stopped",
        )
    if watcher.cycle_in_progress:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A polling cycle is already in progress",
        )

    result = await watcher.poll_once()
    if result["status"] == "failed":
        message = f"Poll failed: {result.get('error', 'unknown error')}"
    else:
        message = f"Poll completed, {result['published']} new transaction(s) published"

    return PollTriggerResponse(
        run_id=result["run_id"],
        status=result["status"],
        message=message,
        details=result,
    )


@router.get("/stream")
async def stream_transactions(request: Request):
    """
    Stream newly surfaced transactions as server-sent events.

    Each event carries one MempoolItem as JSON. Only transactions published
    after the client connected are sent.
    """
    subscription = get_watcher().subscribe()
    logger.info("stream.connected", subscriber_id=subscription.id)

    async def event_source():
        try:
            async for item in subscription:
                if await request.is_disconnected():
                    break
                yield f"id: {item.tx_hash}\ndata: {item.model_dump_json(by_alias=True)}\n\n"
        finally:
            subscription.close()
            logger.info(
                "stream.disconnected",
                subscriber_id=subscription.id,
                delivered=subscription.delivered,
                dropped=subscription.dropped,
            )

    return StreamingResponse(event_source(), media_type="text/event-stream")
