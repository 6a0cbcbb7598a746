"""
Scan endpoints.

GET  /intake/emails        lists the messages a scan over the same window would consider
POST /intake/scan          runs a scan and returns the summary as JSON
POST /intake/scan/stream   same scan, progress streamed as server-sent events:

    event: log
    data: {"kind": "log", "message": "...", "timestamp": "..."}

The stream always ends with exactly one `complete` (carrying the summary)
or `error` event.
"""

import asyncio
from datetime import date

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse
from loguru import logger

from ...core.config import Settings
from ...core.errors import AuthError, ConfigurationError
from ...models.invoice import ScanRequest
from ...services.events.progress import ProgressChannel, ProgressEvent
from ...services.intake import IntakeBrowser, IntakeOrchestrator
from ..deps import get_browser, get_orchestrator, get_settings

router = APIRouter(prefix="/intake", tags=["intake"])

# Strong references so running scans are not garbage collected
_running: set[asyncio.Task] = set()


def format_sse(event: ProgressEvent) -> str:
    return f"event: {event.kind}\ndata: {event.to_json()}\n\n"


def _scan_finished(task: asyncio.Task) -> None:
    _running.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        # Already reported on the stream as an error event
        logger.debug("Streamed scan ended with error", error=str(exc))


@router.get("/emails")
async def emails(date_from: date | None = Query(default=None, alias="dateFrom"),
                 date_to: date | None = Query(default=None, alias="dateTo"),
                 browser: IntakeBrowser = Depends(get_browser)):
    try:
        listing = await browser.list_emails(date_from, date_to)
    except (ConfigurationError, AuthError):
        raise
    except Exception as e:
        logger.exception("Email listing failed")
        return JSONResponse(status_code=502, content={"success": False, "error": str(e) or type(e).__name__})
    return listing.model_dump(mode="json", by_alias=True)


@router.post("/scan")
async def scan(req: ScanRequest | None = None,
               orchestrator: IntakeOrchestrator = Depends(get_orchestrator)):
    try:
        summary = await orchestrator.run(req or ScanRequest())
    except (ConfigurationError, AuthError):
        raise
    except Exception as e:
        return JSONResponse(status_code=502, content={"success": False, "error": str(e) or type(e).__name__})
    return summary.model_dump(mode="json", by_alias=True)


@router.post("/scan/stream")
async def scan_stream(request: Request, req: ScanRequest | None = None,
                      orchestrator: IntakeOrchestrator = Depends(get_orchestrator),
                      config: Settings = Depends(get_settings)):
    channel = ProgressChannel(maxsize=config.progress_queue_size)
    task = asyncio.create_task(orchestrator.run(req or ScanRequest(), channel))
    _running.add(task)
    task.add_done_callback(_scan_finished)

    async def events():
        try:
            async for event in channel:
                yield format_sse(event)
                if await request.is_disconnected():
                    break
        finally:
            if not channel.finished:
                channel.cancel()

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
