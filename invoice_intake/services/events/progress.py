"""
Progress events for one scan, from the orchestrator to a single client.

Three kinds of event:
- log: a human-readable progress line
- error: a fatal error; ends the stream
- complete: carries the final processing summary; ends the stream

There is no channel back from the client. A client disconnect is reported
by the transport through cancel(), after which further events are dropped
and the orchestrator stops scheduling new candidates.
"""

import asyncio
import json
from datetime import datetime, UTC
from typing import Literal, Optional
from dataclasses import dataclass, asdict

from loguru import logger

TERMINAL_KINDS = ("error", "complete")


@dataclass
class ProgressEvent:
    """One event on the stream."""

    kind: Literal["log", "error", "complete"]
    message: Optional[str] = None
    summary: Optional[dict] = None
    timestamp: Optional[str] = None

    def __post_init__(self):
        """Set timestamp if not provided"""
        if self.timestamp is None:
            self.timestamp = datetime.now(UTC).isoformat()

    @property
    def terminal(self) -> bool:
        return self.kind in TERMINAL_KINDS

    def to_dict(self) -> dict:
        """Drop unset fields so each kind only carries what it uses."""
        return {k: v for k, v in asdict(self).items() if v is not None}

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


class ProgressChannel:
    """
    Bounded, single-producer single-consumer event queue for one scan.

    Usage:
        channel = ProgressChannel()
        task = asyncio.create_task(orchestrator.run(request, channel))
        async for event in channel:
            send(event)
    """

    def __init__(self, maxsize: int = 100):
        self._queue: asyncio.Queue[ProgressEvent] = asyncio.Queue(maxsize=maxsize)
        self._finished = False
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def finished(self) -> bool:
        return self._finished

    def cancel(self) -> None:
        """Called by the transport when the client goes away."""
        if self._cancelled:
            return
        self._cancelled = True
        logger.info("Progress stream cancelled by client disconnect")
        # Unblock a producer waiting on a full queue
        while not self._queue.empty():
            self._queue.get_nowait()

    async def log(self, message: str) -> None:
        logger.info(message)
        await self._put(ProgressEvent(kind="log", message=message))

    async def error(self, message: str) -> None:
        logger.error("Scan failed", error=message)
        await self._put(ProgressEvent(kind="error", message=message))

    async def complete(self, summary: dict) -> None:
        await self._put(ProgressEvent(kind="complete", summary=summary))

    async def _put(self, event: ProgressEvent) -> None:
        if self._finished:
            logger.debug("Dropping event after terminal event", kind=event.kind)
            return
        if event.terminal:
            self._finished = True
        if self._cancelled:
            return
        await self._queue.put(event)

    async def __aiter__(self):
        while True:
            event = await self._queue.get()
            yield event
            if event.terminal:
                return
