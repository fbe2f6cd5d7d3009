"""Event stream endpoints: Server-Sent Events and a WebSocket mirror.

Both transports deliver every event on the bus; clients filter ``log``
events by the channel they were handed when submitting a job.
"""

import asyncio
import contextlib
import json
import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse

from mergebox.api.routes import get_job_manager
from mergebox.services.event_bus import EventBus, Subscriber, format_sse
from mergebox.services.job_manager import JobManager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["events"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


async def sse_events(bus: EventBus, subscriber: Subscriber) -> AsyncIterator[str]:
    """Frames for one SSE connection; unsubscribes when the client goes away."""
    try:
        # comment frame so proxies and browsers see the stream open
        yield ": connected\n\n"
        while True:
            event = await subscriber.get()
            yield format_sse(event)
    finally:
        bus.unsubscribe(subscriber)


@router.get("/events")
async def events(manager: JobManager = Depends(get_job_manager)) -> StreamingResponse:
    """Server-Sent Events stream of every published event."""
    subscriber = manager.bus.subscribe()
    return StreamingResponse(
        sse_events(manager.bus, subscriber),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


async def forward_events(websocket: WebSocket, subscriber: Subscriber) -> None:
    """Send each event as a JSON text frame until the socket fails."""
    while True:
        event = await subscriber.get()
        try:
            await websocket.send_text(json.dumps({"type": event.kind, **event.data}))
        except Exception as e:
            logger.warning(f"Failed to send message: {e}")
            return


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, manager: JobManager = Depends(get_job_manager)):
    """WebSocket mirror of the event stream."""
    await websocket.accept()
    subscriber = manager.bus.subscribe()
    sender = asyncio.create_task(forward_events(websocket, subscriber))
    try:
        while True:
            # Nothing is expected from the client; reading detects disconnects
            data = await websocket.receive_text()
            logger.debug(f"Received WebSocket message: {data}")
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
    finally:
        sender.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sender
        manager.bus.unsubscribe(subscriber)
