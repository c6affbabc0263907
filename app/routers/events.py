# app/routers/events.py
"""
Live-update stream.
GET /events — server-sent events: one "connected" frame, then a
"counter-update" frame per accepted reading, with keepalive comments
while idle.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from app.config import settings
from app.services.fanout import FanOut, event_stream, get_fanout

router = APIRouter()


@router.get("/events", summary="Live counter updates (text/event-stream)")
async def stream_events(request: Request, fanout: FanOut = Depends(get_fanout)):
    return StreamingResponse(
        event_stream(request, fanout.broker, settings.STREAM_KEEPALIVE_SECONDS),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",     # Disable nginx response buffering
        },
    )
