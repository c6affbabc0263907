# app/routers/counter.py
"""
Device ingestion + current-state endpoints.
POST /counter — accepts one reading from the counting device.
GET  /counter — current counts, reconciled against the durable log when available.
"""

import json
from typing import Optional
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from app.config import settings
from app.database import get_db
from app.schemas.counter import (
    CounterLogOut, CounterReadingOut, CurrentStateOut, IngestedReadingOut, IngestResponse,
)
from app.services.fanout import FanOut, get_fanout
from app.services.history_service import latest_reading, recent_logs
from app.services.ingestion_service import ingest
from app.services.state_cache import StateCache, get_state_cache
from app.utils.errors import InvalidInput, StorageUnavailable
from app.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.post("/counter", response_model=IngestResponse, summary="Device webhook — ingest a reading")
async def receive_reading(
    request: Request,
    db: Optional[Session] = Depends(get_db),
    cache: StateCache = Depends(get_state_cache),
    fanout: FanOut = Depends(get_fanout),
):
    """
    Validates the counts, updates the in-memory state, then logs and
    broadcasts the reading on a best-effort basis. Only a malformed body
    fails the request (HTTP 400).
    """
    raw_body = await request.body()
    try:
        body = json.loads(raw_body) if raw_body else None
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise InvalidInput("Body is not valid JSON")

    reading = ingest(body, cache, db, fanout)
    return IngestResponse(data=IngestedReadingOut.model_validate(reading))


@router.get("/counter", response_model=CurrentStateOut, summary="Current counts + recent history")
def get_current_state(
    db: Optional[Session] = Depends(get_db),
    cache: StateCache = Depends(get_state_cache),
):
    """
    The durable log wins over the in-memory cache when it is reachable, so a
    restarted process (cache back at zero) reports the last logged reading.
    """
    if db is not None:
        try:
            latest = latest_reading(db)
            if latest is not None:
                cache.replace(latest)
            history = recent_logs(db, settings.CURRENT_HISTORY_LIMIT)
            return CurrentStateOut(
                current=CounterReadingOut.model_validate(cache.get()),
                history=[CounterLogOut.model_validate(row) for row in history],
                source="database",
            )
        except StorageUnavailable as e:
            logger.error(f"Durable log unavailable, serving memory state: {e}")

    return CurrentStateOut(
        current=CounterReadingOut.model_validate(cache.get()),
        history=[],
        source="memory",
    )
