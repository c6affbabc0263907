# app/routers/health.py
"""
System health check endpoint.
Returns status of backend + durable log + relay + open streams.
"""

from typing import Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from sqlalchemy import text
from app.database import get_db
from app.services.fanout import FanOut, get_fanout
from app.utils.time_utils import isoformat_z, utc_now

router = APIRouter()


@router.get("/health", summary="System health check")
def health_check(db: Optional[Session] = Depends(get_db), fanout: FanOut = Depends(get_fanout)):
    """
    Returns:
    - Backend status
    - Database connectivity (or "disabled" when running memory-only)
    - Relay connection state (or "disabled")
    - Number of open event streams
    """
    result = {
        "status": "ok",
        "timestamp": isoformat_z(utc_now()),
        "backend": "ok",
        "database": "disabled",
        "relay": "disabled",
        "streamSubscribers": fanout.broker.subscriber_count,
    }

    if db is not None:
        try:
            db.execute(text("SELECT 1"))
            result["database"] = "ok"
        except Exception as e:
            result["database"] = f"error: {str(e)}"
            result["status"] = "degraded"

    if fanout.relay is not None:
        result["relay"] = "connected" if fanout.relay.is_connected else "disconnected"

    return result
