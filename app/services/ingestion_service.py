# app/services/ingestion_service.py
"""
Ingestion of one counter reading.

Only validation can fail the request. Once the reading is valid:
  1. the state cache is replaced           (always, synchronous)
  2. the reading + micro-events are logged (best effort, awaited)
  3. the reading is fanned out             (best effort)
Failures in 2 and 3 are logged and swallowed; the caller never sees them.
"""

from typing import Any, Optional
from sqlalchemy.orm import Session
from app.services.fanout import FanOut
from app.services.history_service import append_reading
from app.services.reading_parser import CounterReading, parse_reading
from app.services.state_cache import StateCache
from app.utils.errors import ChannelUnavailable, StorageUnavailable
from app.utils.logger import get_logger

logger = get_logger(__name__)


def ingest(body: Any, cache: StateCache, db: Optional[Session], fanout: FanOut) -> CounterReading:
    """Raises InvalidInput for a malformed body; nothing is written in that case."""
    reading, events = parse_reading(body)

    cache.replace(reading)
    logger.info(
        f"[INGEST] device={reading.device_id} in={reading.in_count} "
        f"out={reading.out_count} aforo={reading.aforo} events={len(events)}"
    )

    if db is not None:
        try:
            append_reading(db, reading, events)
        except StorageUnavailable as e:
            logger.error(f"[INGEST] Durable log write failed (non-fatal): {e}")

    try:
        fanout.publish_reading(reading)
    except ChannelUnavailable as e:
        logger.error(f"[INGEST] Live update not published (non-fatal): {e}")

    return reading
