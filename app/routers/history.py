# app/routers/history.py
"""Paginated, filterable reading history with whole-table statistics."""

from datetime import timedelta
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from app.config import settings
from app.database import get_db
from app.schemas.counter import CounterLogOut, HistoryOut, HistoryStatsOut, PaginationOut
from app.services.history_service import HistoryFilter, empty_stats, query_history, table_stats
from app.services.reading_parser import parse_timestamp
from app.utils.errors import StorageUnavailable
from app.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)


def _is_date_only(value: Optional[str]) -> bool:
    return bool(value) and "T" not in value and " " not in value.strip()


@router.get("/history", response_model=HistoryOut, summary="Reading history")
def get_history(
    limit: int = Query(settings.HISTORY_DEFAULT_LIMIT, ge=1, le=settings.HISTORY_MAX_LIMIT),
    offset: int = Query(0, ge=0),
    device_id: Optional[str] = Query(None, alias="deviceId"),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    db: Optional[Session] = Depends(get_db),
):
    """
    Rows matching the filters, newest first. `stats` and `pagination.total`
    always describe the entire table, not the filtered subset.
    A date-only endDate includes that whole day.
    """
    start = parse_timestamp(start_date, "startDate")
    end = parse_timestamp(end_date, "endDate")
    if end is not None and _is_date_only(end_date):
        end = end + timedelta(days=1) - timedelta(microseconds=1)

    if db is None:
        return _empty_history(limit, offset, "Database not configured")

    flt = HistoryFilter(device_id=device_id, start=start, end=end, limit=limit, offset=offset)
    try:
        rows = query_history(db, flt)
        stats = table_stats(db)
    except StorageUnavailable as e:
        logger.error(f"History query failed: {e}")
        return _empty_history(limit, offset, "Database unavailable")

    logger.debug(f"History: {len(rows)} rows (limit={limit} offset={offset} device={device_id})")
    return HistoryOut(
        history=[CounterLogOut.model_validate(row) for row in rows],
        stats=HistoryStatsOut(**stats),
        pagination=PaginationOut(limit=limit, offset=offset, total=stats["total_records"]),
    )


def _empty_history(limit: int, offset: int, message: str) -> HistoryOut:
    return HistoryOut(
        history=[],
        stats=HistoryStatsOut(**empty_stats()),
        pagination=PaginationOut(limit=limit, offset=offset, total=0),
        message=message,
    )
