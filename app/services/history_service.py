# app/services/history_service.py
"""
Durable log access: append readings + micro-events, fetch the latest row,
filtered history, and whole-table statistics.

Every database error is rolled back and re-raised as StorageUnavailable so
callers can degrade instead of failing.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from app.models.counter_event import CounterEvent
from app.models.counter_log import CounterLog
from app.services.reading_parser import CounterReading, MicroEvent, UNKNOWN_DEVICE
from app.utils.errors import StorageUnavailable
from app.utils.logger import get_logger
from app.utils.time_utils import as_utc, to_naive_utc, utc_now

logger = get_logger(__name__)


@dataclass
class HistoryFilter:
    device_id: Optional[str] = None
    start: Optional[datetime] = None     # inclusive
    end: Optional[datetime] = None       # inclusive
    limit: int = 50
    offset: int = 0


def _storage_error(db: Session, action: str, exc: Exception) -> StorageUnavailable:
    try:
        db.rollback()
    except SQLAlchemyError as rollback_exc:
        logger.warning(f"Rollback after failed {action} also failed: {rollback_exc}")
    return StorageUnavailable(f"{action} failed: {exc}")


def log_to_reading(row: CounterLog) -> CounterReading:
    return CounterReading(
        in_count=row.in_count or 0,
        out_count=row.out_count or 0,
        aforo=row.aforo or 0,
        timestamp=as_utc(row.timestamp or row.created_at),
        device_id=row.device_id or UNKNOWN_DEVICE,
    )


def append_reading(db: Session, reading: CounterReading, events: list[MicroEvent]) -> None:
    """
    Insert the reading, then each micro-event in order, one commit per row.
    A failure part-way through leaves earlier rows committed.
    """
    now = to_naive_utc(utc_now())
    try:
        db.add(CounterLog(
            in_count=reading.in_count,
            out_count=reading.out_count,
            aforo=reading.aforo,
            device_id=reading.device_id,
            timestamp=to_naive_utc(reading.timestamp),
            created_at=now,
        ))
        db.commit()

        for event in events:
            db.add(CounterEvent(
                device_id=reading.device_id,
                is_entry=event.is_entry,
                aforo_at_time=event.aforo_at_time,
                event_timestamp=to_naive_utc(event.timestamp),
                created_at=now,
            ))
            db.commit()
    # Driver bind errors (e.g. an int too large for the column) are not wrapped
    except (SQLAlchemyError, OverflowError, TypeError, ValueError) as e:
        raise _storage_error(db, "append_reading", e) from e

    logger.debug(f"Logged reading in={reading.in_count} out={reading.out_count} "
                 f"aforo={reading.aforo} device={reading.device_id} (+{len(events)} events)")


def latest_reading(db: Session) -> Optional[CounterReading]:
    """Most recently received row, or None for an empty table."""
    try:
        row = (
            db.query(CounterLog)
            .order_by(CounterLog.created_at.desc(), CounterLog.id.desc())
            .first()
        )
    except SQLAlchemyError as e:
        raise _storage_error(db, "latest_reading", e) from e
    return log_to_reading(row) if row else None


def recent_logs(db: Session, limit: int) -> list[CounterLog]:
    """Last `limit` rows, newest-received first."""
    try:
        return (
            db.query(CounterLog)
            .order_by(CounterLog.created_at.desc(), CounterLog.id.desc())
            .limit(limit)
            .all()
        )
    except SQLAlchemyError as e:
        raise _storage_error(db, "recent_logs", e) from e


def query_history(db: Session, flt: HistoryFilter) -> list[CounterLog]:
    """Filtered page of rows, newest timestamp first."""
    q = db.query(CounterLog)
    if flt.device_id:
        q = q.filter(CounterLog.device_id == flt.device_id)
    if flt.start:
        q = q.filter(CounterLog.timestamp >= to_naive_utc(flt.start))
    if flt.end:
        q = q.filter(CounterLog.timestamp <= to_naive_utc(flt.end))
    try:
        return (
            q.order_by(CounterLog.timestamp.desc(), CounterLog.id.desc())
            .limit(flt.limit)
            .offset(flt.offset)
            .all()
        )
    except SQLAlchemyError as e:
        raise _storage_error(db, "query_history", e) from e


def table_stats(db: Session) -> dict:
    """Aggregates over the entire counter_logs table, ignoring any filter."""
    try:
        total, max_in, max_out, max_aforo, first, last = db.query(
            func.count(CounterLog.id),
            func.max(CounterLog.in_count),
            func.max(CounterLog.out_count),
            func.max(CounterLog.aforo),
            func.min(CounterLog.timestamp),
            func.max(CounterLog.timestamp),
        ).one()
    except SQLAlchemyError as e:
        raise _storage_error(db, "table_stats", e) from e

    return {
        "total_records": total or 0,
        "max_entries": max_in,
        "max_exits": max_out,
        "max_aforo": max_aforo,
        "first_record": as_utc(first),
        "last_record": as_utc(last),
    }


def empty_stats() -> dict:
    return {
        "total_records": 0,
        "max_entries": None,
        "max_exits": None,
        "max_aforo": None,
        "first_record": None,
        "last_record": None,
    }
