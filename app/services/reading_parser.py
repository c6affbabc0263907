# app/services/reading_parser.py
"""
Parses counter readings posted by the people-counting device.
Returns a normalized CounterReading plus any accompanying micro-events.

Accepted body:
    {inCount, outCount, aforo, timestamp?, deviceId?,
     recentEvents?: [{isEntry, aforoAtTime, timestamp}]}
"""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Tuple
from app.utils.errors import InvalidInput
from app.utils.logger import get_logger
from app.utils.time_utils import as_utc, isoformat_z, parse_iso, utc_now

logger = get_logger(__name__)

UNKNOWN_DEVICE = "unknown"


@dataclass(frozen=True)
class CounterReading:
    in_count: int
    out_count: int
    aforo: int               # signed; clamped to >= 0 only when displayed
    timestamp: datetime      # aware UTC
    device_id: str = UNKNOWN_DEVICE

    @classmethod
    def initial(cls) -> "CounterReading":
        """Zero reading used at process start, before any ingestion."""
        return cls(in_count=0, out_count=0, aforo=0, timestamp=_ms(utc_now()))

    def to_payload(self) -> dict:
        return {
            "inCount": self.in_count,
            "outCount": self.out_count,
            "aforo": self.aforo,
            "timestamp": isoformat_z(self.timestamp),
            "deviceId": self.device_id,
        }

    @classmethod
    def from_payload(cls, data: dict) -> "CounterReading":
        """Build from a wire payload (stream frame or history row). Raises InvalidInput."""
        if not isinstance(data, dict):
            raise InvalidInput("Reading payload must be an object")
        timestamp = parse_iso(data.get("timestamp")) if data.get("timestamp") else None
        if timestamp is None:
            raise InvalidInput(f"Invalid timestamp: {data.get('timestamp')!r}")
        return cls(
            in_count=_require_int(data, "inCount"),
            out_count=_require_int(data, "outCount"),
            aforo=_require_int(data, "aforo"),
            timestamp=_ms(timestamp),
            device_id=data.get("deviceId") or UNKNOWN_DEVICE,
        )


@dataclass(frozen=True)
class MicroEvent:
    is_entry: bool
    aforo_at_time: int
    timestamp: datetime


def _ms(value: datetime) -> datetime:
    """Truncate to millisecond precision, the precision used on the wire."""
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


def _as_int(value: Any) -> Optional[int]:
    """Return value as int if it is a finite integral number (bools excluded), else None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return int(value)
    return None


def _require_int(body: dict, key: str) -> int:
    if key not in body:
        raise InvalidInput(f"Missing field: {key}")
    value = _as_int(body[key])
    if value is None:
        raise InvalidInput(f"Field {key} must be an integer, got {body[key]!r}")
    return value


def parse_timestamp(value: Any, field_name: str = "timestamp") -> Optional[datetime]:
    """
    Parse an optional timestamp field. Empty/absent → None.
    Present but unparseable → InvalidInput.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    parsed = parse_iso(value) if isinstance(value, str) else None
    if parsed is None:
        raise InvalidInput(f"Field {field_name} is not a valid ISO-8601 timestamp: {value!r}")
    return parsed


def _parse_micro_events(raw_events: Any, default_time: datetime) -> list[MicroEvent]:
    if not isinstance(raw_events, list):
        return []

    events = []
    for i, raw in enumerate(raw_events):
        if not isinstance(raw, dict):
            logger.warning(f"recentEvents[{i}] is not an object — skipped")
            continue
        is_entry = raw.get("isEntry")
        aforo_at_time = _as_int(raw.get("aforoAtTime"))
        if not isinstance(is_entry, bool) or aforo_at_time is None:
            logger.warning(f"recentEvents[{i}] malformed ({raw}) — skipped")
            continue
        try:
            timestamp = parse_timestamp(raw.get("timestamp"), f"recentEvents[{i}].timestamp")
        except InvalidInput as e:
            logger.warning(f"{e} — skipped")
            continue
        events.append(MicroEvent(
            is_entry=is_entry,
            aforo_at_time=aforo_at_time,
            timestamp=timestamp or default_time,
        ))
    return events


def parse_reading(body: Any) -> Tuple[CounterReading, list[MicroEvent]]:
    """
    Validate and normalize an ingestion body.
    Raises InvalidInput if the counts are missing or non-numeric; nothing is
    partially accepted.
    """
    if not isinstance(body, dict):
        raise InvalidInput("Body must be a JSON object")

    in_count = _require_int(body, "inCount")
    out_count = _require_int(body, "outCount")
    aforo = _require_int(body, "aforo")

    timestamp = parse_timestamp(body.get("timestamp")) or utc_now()
    timestamp = _ms(timestamp)

    device_id = body.get("deviceId")
    if not isinstance(device_id, str) or not device_id.strip():
        device_id = UNKNOWN_DEVICE

    reading = CounterReading(
        in_count=in_count,
        out_count=out_count,
        aforo=aforo,
        timestamp=timestamp,
        device_id=device_id,
    )
    return reading, _parse_micro_events(body.get("recentEvents"), timestamp)
