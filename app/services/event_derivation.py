# app/services/event_derivation.py
"""
Dashboard-side views over a list of readings: entry/exit derivation,
filtering, pagination and CSV export.

Lists are newest-first. A reading's "predecessor" is the next element in
whatever list is being looked at, so filtering a list before deriving
events can change a reading's derived event. That is the dashboard's
observed behaviour and is kept as-is.
"""

import csv
import io
import math
from dataclasses import dataclass
from datetime import date
from typing import Optional, Sequence
from app.services.reading_parser import CounterReading

ENTRY = "entry"
EXIT = "exit"
NONE = "none"

FILTER_ALL = "all"
LOGS_PER_PAGE = 100

CSV_HEADER = ["Timestamp", "Type", "Total In", "Total Out", "Occupancy", "Change", "Device"]


@dataclass(frozen=True)
class DerivedEvent:
    type: str        # entry | exit | none
    magnitude: int = 0


NO_EVENT = DerivedEvent(NONE, 0)


def classify(reading: CounterReading, predecessor: Optional[CounterReading]) -> DerivedEvent:
    """Entry wins if both counters rose; only one delta is ever reported."""
    if predecessor is None:
        return NO_EVENT
    entry_change = reading.in_count - predecessor.in_count
    exit_change = reading.out_count - predecessor.out_count
    if entry_change > 0:
        return DerivedEvent(ENTRY, entry_change)
    if exit_change > 0:
        return DerivedEvent(EXIT, exit_change)
    return NO_EVENT


def derive_events(readings: Sequence[CounterReading]) -> list[DerivedEvent]:
    """One DerivedEvent per reading; the oldest (last) has no predecessor."""
    return [
        classify(r, readings[i + 1] if i + 1 < len(readings) else None)
        for i, r in enumerate(readings)
    ]


def filter_logs(logs: Sequence[CounterReading], event_type: str = FILTER_ALL,
                day: Optional[date] = None) -> list[CounterReading]:
    """
    Type filter classifies against the unfiltered list; day filter keeps
    readings whose UTC date is `day`.
    """
    filtered = list(logs)

    if event_type != FILTER_ALL:
        if event_type not in (ENTRY, EXIT):
            raise ValueError(f"Unknown event type filter: {event_type!r}")
        events = derive_events(logs)
        filtered = [log for log, ev in zip(logs, events) if ev.type == event_type]

    if day is not None:
        filtered = [log for log in filtered if log.timestamp.date() == day]

    return filtered


def paginate(rows: Sequence, page: int, page_size: int = LOGS_PER_PAGE) -> tuple[list, int]:
    """1-based page slice, clamped to the valid range. Returns (rows, total_pages)."""
    total_pages = max(1, math.ceil(len(rows) / page_size))
    page = min(max(page, 1), total_pages)
    start = (page - 1) * page_size
    return list(rows[start:start + page_size]), total_pages


def display_aforo(aforo: int) -> int:
    return max(0, aforo)


def format_timestamp(reading: CounterReading) -> str:
    return reading.timestamp.strftime("%d/%m/%Y %H:%M:%S")


def export_csv(rows: Sequence[CounterReading]) -> str:
    """CSV of the rows as displayed; events are derived against `rows` itself."""
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for reading, event in zip(rows, derive_events(rows)):
        writer.writerow([
            format_timestamp(reading),
            event.type if event.type != NONE else "N/A",
            reading.in_count,
            reading.out_count,
            reading.aforo,
            event.magnitude,
            reading.device_id or "N/A",
        ])
    return output.getvalue()


def export_filename(today: date) -> str:
    return f"logs-people-counter-{today.isoformat()}.csv"
