# tests/test_event_derivation.py
"""Unit tests for entry/exit derivation, filtering, pagination and CSV export."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
from datetime import date, datetime, timedelta, timezone
from app.services.event_derivation import (
    DerivedEvent, derive_events, display_aforo, export_csv, export_filename, filter_logs, paginate,
)
from app.services.reading_parser import CounterReading

T0 = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)


def r(in_count, out_count, minutes=0, device="door-1"):
    return CounterReading(in_count, out_count, in_count - out_count,
                          T0 + timedelta(minutes=minutes), device)


R1 = r(0, 0, 0)
R2 = r(1, 0, 1)
R3 = r(1, 1, 2)


class TestDeriveEvents:
    def test_sequence_newest_first(self):
        assert derive_events([R3, R2, R1]) == [
            DerivedEvent("exit", 1),
            DerivedEvent("entry", 1),
            DerivedEvent("none", 0),
        ]

    def test_removing_middle_reading_flips_event_to_entry(self):
        # r3 vs r1: both counters rose; entry takes precedence
        assert derive_events([R3, R1]) == [DerivedEvent("entry", 1), DerivedEvent("none", 0)]

    def test_magnitude_is_the_delta(self):
        assert derive_events([r(7, 0), r(3, 0)])[0] == DerivedEvent("entry", 4)

    def test_counter_reset_is_none(self):
        assert derive_events([r(0, 0), r(5, 3)])[0] == DerivedEvent("none", 0)

    def test_empty(self):
        assert derive_events([]) == []


class TestFilterLogs:
    def test_type_filter_classifies_against_full_list(self):
        logs = [R3, R2, R1]
        assert filter_logs(logs, "exit") == [R3]
        assert filter_logs(logs, "entry") == [R2]

    def test_events_rederived_after_filtering(self):
        entries = filter_logs([R3, R2, R1], "entry")
        # Alone in the filtered view, R2 has no predecessor
        assert derive_events(entries) == [DerivedEvent("none", 0)]

    def test_day_filter(self):
        next_day = r(2, 1, minutes=24 * 60)
        assert filter_logs([next_day, R3, R2], day=date(2024, 5, 1)) == [R3, R2]

    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError):
            filter_logs([R1], "sideways")


class TestPaginate:
    def test_pages_of_100(self):
        rows = list(range(250))
        page, total = paginate(rows, 3)
        assert total == 3
        assert page == list(range(200, 250))

    def test_page_clamped(self):
        page, total = paginate(list(range(5)), 9)
        assert total == 1
        assert page == list(range(5))

    def test_empty_has_one_page(self):
        assert paginate([], 1) == ([], 1)


class TestExport:
    def test_csv_rows(self):
        csv_text = export_csv([R3, R2, R1])
        lines = csv_text.strip().split("\n")

        assert lines[0] == "Timestamp,Type,Total In,Total Out,Occupancy,Change,Device"
        assert lines[1] == "01/05/2024 10:02:00,exit,1,1,0,1,door-1"
        assert lines[2] == "01/05/2024 10:01:00,entry,1,0,1,1,door-1"
        assert lines[3] == "01/05/2024 10:00:00,N/A,0,0,0,0,door-1"

    def test_filename(self):
        assert export_filename(date(2024, 5, 1)) == "logs-people-counter-2024-05-01.csv"


def test_display_aforo_clamps_negative():
    assert display_aforo(-3) == 0
    assert display_aforo(4) == 4
