# tests/test_ingestion_service.py
"""Unit tests for reading validation and the ingestion side effects."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
from unittest.mock import MagicMock, patch
from datetime import datetime, timezone
from app.services.ingestion_service import ingest
from app.services.reading_parser import CounterReading, parse_reading
from app.services.state_cache import StateCache
from app.utils.errors import ChannelUnavailable, InvalidInput, StorageUnavailable


def make_body(**overrides):
    body = {"inCount": 10, "outCount": 4, "aforo": 6,
            "timestamp": "2024-05-01T10:00:00Z", "deviceId": "door-1"}
    body.update(overrides)
    return body


class TestParseReading:
    def test_valid_body(self):
        reading, events = parse_reading(make_body())
        assert reading == CounterReading(10, 4, 6, datetime(2024, 5, 1, 10, tzinfo=timezone.utc), "door-1")
        assert events == []

    @pytest.mark.parametrize("field", ["inCount", "outCount", "aforo"])
    def test_missing_count_rejected(self, field):
        body = make_body()
        del body[field]
        with pytest.raises(InvalidInput):
            parse_reading(body)

    @pytest.mark.parametrize("value", ["10", None, True, [1], 1.5, float("nan")])
    def test_non_numeric_count_rejected(self, value):
        with pytest.raises(InvalidInput):
            parse_reading(make_body(inCount=value))

    def test_fractional_count_message_names_integer(self):
        with pytest.raises(InvalidInput, match="must be an integer"):
            parse_reading(make_body(outCount=1.5))

    def test_integral_float_accepted(self):
        reading, _ = parse_reading(make_body(inCount=10.0))
        assert reading.in_count == 10
        assert isinstance(reading.in_count, int)

    def test_negative_aforo_kept(self):
        reading, _ = parse_reading(make_body(aforo=-2))
        assert reading.aforo == -2

    def test_non_object_body_rejected(self):
        with pytest.raises(InvalidInput):
            parse_reading([1, 2, 3])

    @pytest.mark.parametrize("device_id", [None, "", "   ", 42])
    def test_device_defaults_to_unknown(self, device_id):
        reading, _ = parse_reading(make_body(deviceId=device_id))
        assert reading.device_id == "unknown"

    def test_bad_timestamp_rejected(self):
        with pytest.raises(InvalidInput):
            parse_reading(make_body(timestamp="not-a-date"))

    def test_naive_timestamp_taken_as_utc(self):
        reading, _ = parse_reading(make_body(timestamp="2024-05-01T10:00:00"))
        assert reading.timestamp == datetime(2024, 5, 1, 10, tzinfo=timezone.utc)

    def test_micro_events_order_preserved_and_malformed_skipped(self):
        body = make_body(recentEvents=[
            {"isEntry": True, "aforoAtTime": 5, "timestamp": "2024-05-01T09:59:58Z"},
            {"isEntry": "yes", "aforoAtTime": 5},
            "garbage",
            {"isEntry": False, "aforoAtTime": 6},
        ])
        _, events = parse_reading(body)

        assert [(e.is_entry, e.aforo_at_time) for e in events] == [(True, 5), (False, 6)]
        # Missing event timestamp falls back to the reading's
        assert events[1].timestamp == datetime(2024, 5, 1, 10, tzinfo=timezone.utc)

    def test_recent_events_not_a_list_ignored(self):
        _, events = parse_reading(make_body(recentEvents={"isEntry": True}))
        assert events == []

    def test_payload_round_trip_keys(self):
        reading, _ = parse_reading(make_body())
        assert reading.to_payload() == {
            "inCount": 10, "outCount": 4, "aforo": 6,
            "timestamp": "2024-05-01T10:00:00.000Z", "deviceId": "door-1",
        }


class TestIngest:
    def test_cache_replaced_with_full_reading(self):
        cache = StateCache()
        with patch("app.services.ingestion_service.append_reading"):
            reading = ingest(make_body(), cache, MagicMock(), MagicMock())

        assert cache.get() is reading
        assert reading.in_count == 10

    def test_invalid_body_writes_nothing(self):
        cache = StateCache()
        before = cache.get()
        fanout = MagicMock()

        with patch("app.services.ingestion_service.append_reading") as mock_append:
            with pytest.raises(InvalidInput):
                ingest(make_body(inCount="x"), cache, MagicMock(), fanout)
            mock_append.assert_not_called()

        assert cache.get() is before
        fanout.publish_reading.assert_not_called()

    def test_log_then_publish_order(self):
        calls = MagicMock()
        with patch("app.services.ingestion_service.append_reading", calls.append):
            ingest(make_body(), StateCache(), MagicMock(), calls.fanout)

        assert [c[0] for c in calls.mock_calls] == ["append", "fanout.publish_reading"]

    def test_storage_failure_swallowed(self):
        cache = StateCache()
        fanout = MagicMock()
        with patch("app.services.ingestion_service.append_reading",
                   side_effect=StorageUnavailable("down")):
            reading = ingest(make_body(), cache, MagicMock(), fanout)

        assert cache.get() is reading
        fanout.publish_reading.assert_called_once_with(reading)

    def test_channel_failure_swallowed(self):
        cache = StateCache()
        fanout = MagicMock()
        fanout.publish_reading.side_effect = ChannelUnavailable("relay down")
        with patch("app.services.ingestion_service.append_reading"):
            reading = ingest(make_body(), cache, MagicMock(), fanout)

        assert cache.get() is reading

    def test_no_database_skips_log(self):
        with patch("app.services.ingestion_service.append_reading") as mock_append:
            ingest(make_body(), StateCache(), None, MagicMock())
            mock_append.assert_not_called()


class TestStateCache:
    def test_starts_at_zero(self):
        reading = StateCache().get()
        assert (reading.in_count, reading.out_count, reading.aforo) == (0, 0, 0)
        assert reading.device_id == "unknown"

    def test_replace_never_merges(self):
        cache = StateCache()
        first, _ = parse_reading(make_body(deviceId="door-1"))
        second, _ = parse_reading(make_body(inCount=11, deviceId=None))
        cache.replace(first)
        cache.replace(second)
        assert cache.get().device_id == "unknown"
        assert cache.get().in_count == 11
