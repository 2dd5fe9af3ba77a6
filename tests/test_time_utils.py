import datetime
from unittest.mock import MagicMock

import pytest
import requests

from bell_scheduler.constants import DEVICE_TZ
from bell_scheduler.exceptions import InvalidTimeFormat
from bell_scheduler.utils.time_utils import (
    HttpTimeSource,
    TimeSource,
    default_time_sources,
    parse_time_string,
)

SOURCES = (
    HttpTimeSource("https://time-a.test", "datetime"),
    HttpTimeSource("https://time-b.test", "currentDateTime"),
)


def fixed_utc():
    return datetime.datetime(2024, 5, 6, 3, 0, 0, tzinfo=datetime.timezone.utc)


def json_response(payload):
    response = MagicMock()
    response.raise_for_status.return_value = None
    response.json.return_value = payload
    return response


class TestParseTimeString:
    def test_iso_with_offset_and_fraction(self):
        reading = parse_time_string("2024-05-06T09:30:15.123456+05:30", "api")

        assert (reading.hour, reading.minute, reading.second) == (9, 30, 15)
        assert reading.day_of_week == "Monday"
        assert reading.source == "api"

    def test_garbage_gives_none(self):
        assert parse_time_string("not a time", "api") is None


class TestTimeSource:
    def test_first_source_wins(self):
        session = MagicMock()
        session.get.return_value = json_response({"datetime": "2024-05-07T10:11:12+05:30"})

        reading = TimeSource(sources=SOURCES, session=session).now()

        assert reading.formatted() == "10:11:12"
        assert reading.day_of_week == "Tuesday"
        assert reading.source == "https://time-a.test"
        session.get.assert_called_once_with("https://time-a.test", timeout=3.0)

    def test_falls_through_failing_sources(self):
        session = MagicMock()
        session.get.side_effect = [
            requests.ConnectionError("unreachable"),
            json_response({"currentDateTime": "2024-05-06T08:00:00"}),
        ]

        reading = TimeSource(sources=SOURCES, session=session).now()

        assert reading.source == "https://time-b.test"
        assert reading.hour == 8

    def test_unusable_payload_is_skipped(self):
        session = MagicMock()
        session.get.side_effect = [
            json_response({"unexpected": "shape"}),
            json_response({"currentDateTime": "2024-05-06T08:00:00"}),
        ]

        reading = TimeSource(sources=SOURCES, session=session).now()

        assert reading.source == "https://time-b.test"

    def test_system_clock_fallback_in_device_timezone(self):
        session = MagicMock()
        session.get.side_effect = requests.Timeout("slow")

        reading = TimeSource(sources=SOURCES, session=session, clock=fixed_utc).now()

        assert reading.source == "system_fallback"
        assert reading.formatted() == "08:30:00"
        assert reading.day_of_week == "Monday"
        assert session.get.call_count == 2

    def test_http_error_status_is_skipped(self):
        session = MagicMock()
        bad = MagicMock()
        bad.raise_for_status.side_effect = requests.HTTPError("503")
        session.get.side_effect = [bad, bad]

        reading = TimeSource(sources=SOURCES, session=session, clock=fixed_utc).now()

        assert reading.source == "system_fallback"

    def test_manual_time(self):
        reading = TimeSource(sources=(), clock=fixed_utc).manual(7, 5)

        assert reading.formatted() == "07:05:00"
        assert reading.manual is True
        assert reading.source == "manual"
        assert reading.timestamp.startswith("2024-05-06T07:05:00")

    @pytest.mark.parametrize("hour,minute,second", [(24, 0, 0), (0, 60, 0), (0, 0, 60), (-1, 0, 0)])
    def test_manual_time_out_of_range(self, hour, minute, second):
        with pytest.raises(InvalidTimeFormat):
            TimeSource(sources=()).manual(hour, minute, second)

    def test_default_sources_use_device_zone(self):
        sources = default_time_sources(DEVICE_TZ.key)

        assert len(sources) == 3
        assert sources[0].url.endswith("Asia/Colombo")
