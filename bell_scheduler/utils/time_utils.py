import datetime
import re
from dataclasses import dataclass
from typing import Callable, Optional, Sequence
from zoneinfo import ZoneInfo

import requests

from bell_scheduler.constants import DEVICE_TZ
from bell_scheduler.exceptions import InvalidTimeFormat
from bell_scheduler.models.model import TimeReading
from bell_scheduler.utils.logging_config import BellSystemLogger

logger = BellSystemLogger.get_logger("time_source")

TIME_OF_DAY = re.compile(r"(\d{2}):(\d{2}):(\d{2})")
CALENDAR_DATE = re.compile(r"(\d{4})-(\d{2})-(\d{2})")


@dataclass(frozen=True)
class HttpTimeSource:
    url: str
    field: str  # JSON field holding the ISO datetime


def default_time_sources(tz_name: str) -> Sequence[HttpTimeSource]:
    return (
        HttpTimeSource(f"https://worldtimeapi.org/api/timezone/{tz_name}", "datetime"),
        HttpTimeSource(f"https://timeapi.io/api/Time/current/zone?timeZone={tz_name}", "currentDateTime"),
        HttpTimeSource("https://www.timeapi.io/api/Time/current/ip", "dateTime"),
    )


def parse_time_string(raw: str, source: str) -> Optional[TimeReading]:
    """
    Pull the wall-clock time and weekday out of an ISO-like datetime string.
    Sub-second digits and offsets are ignored.
    """
    time_match = TIME_OF_DAY.search(raw)
    date_match = CALENDAR_DATE.search(raw)
    if time_match is None or date_match is None:
        return None
    hour, minute, second = (int(g) for g in time_match.groups())
    year, month, day = (int(g) for g in date_match.groups())
    return TimeReading(
        hour=hour,
        minute=minute,
        second=second,
        day_of_week=datetime.date(year, month, day).strftime("%A"),
        timestamp=raw,
        source=source,
    )


def reading_from_datetime(moment: datetime.datetime, source: str, manual: bool = False) -> TimeReading:
    return TimeReading(
        hour=moment.hour,
        minute=moment.minute,
        second=moment.second,
        day_of_week=moment.strftime("%A"),
        timestamp=moment.isoformat(),
        source=source,
        manual=manual,
    )


class TimeSource:
    """
    Resolves the current device-local time.

    Tries each HTTP time API in order and falls back to the system clock
    converted to the device timezone.
    """

    def __init__(
        self,
        tz: ZoneInfo = DEVICE_TZ,
        sources: Optional[Sequence[HttpTimeSource]] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 3.0,
        clock: Callable[[], datetime.datetime] = lambda: datetime.datetime.now(datetime.timezone.utc),
    ):
        self.tz = tz
        self.sources = default_time_sources(tz.key) if sources is None else sources
        self.session = session or requests.Session()
        self.timeout = timeout
        self._clock = clock

    def now(self) -> TimeReading:
        for source in self.sources:
            try:
                response = self.session.get(source.url, timeout=self.timeout)
                response.raise_for_status()
                raw = response.json().get(source.field)
            except (requests.RequestException, ValueError) as e:
                logger.warning(f"Time source {source.url} failed: {e}")
                continue
            reading = parse_time_string(raw, source.url) if isinstance(raw, str) else None
            if reading is not None:
                return reading
            logger.warning(f"Time source {source.url} returned no usable time: {raw!r}")

        return reading_from_datetime(self._clock().astimezone(self.tz), "system_fallback")

    def manual(self, hour: int, minute: int, second: int = 0) -> TimeReading:
        """Reading for a caller-supplied wall-clock time on today's device date."""
        for label, value, upper in (("hour", hour, 23), ("minute", minute, 59), ("second", second, 59)):
            if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= upper:
                raise InvalidTimeFormat(f"{label} must be between 0 and {upper}, got {value!r}")
        local = self._clock().astimezone(self.tz).replace(
            hour=hour, minute=minute, second=second, microsecond=0
        )
        return reading_from_datetime(local, "manual", manual=True)
