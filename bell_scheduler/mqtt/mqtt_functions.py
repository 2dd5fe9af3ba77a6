import datetime
import json
from typing import Any, Dict, Optional

from bell_scheduler.constants import (
    FULL_SCHEDULE_UPDATE,
    MANUAL_RING,
    SCHEDULE_UPDATE,
    TIME_SYNC,
)
from bell_scheduler.models.model import Schedule, TimeReading
from bell_scheduler.models.schedule_rules import periods_for_delivery


def iso_now() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def build_schedule_message(
    schedule: Schedule,
    message_type: str = SCHEDULE_UPDATE,
    include_user: bool = True,
) -> Dict[str, Any]:
    """
    Wire message for ``bell/schedule/update``.

    Exam-day periods replace regular-day periods when present.
    """
    periods, exam_mode = periods_for_delivery(schedule.periods)
    message: Dict[str, Any] = {
        "type": message_type,
        "schedule": {"periods": [p.to_dict() for p in periods]},
        "timestamp": iso_now(),
        "scheduleId": schedule.schedule_id,
        "periodCount": len(periods),
    }
    if exam_mode:
        message["examMode"] = True
    if include_user:
        message["user"] = schedule.user_id
    return message


def build_full_schedule_message(schedule: Schedule) -> Dict[str, Any]:
    return build_schedule_message(schedule, message_type=FULL_SCHEDULE_UPDATE, include_user=False)


def build_ring_message(duration: int, user_id: str) -> Dict[str, Any]:
    return {
        "type": MANUAL_RING,
        "duration": duration,
        "timestamp": iso_now(),
        "user": user_id,
    }


def build_time_message(reading: TimeReading, user_id: Optional[str] = None) -> Dict[str, Any]:
    message: Dict[str, Any] = {
        "type": TIME_SYNC,
        "hour": reading.hour,
        "minute": reading.minute,
        "second": reading.second,
        "dayOfWeek": reading.day_of_week,
        "timestamp": reading.timestamp,
        "source": reading.source,
    }
    if reading.manual:
        message["manual"] = True
    if user_id is not None:
        message["user"] = user_id
    return message


def encode_payload(payload: Any) -> str:
    if isinstance(payload, (str, bytes)):
        return payload
    return json.dumps(payload)
