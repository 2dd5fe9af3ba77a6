import datetime
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class Period:
    name: str
    start_time: str  # HH:MM, 24h
    end_time: str    # HH:MM, 24h
    duration: int    # ring length in seconds
    day: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "name": self.name,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "duration": self.duration,
        }
        if self.day is not None:
            data["day"] = self.day
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Period":
        return cls(
            name=data.get("name") or "",
            start_time=data.get("startTime", ""),
            end_time=data.get("endTime", ""),
            duration=data.get("duration", 0),
            day=data.get("day"),
        )


@dataclass
class Schedule:
    """A stored schedule row. Each row is also its own pending-delivery record."""
    schedule_id: str
    user_id: str
    periods: List[Period] = field(default_factory=list)
    created_at: Optional[datetime.datetime] = None
    updated_at: Optional[datetime.datetime] = None
    delivered: bool = False
    delivery_attempts: int = 0
    delivered_at: Optional[datetime.datetime] = None


@dataclass
class DeliveryStats:
    delivered: int = 0
    failed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"delivered": self.delivered, "failed": self.failed}


@dataclass
class StoreScheduleResult:
    schedule_id: str
    period_count: int
    delivered: bool
    delivery_stats: DeliveryStats
    stored: bool = True


@dataclass
class MergedSchedule:
    periods: List[Period]
    total_schedules: int
    exam_mode: bool = False

    @property
    def count(self) -> int:
        return len(self.periods)


@dataclass(frozen=True)
class TimeReading:
    hour: int
    minute: int
    second: int
    day_of_week: str
    timestamp: str
    source: str
    manual: bool = False

    def formatted(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}:{self.second:02d}"
