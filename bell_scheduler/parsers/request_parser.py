import json
from typing import List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, StrictInt
from pydantic import ValidationError as PydanticValidationError

from bell_scheduler.exceptions import ValidationError
from bell_scheduler.models.model import Period

ModelT = TypeVar("ModelT", bound=BaseModel)


class PeriodJson(BaseModel):
    """Pydantic model for one period as sent by the dashboard"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = Field(default="")
    day: Optional[str] = Field(default=None)
    start_time: str = Field(alias="startTime")
    end_time: str = Field(alias="endTime")
    duration: StrictInt

    def to_period(self) -> Period:
        return Period(
            name=self.name or "",
            day=self.day,
            start_time=self.start_time,
            end_time=self.end_time,
            duration=self.duration,
        )


class ScheduleJson(BaseModel):
    """Pydantic model for a full schedule upload"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    periods: List[PeriodJson]

    def to_periods(self) -> List[Period]:
        return [p.to_period() for p in self.periods]


class ClearDayJson(BaseModel):
    day: str = Field(min_length=1)


class DeletePeriodJson(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    start_time: str = Field(alias="startTime")
    day: Optional[str] = None


class RingJson(BaseModel):
    duration: Optional[StrictInt] = None


class TimeSyncJson(BaseModel):
    hour: Optional[StrictInt] = None
    minute: Optional[StrictInt] = None
    second: Optional[StrictInt] = None


def parse_json_body(raw: bytes, model: Type[ModelT], allow_empty: bool = False) -> ModelT:
    """
    Parse a raw request body into ``model``.

    Raises:
        ValidationError: malformed JSON or fields that do not fit the model
    """
    if not raw or not raw.strip():
        if allow_empty:
            return model()
        raise ValidationError("Request body is required")
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise ValidationError(f"Invalid JSON format: {e}") from e
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid data format",
            details={"fieldErrors": [
                {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                for err in e.errors()
            ]},
        ) from e
