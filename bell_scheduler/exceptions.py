"""
Application-specific exceptions.

Every exception carries the HTTP status the API layer answers with and a short
machine-readable error label. The message is the human-readable part.
"""
from typing import Any, Dict, List, Optional


class BellSystemError(Exception):
    """Base class for all bell system errors."""
    status_code: int = 500
    error: str = "Internal Server Error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body = {"success": False, "error": self.error, "message": self.message}
        body.update(self.details)
        return body


# ---- validation (400, never retried) ----

class ValidationError(BellSystemError):
    status_code = 400
    error = "Invalid request"


class InvalidTimeRange(ValidationError):
    error = "Invalid time range"


class InvalidTimeFormat(ValidationError):
    error = "Invalid time format"


class InvalidDuration(ValidationError):
    error = "Invalid duration"


class MissingDay(ValidationError):
    error = "Day is required"


class InvalidDay(ValidationError):
    error = "Invalid day"


class InvalidSchedule(ValidationError):
    """Raised when one or more periods of a schedule fail validation."""
    error = "Invalid schedule"

    def __init__(self, errors: List[Dict[str, Any]]):
        super().__init__(
            f"{len(errors)} period(s) failed validation",
            details={"periodErrors": errors},
        )
        self.errors = errors


class PeriodNotFound(BellSystemError):
    status_code = 404
    error = "Period not found"


# ---- identity (401, never retried) ----

class AuthError(BellSystemError):
    status_code = 401
    error = "Unauthorized"


# ---- persistence ----

class StoreUnavailable(BellSystemError):
    """Raised when the document store fails. Partial writes must not be assumed."""
    status_code = 500
    error = "Store unavailable"


# ---- message bus ----

class DeliveryError(BellSystemError):
    status_code = 500
    error = "Delivery failed"


class ConnectTimeout(DeliveryError):
    error = "MQTT connection timeout"


class ConnectFailed(DeliveryError):
    error = "MQTT connection failed"


class PublishTimeout(DeliveryError):
    error = "MQTT publish timeout"


class PublishFailed(DeliveryError):
    error = "MQTT publish failed"
