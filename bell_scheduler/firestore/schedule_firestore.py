"""
Firestore-backed schedule store.

Each user owns at most one schedule document. A document is both the current
schedule and its own pending-delivery record, tracked by ``delivered``,
``deliveryAttempts`` and ``deliveredAt``.
"""
import datetime
import functools
from typing import Any, Callable, Dict, List, Optional

from google.api_core import exceptions as gcp_exceptions
from google.cloud.firestore_v1 import Client as FirestoreClient
from google.cloud.firestore_v1 import FieldFilter, Increment, Query

from bell_scheduler.constants import MAX_DELIVERY_ATTEMPTS, SCHEDULE_COLLECTION
from bell_scheduler.exceptions import StoreUnavailable
from bell_scheduler.models.model import Period, Schedule
from bell_scheduler.models.schedule_rules import dedupe_periods
from bell_scheduler.utils.logging_config import get_store_logger, log_database_operation

logger = get_store_logger()


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def store_operation(operation: str):
    """Translate Firestore failures into StoreUnavailable."""
    def decorator(func):
        @functools.wraps(func)
        def wrapper(self: "ScheduleStore", *args, **kwargs):
            try:
                return func(self, *args, **kwargs)
            except gcp_exceptions.GoogleAPIError as e:
                log_database_operation(logger, operation, self.collection_name, False, error=e)
                raise StoreUnavailable(f"Schedule store {operation.lower()} failed: {e}") from e
        return wrapper
    return decorator


def schedule_from_document(doc_id: str, data: Dict[str, Any]) -> Schedule:
    return Schedule(
        schedule_id=doc_id,
        user_id=data.get("userId", ""),
        periods=[Period.from_dict(p) for p in data.get("periods") or []],
        created_at=data.get("createdAt"),
        updated_at=data.get("updatedAt"),
        delivered=bool(data.get("delivered", False)),
        delivery_attempts=int(data.get("deliveryAttempts", 0)),
        delivered_at=data.get("deliveredAt"),
    )


def _pending_reset(now: datetime.datetime) -> Dict[str, Any]:
    return {
        "updatedAt": now,
        "delivered": False,
        "deliveryAttempts": 0,
        "deliveredAt": None,
    }


class ScheduleStore:
    def __init__(
        self,
        db: FirestoreClient,
        collection_name: str = SCHEDULE_COLLECTION,
        clock: Callable[[], datetime.datetime] = utc_now,
    ):
        self.db = db
        self.collection_name = collection_name
        self._clock = clock

    @property
    def _collection(self):
        return self.db.collection(self.collection_name)

    def _user_documents(self, user_id: str):
        return list(
            self._collection.where(filter=FieldFilter("userId", "==", user_id)).stream()
        )

    @store_operation("PUT")
    def put(self, user_id: str, periods: List[Period]) -> str:
        """
        Replace every schedule of ``user_id`` with one new pending row.

        The deletes and the insert are committed in one batch, so readers see
        either the old rows or the new one. Old state is not recoverable.
        """
        now = self._clock()
        unique = dedupe_periods(periods)
        previous = self._user_documents(user_id)

        batch = self.db.batch()
        for snapshot in previous:
            batch.delete(snapshot.reference)

        new_ref = self._collection.document()
        batch.set(new_ref, {
            "userId": user_id,
            "periods": [p.to_dict() for p in unique],
            "createdAt": now,
            "updatedAt": now,
            "delivered": False,
            "deliveryAttempts": 0,
            "deliveredAt": None,
        })
        batch.commit()

        log_database_operation(
            logger, "PUT", self.collection_name, True,
            details=f"user={user_id} schedule={new_ref.id} periods={len(unique)} replaced={len(previous)}"
        )
        return new_ref.id

    @store_operation("SELECT")
    def get(self, schedule_id: str) -> Optional[Schedule]:
        snapshot = self._collection.document(schedule_id).get()
        if not snapshot.exists:
            return None
        return schedule_from_document(snapshot.id, snapshot.to_dict())

    @store_operation("SELECT")
    def get_all(self, user_id: str) -> List[Schedule]:
        schedules = [
            schedule_from_document(s.id, s.to_dict()) for s in self._user_documents(user_id)
        ]
        schedules.sort(key=lambda s: s.updated_at, reverse=True)
        return schedules

    @store_operation("SELECT")
    def get_all_global(self, limit: int) -> List[Schedule]:
        """Most recent schedules across all users, newest first."""
        query = (
            self._collection
            .order_by("updatedAt", direction=Query.DESCENDING)
            .limit(limit)
        )
        return [schedule_from_document(s.id, s.to_dict()) for s in query.stream()]

    @store_operation("UPDATE")
    def remove_day_periods(self, user_id: str, day: str) -> bool:
        """
        Drop the periods of ``day`` from every schedule of the user.
        Only rows that lost a period are written; they go back to pending.
        """
        return self._filter_user_periods(
            user_id, lambda p: p.get("day") != day, f"day={day}"
        ) > 0

    @store_operation("UPDATE")
    def remove_period(self, user_id: str, start_time: str, day: Optional[str] = None) -> int:
        """Drop periods starting at ``start_time`` (on ``day`` when given). Returns the number removed."""
        def keep(period: Dict[str, Any]) -> bool:
            if period.get("startTime") != start_time:
                return True
            return day is not None and period.get("day") != day
        return self._filter_user_periods(user_id, keep, f"startTime={start_time} day={day}")

    def _filter_user_periods(self, user_id: str, keep: Callable[[Dict[str, Any]], bool], label: str) -> int:
        now = self._clock()
        removed = 0
        batch = self.db.batch()
        for snapshot in self._user_documents(user_id):
            periods = snapshot.to_dict().get("periods") or []
            kept = [p for p in periods if keep(p)]
            if len(kept) == len(periods):
                continue
            removed += len(periods) - len(kept)
            batch.update(snapshot.reference, {"periods": kept, **_pending_reset(now)})

        if removed:
            batch.commit()
        log_database_operation(
            logger, "UPDATE", self.collection_name, True,
            details=f"user={user_id} {label} removed={removed}"
        )
        return removed

    @store_operation("DELETE")
    def clear_all(self, user_id: str) -> int:
        documents = self._user_documents(user_id)
        if documents:
            batch = self.db.batch()
            for snapshot in documents:
                batch.delete(snapshot.reference)
            batch.commit()
        log_database_operation(
            logger, "DELETE", self.collection_name, True,
            details=f"user={user_id} deleted={len(documents)}"
        )
        return len(documents)

    @store_operation("SELECT")
    def list_pending(self, max_attempts: int = MAX_DELIVERY_ATTEMPTS) -> List[Schedule]:
        """Undelivered schedules still below the retry ceiling, oldest first."""
        query = (
            self._collection
            .where(filter=FieldFilter("delivered", "==", False))
            .where(filter=FieldFilter("deliveryAttempts", "<", max_attempts))
        )
        pending = [schedule_from_document(s.id, s.to_dict()) for s in query.stream()]
        pending.sort(key=lambda s: s.updated_at)
        return pending

    @store_operation("UPDATE")
    def mark_delivered(
        self,
        schedule_id: str,
        published_version: Optional[datetime.datetime] = None,
    ) -> bool:
        """
        Flag a schedule as handed off to the bus.

        ``published_version`` is the ``updatedAt`` of the row that was sent.
        When the row has been edited since, it stays pending so the edit is
        delivered too. Returns False when the row was superseded, edited or
        cleared in the meantime.
        """
        ref = self._collection.document(schedule_id)
        snapshot = ref.get()
        if not snapshot.exists:
            logger.warning(f"Schedule {schedule_id} no longer exists, delivery not recorded")
            return False
        if published_version is not None and snapshot.to_dict().get("updatedAt") != published_version:
            logger.info(f"Schedule {schedule_id} changed after it was sent, left pending")
            return False

        try:
            ref.update(
                {
                    "delivered": True,
                    "deliveredAt": self._clock(),
                    "deliveryAttempts": Increment(1),
                },
                option=self.db.write_option(last_update_time=snapshot.update_time),
            )
        except gcp_exceptions.NotFound:
            logger.warning(f"Schedule {schedule_id} no longer exists, delivery not recorded")
            return False
        except gcp_exceptions.FailedPrecondition:
            logger.info(f"Schedule {schedule_id} changed while recording delivery, left pending")
            return False
        log_database_operation(
            logger, "UPDATE", self.collection_name, True, details=f"delivered schedule={schedule_id}"
        )
        return True

    @store_operation("UPDATE")
    def mark_attempt_failed(self, schedule_id: str) -> bool:
        try:
            self._collection.document(schedule_id).update({"deliveryAttempts": Increment(1)})
        except gcp_exceptions.NotFound:
            logger.warning(f"Schedule {schedule_id} no longer exists, failed attempt not recorded")
            return False
        log_database_operation(
            logger, "UPDATE", self.collection_name, True, details=f"attempt failed schedule={schedule_id}"
        )
        return True
