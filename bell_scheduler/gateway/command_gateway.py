"""
User-facing bell operations composed from the store, the delivery engine
and the reconciler.
"""
from typing import Any, Dict, List, Optional

from bell_scheduler.config import DeliveryConfig
from bell_scheduler.constants import (
    DEFAULT_RING_DURATION,
    RING_NOW_TOPIC,
    SCHEDULE_UPDATE_TOPIC,
    TIME_SYNC_TOPIC,
    TIME_UPDATE_TOPIC,
)
from bell_scheduler.exceptions import DeliveryError, PeriodNotFound
from bell_scheduler.firestore.schedule_firestore import ScheduleStore
from bell_scheduler.models.model import (
    DeliveryStats,
    MergedSchedule,
    Period,
    Schedule,
    StoreScheduleResult,
    TimeReading,
)
from bell_scheduler.models.schedule_rules import (
    build_merged_schedule,
    dedupe_periods,
    validate_all,
    validate_day,
    validate_duration,
)
from bell_scheduler.mqtt.delivery_engine import DeliveryEngine
from bell_scheduler.mqtt.mqtt_functions import (
    build_ring_message,
    build_schedule_message,
    build_time_message,
    iso_now,
)
from bell_scheduler.scheduler.reconciler import ScheduleReconciler
from bell_scheduler.utils.logging_config import get_gateway_logger
from bell_scheduler.utils.time_utils import TimeSource

logger = get_gateway_logger()


class CommandGateway:
    def __init__(
        self,
        store: ScheduleStore,
        engine: DeliveryEngine,
        reconciler: ScheduleReconciler,
        time_source: TimeSource,
        config: Optional[DeliveryConfig] = None,
    ):
        self.store = store
        self.engine = engine
        self.reconciler = reconciler
        self.time_source = time_source
        self.config = config or DeliveryConfig()

    def store_schedule(self, user_id: str, periods: List[Period]) -> StoreScheduleResult:
        """
        Persist a full schedule for ``user_id`` and try to push it right away.

        The store write is authoritative: a failed push leaves the schedule
        pending for the reconciler and the call still succeeds.

        Raises:
            InvalidSchedule: any period fails validation (nothing is stored)
            StoreUnavailable: the write did not go through
        """
        validate_all(periods, day_scoped=self.config.day_scoped)
        unique = dedupe_periods(periods)
        schedule_id = self.store.put(user_id, unique)
        schedule = self.store.get(schedule_id) or Schedule(schedule_id=schedule_id, user_id=user_id, periods=unique)

        try:
            self.engine.publish_with_retry(
                SCHEDULE_UPDATE_TOPIC,
                build_schedule_message(schedule),
                max_retries=self.config.live_retries,
            )
        except DeliveryError as e:
            logger.warning(f"Live delivery of {schedule_id} failed, left pending: {e.message}")
            if self.config.reconcile_after_failed_push:
                stats = self.reconciler.drain()
            else:
                stats = DeliveryStats(delivered=0, failed=1)
            return StoreScheduleResult(schedule_id, len(unique), False, stats)

        # False when a concurrent write replaced or edited the row; that row stays pending
        self.store.mark_delivered(schedule_id, schedule.updated_at)
        logger.info(f"Schedule {schedule_id} for {user_id} delivered live ({len(unique)} periods)")
        return StoreScheduleResult(schedule_id, len(unique), True, DeliveryStats(delivered=1))

    def get_schedule(self) -> MergedSchedule:
        """Merged view of the most recent schedules across all users (appliance pull)."""
        schedules = self.store.get_all_global(self.config.global_schedule_limit)
        return build_merged_schedule(schedules)

    def clear_day(self, user_id: str, day: str) -> bool:
        validate_day(day)
        updated = self.store.remove_day_periods(user_id, day)
        logger.info(f"Cleared {day} for {user_id}: updated={updated}")
        return updated

    def clear_all(self, user_id: str) -> int:
        deleted = self.store.clear_all(user_id)
        logger.info(f"Cleared all schedules for {user_id}: deleted={deleted}")
        return deleted

    def delete_period(self, user_id: str, start_time: str, day: Optional[str] = None) -> int:
        """
        Remove matching periods (on every day when ``day`` is None) and push
        the user's remaining schedule. A failed push leaves it pending.
        """
        if day is not None:
            validate_day(day)
        removed = self.store.remove_period(user_id, start_time, day)
        if removed == 0:
            raise PeriodNotFound(f"No period starting at {start_time} found")
        self._push_current(user_id)
        return removed

    def _push_current(self, user_id: str) -> bool:
        schedules = self.store.get_all(user_id)
        if not schedules:
            return False
        current = schedules[0]
        try:
            self.engine.publish_with_retry(
                SCHEDULE_UPDATE_TOPIC,
                build_schedule_message(current),
                max_retries=self.config.live_retries,
            )
        except DeliveryError as e:
            logger.warning(f"Push of {current.schedule_id} failed, left pending: {e.message}")
            return False
        return self.store.mark_delivered(current.schedule_id, current.updated_at)

    def ring_now(self, user_id: str, duration: Optional[int] = None) -> int:
        """
        Ring the bell immediately. Nothing is persisted, so a delivery
        failure is raised to the caller.
        """
        duration = DEFAULT_RING_DURATION if duration is None else duration
        validate_duration(duration)
        logger.info(f"Sending ring command for {duration} seconds from {user_id}")
        self.engine.publish(RING_NOW_TOPIC, build_ring_message(duration, user_id))
        return duration

    def sync_time(
        self,
        user_id: str,
        hour: Optional[int] = None,
        minute: Optional[int] = None,
        second: Optional[int] = None,
    ) -> TimeReading:
        if hour is not None and minute is not None:
            reading = self.time_source.manual(hour, minute, second or 0)
        else:
            reading = self.time_source.now()
        self.engine.publish(TIME_SYNC_TOPIC, build_time_message(reading, user_id))
        logger.info(f"Time {reading.formatted()} ({reading.source}) sent for {user_id}")
        return reading

    def broadcast_time(self) -> TimeReading:
        """Periodic time push on the update topic."""
        reading = self.time_source.now()
        self.engine.publish(TIME_UPDATE_TOPIC, build_time_message(reading))
        return reading

    def reconcile(self) -> DeliveryStats:
        return self.reconciler.drain()

    def health(self) -> Dict[str, Any]:
        try:
            self.engine.check_connection()
        except DeliveryError as e:
            return {
                "status": "unhealthy",
                "mqtt": "disconnected",
                "error": e.message,
                "timestamp": iso_now(),
            }
        return {"status": "healthy", "mqtt": "connected", "timestamp": iso_now()}
