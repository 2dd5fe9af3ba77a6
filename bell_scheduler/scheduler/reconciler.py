"""
Drains undelivered schedules through the delivery engine.

This is what lets an appliance that was offline catch up: every stored
schedule stays pending until a publish succeeds or its attempts run out.
"""
from bell_scheduler.constants import MAX_DELIVERY_ATTEMPTS, SCHEDULE_UPDATE_TOPIC
from bell_scheduler.exceptions import ConnectFailed, ConnectTimeout, DeliveryError
from bell_scheduler.firestore.schedule_firestore import ScheduleStore
from bell_scheduler.models.model import DeliveryStats
from bell_scheduler.mqtt.delivery_engine import DeliveryEngine
from bell_scheduler.mqtt.mqtt_functions import build_full_schedule_message
from bell_scheduler.utils.logging_config import get_delivery_logger

logger = get_delivery_logger()


class ScheduleReconciler:
    def __init__(
        self,
        store: ScheduleStore,
        engine: DeliveryEngine,
        max_attempts: int = MAX_DELIVERY_ATTEMPTS,
    ):
        self.store = store
        self.engine = engine
        self.max_attempts = max_attempts

    def drain(self) -> DeliveryStats:
        """
        Try to deliver every pending schedule once.

        A failed publish costs that schedule one attempt and the batch moves
        on. When the broker cannot be reached at all, the remaining schedules
        are charged a failed attempt without dialing again.
        Store errors propagate.
        """
        pending = self.store.list_pending(self.max_attempts)
        stats = DeliveryStats()
        if not pending:
            return stats

        logger.info(f"Attempting to deliver {len(pending)} pending schedule(s)")
        bus_unreachable = None

        for schedule in pending:
            if bus_unreachable is not None:
                self.store.mark_attempt_failed(schedule.schedule_id)
                stats.failed += 1
                continue

            try:
                self.engine.publish(SCHEDULE_UPDATE_TOPIC, build_full_schedule_message(schedule))
            except (ConnectTimeout, ConnectFailed) as e:
                logger.error(f"Broker unreachable while delivering {schedule.schedule_id}: {e.message}")
                bus_unreachable = e
                self.store.mark_attempt_failed(schedule.schedule_id)
                stats.failed += 1
                continue
            except DeliveryError as e:
                logger.error(f"Failed to deliver schedule {schedule.schedule_id}: {e.message}")
                self.store.mark_attempt_failed(schedule.schedule_id)
                stats.failed += 1
                continue

            # an edit made during the publish keeps the row pending for the next drain
            self.store.mark_delivered(schedule.schedule_id, schedule.updated_at)
            stats.delivered += 1

        logger.info(f"Reconciliation finished: {stats.delivered} delivered, {stats.failed} failed")
        return stats
