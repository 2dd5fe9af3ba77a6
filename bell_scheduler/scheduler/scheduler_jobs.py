from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from bell_scheduler.config import AppConfig
from bell_scheduler.gateway.command_gateway import CommandGateway
from bell_scheduler.mqtt.mqtt_manager import MqttConnectionManager
from bell_scheduler.utils.logging_config import BellSystemLogger

logger = BellSystemLogger.get_logger("scheduler")

RECONCILE_JOB = "reconcile_pending_schedules"
TIME_BROADCAST_JOB = "broadcast_time"
IDLE_REAPER_JOB = "close_idle_mqtt_connection"


def job_listener(event):
    if event.exception:
        logger.error(f"Job {event.job_id} crashed: {event.exception!r}")
    else:
        logger.debug(f"Job {event.job_id} executed successfully")


def init_scheduler(
    config: AppConfig,
    gateway: CommandGateway,
    connections: MqttConnectionManager,
    start: bool = True,
) -> BackgroundScheduler:
    """
    Register the periodic triggers: pending-schedule reconciliation, the
    time broadcast and the idle MQTT connection reaper.
    """
    scheduler = BackgroundScheduler(
        timezone=config.device_timezone,
        job_defaults={
            'max_instances': 1,  # never overlap two drains
            'coalesce': True,
            'misfire_grace_time': 30,
        },
    )
    scheduler.add_listener(job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

    scheduler.add_job(
        gateway.reconcile,
        trigger=IntervalTrigger(seconds=config.reconcile_interval_seconds),
        id=RECONCILE_JOB,
        replace_existing=True,
    )
    scheduler.add_job(
        gateway.broadcast_time,
        trigger=IntervalTrigger(minutes=config.time_sync_cron_minutes),
        id=TIME_BROADCAST_JOB,
        replace_existing=True,
    )
    scheduler.add_job(
        connections.close_if_idle,
        trigger=IntervalTrigger(seconds=max(1, int(config.mqtt.idle_timeout / 2))),
        id=IDLE_REAPER_JOB,
        replace_existing=True,
    )

    if start:
        scheduler.start()
        logger.info(
            f"Scheduler started: reconcile every {config.reconcile_interval_seconds}s, "
            f"time broadcast every {config.time_sync_cron_minutes}min"
        )
    return scheduler
