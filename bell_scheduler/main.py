from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from bell_scheduler.api.app import create_app
from bell_scheduler.api.identity import JWTIdentityProvider
from bell_scheduler.config import AppConfig, load_config
from bell_scheduler.firestore.firestore_settings import init_firestore
from bell_scheduler.firestore.schedule_firestore import ScheduleStore
from bell_scheduler.gateway.command_gateway import CommandGateway
from bell_scheduler.mqtt.delivery_engine import DeliveryEngine
from bell_scheduler.mqtt.mqtt_manager import MqttConnectionManager
from bell_scheduler.scheduler.reconciler import ScheduleReconciler
from bell_scheduler.scheduler.scheduler_jobs import init_scheduler
from bell_scheduler.utils.logging_config import BellSystemLogger, get_main_logger
from bell_scheduler.utils.time_utils import TimeSource


def build_app(config: AppConfig) -> FastAPI:
    logger = get_main_logger()

    store = ScheduleStore(init_firestore(config.service_account_path))
    connections = MqttConnectionManager(config.mqtt)
    engine = DeliveryEngine(connections, retry_base_delay=config.delivery.retry_base_delay)
    reconciler = ScheduleReconciler(store, engine, max_attempts=config.delivery.max_delivery_attempts)
    gateway = CommandGateway(
        store=store,
        engine=engine,
        reconciler=reconciler,
        time_source=TimeSource(tz=config.device_tz),
        config=config.delivery,
    )
    identity = JWTIdentityProvider(
        secret=config.identity_jwt_secret,
        audience=config.identity_jwt_audience,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        scheduler = init_scheduler(config, gateway, connections)
        logger.info("Bell scheduler service started")
        yield
        logger.info("Shutting down scheduler and MQTT connection")
        scheduler.shutdown(wait=False)
        connections.close()

    return create_app(gateway, identity, lifespan=lifespan)


def main():
    config = load_config()
    BellSystemLogger.setup_logging(log_level=config.log_level, log_file=config.log_file)
    uvicorn.run(build_app(config), host="0.0.0.0", port=config.http_port)


if __name__ == "__main__":
    main()
