import os
from dataclasses import dataclass
from typing import Optional
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

from bell_scheduler.constants import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_GLOBAL_SCHEDULE_LIMIT,
    DEFAULT_IDLE_TIMEOUT,
    DEFAULT_LIVE_RETRIES,
    DEFAULT_PUBLISH_TIMEOUT,
    DEFAULT_RETRY_BASE_DELAY,
    MAX_DELIVERY_ATTEMPTS,
)

TRUTHY = ("1", "true", "yes", "on")


@dataclass(frozen=True)
class MqttConfig:
    host: str
    username: str
    password: str
    port: int = 8883
    transport: str = "tcp"
    use_tls: bool = True
    keepalive: int = 60
    client_id_prefix: str = "bell-server"
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    publish_timeout: float = DEFAULT_PUBLISH_TIMEOUT
    idle_timeout: float = DEFAULT_IDLE_TIMEOUT
    reuse_connections: bool = True


@dataclass(frozen=True)
class DeliveryConfig:
    live_retries: int = DEFAULT_LIVE_RETRIES
    retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY
    max_delivery_attempts: int = MAX_DELIVERY_ATTEMPTS
    global_schedule_limit: int = DEFAULT_GLOBAL_SCHEDULE_LIMIT
    reconcile_after_failed_push: bool = False
    day_scoped: bool = True


@dataclass(frozen=True)
class AppConfig:
    mqtt: MqttConfig
    delivery: DeliveryConfig
    service_account_path: str
    identity_jwt_secret: str
    identity_jwt_audience: Optional[str] = None
    device_timezone: str = "Asia/Colombo"
    reconcile_interval_seconds: int = 60
    time_sync_cron_minutes: int = 30
    log_level: str = "INFO"
    log_file: Optional[str] = None
    http_port: int = 8000

    @property
    def device_tz(self) -> ZoneInfo:
        return ZoneInfo(self.device_timezone)


def load_env_file() -> None:
    """Load variables from the dotenv file named by ENV_FILE, when set."""
    env_file = os.getenv("ENV_FILE")
    if env_file is not None:
        load_dotenv(dotenv_path=env_file)


def _required(name: str) -> str:
    value = os.getenv(name)
    if value is None or value == "":
        raise ValueError(f"{name} not set")
    return value


def _flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in TRUTHY


def load_mqtt_config() -> MqttConfig:
    return MqttConfig(
        host=_required("MQTT_HOST"),
        username=_required("MQTT_USERNAME"),
        password=_required("MQTT_PASSWORD"),
        port=int(os.getenv("MQTT_PORT", "8883")),
        transport=os.getenv("MQTT_TRANSPORT", "tcp"),
        use_tls=_flag("MQTT_TLS", True),
        connect_timeout=float(os.getenv("MQTT_CONNECT_TIMEOUT", DEFAULT_CONNECT_TIMEOUT)),
        publish_timeout=float(os.getenv("MQTT_PUBLISH_TIMEOUT", DEFAULT_PUBLISH_TIMEOUT)),
        idle_timeout=float(os.getenv("MQTT_IDLE_TIMEOUT", DEFAULT_IDLE_TIMEOUT)),
        reuse_connections=_flag("MQTT_REUSE_CONNECTIONS", True),
    )


def load_delivery_config() -> DeliveryConfig:
    return DeliveryConfig(
        live_retries=int(os.getenv("LIVE_DELIVERY_RETRIES", DEFAULT_LIVE_RETRIES)),
        retry_base_delay=float(os.getenv("RETRY_BASE_DELAY", DEFAULT_RETRY_BASE_DELAY)),
        max_delivery_attempts=int(os.getenv("MAX_DELIVERY_ATTEMPTS", MAX_DELIVERY_ATTEMPTS)),
        global_schedule_limit=int(os.getenv("GLOBAL_SCHEDULE_LIMIT", DEFAULT_GLOBAL_SCHEDULE_LIMIT)),
        reconcile_after_failed_push=_flag("RECONCILE_AFTER_FAILED_PUSH", False),
        day_scoped=_flag("DAY_SCOPED_PERIODS", True),
    )


def load_config() -> AppConfig:
    load_env_file()
    return AppConfig(
        mqtt=load_mqtt_config(),
        delivery=load_delivery_config(),
        service_account_path=_required("SERVICE_ACCOUNT_PATH"),
        identity_jwt_secret=_required("IDENTITY_JWT_SECRET"),
        identity_jwt_audience=os.getenv("IDENTITY_JWT_AUDIENCE"),
        device_timezone=os.getenv("DEVICE_TIMEZONE", "Asia/Colombo"),
        reconcile_interval_seconds=int(os.getenv("RECONCILE_INTERVAL_SECONDS", "60")),
        time_sync_cron_minutes=int(os.getenv("TIME_SYNC_CRON_MINUTES", "30")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_file=os.getenv("LOG_FILE"),
        http_port=int(os.getenv("PORT", "8000")),
    )
