"""
Delivery engine: hands messages to the MQTT broker.

The contract ends once the broker acknowledges a qos=1 publish. Whether the
appliance is online is the broker's concern.
"""
import time
from typing import Any, Callable, Optional

import paho.mqtt.client as mqtt

from bell_scheduler.constants import BELL_QOS, DEFAULT_RETRY_BASE_DELAY, LIVE_RETRY_CAP
from bell_scheduler.exceptions import DeliveryError, PublishFailed, PublishTimeout
from bell_scheduler.mqtt.mqtt_functions import encode_payload
from bell_scheduler.mqtt.mqtt_manager import MqttConnectionManager
from bell_scheduler.utils.logging_config import get_delivery_logger, log_mqtt_publish

logger = get_delivery_logger()


class DeliveryEngine:
    def __init__(
        self,
        connections: MqttConnectionManager,
        retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.connections = connections
        self.retry_base_delay = retry_base_delay
        self._sleep = sleep

    @property
    def publish_timeout(self) -> float:
        return self.connections.config.publish_timeout

    def publish(self, topic: str, payload: Any, qos: int = BELL_QOS) -> None:
        """
        Publish one message and wait for the broker acknowledgement.

        The connection goes back to the pool on success and is closed on
        every failure path.

        Raises:
            ConnectTimeout / ConnectFailed: no connection to the broker
            PublishTimeout: no acknowledgement within publish_timeout
            PublishFailed: the client rejected the publish
        """
        message = encode_payload(payload)
        client = self.connections.acquire()
        healthy = False
        try:
            info = client.publish(topic=topic, payload=message, qos=qos)
            if info.rc != mqtt.MQTT_ERR_SUCCESS:
                raise PublishFailed(f"Publish to {topic} rejected: {mqtt.error_string(info.rc)}")
            info.wait_for_publish(timeout=self.publish_timeout)
            if not info.is_published():
                raise PublishTimeout(f"Publish timeout for {topic} ({self.publish_timeout:g}s)")
            healthy = True
        except (RuntimeError, ValueError) as e:
            log_mqtt_publish(logger, topic, str(e), success=False)
            raise PublishFailed(f"Publish to {topic} failed: {e}") from e
        except DeliveryError as e:
            log_mqtt_publish(logger, topic, e.message, success=False)
            raise
        finally:
            if healthy:
                self.connections.release(client)
            else:
                self.connections.discard(client)

        log_mqtt_publish(logger, topic, message)

    def publish_with_retry(
        self,
        topic: str,
        payload: Any,
        max_retries: Optional[int] = None,
        qos: int = BELL_QOS,
    ) -> None:
        """
        Publish with up to ``max_retries`` attempts (capped at LIVE_RETRY_CAP),
        sleeping base delay x attempt number between attempts.
        Re-raises the last error when every attempt fails.
        """
        attempts = min(max(1, max_retries or 1), LIVE_RETRY_CAP)
        last_error: Optional[DeliveryError] = None
        for attempt in range(1, attempts + 1):
            try:
                logger.info(f"Publishing to {topic} (attempt {attempt}/{attempts})")
                self.publish(topic, payload, qos=qos)
                return
            except DeliveryError as e:
                last_error = e
                logger.warning(f"Attempt {attempt} failed: {e.message}")
                if attempt < attempts:
                    self._sleep(self.retry_base_delay * attempt)
        raise last_error

    def check_connection(self) -> None:
        """Open (or reuse) a broker connection. Raises DeliveryError when unreachable."""
        client = self.connections.acquire()
        self.connections.release(client)
