"""
MQTT connection management.

One ``MqttConnectionManager`` owns the broker connection. Concurrent callers
asking for a connection while one is being dialed wait on the same pending
future instead of opening a second connection.
"""
import threading
import time
import uuid
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeout
from enum import Enum
from typing import Callable, Dict, Optional, Set

import paho.mqtt.client as mqtt

from bell_scheduler.config import MqttConfig
from bell_scheduler.exceptions import ConnectFailed, ConnectTimeout, DeliveryError
from bell_scheduler.utils.logging_config import get_mqtt_logger

logger = get_mqtt_logger()

# Type alias
ClientFactory = Callable[[MqttConfig], mqtt.Client]


class BusState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def create_mqtt_client(config: MqttConfig) -> mqtt.Client:
    client = mqtt.Client(
        callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
        client_id=f"{config.client_id_prefix}-{uuid.uuid4().hex[:8]}",
        transport=config.transport,
        clean_session=True,
    )
    client.username_pw_set(username=config.username, password=config.password)
    if config.use_tls:
        client.tls_set()
    return client


def close_client(client: mqtt.Client) -> None:
    try:
        client.disconnect()
    except Exception as e:
        logger.warning(f"MQTT disconnect raised: {e}")
    finally:
        client.loop_stop()


class MqttConnectionManager:
    def __init__(
        self,
        config: MqttConfig,
        client_factory: ClientFactory = create_mqtt_client,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self._client_factory = client_factory
        self._clock = clock
        self._lock = threading.Lock()
        self._client: Optional[mqtt.Client] = None
        self._connecting: Optional[Future] = None
        self._holders: Dict[mqtt.Client, int] = {}
        self._retired: Set[mqtt.Client] = set()
        self._last_release = clock()
        self.state = BusState.DISCONNECTED
        self.connections_opened = 0

    @property
    def in_use(self) -> int:
        return sum(self._holders.values())

    def _hold(self, client: mqtt.Client) -> None:
        self._holders[client] = self._holders.get(client, 0) + 1

    def _let_go(self, client: mqtt.Client) -> int:
        remaining = max(0, self._holders.get(client, 0) - 1)
        if remaining:
            self._holders[client] = remaining
        else:
            self._holders.pop(client, None)
        self._last_release = self._clock()
        return remaining

    def acquire(self) -> mqtt.Client:
        """
        Return a connected client, dialing the broker if needed.

        Raises:
            ConnectTimeout: the broker did not acknowledge within connect_timeout
            ConnectFailed: the broker refused or the dial raised
        """
        stale = None
        with self._lock:
            if self._client is not None and self._client.is_connected():
                self._hold(self._client)
                return self._client
            if self._client is not None:
                current = self._client
                if self._retire(current):
                    stale = current
            if self._connecting is None:
                self._connecting = Future()
                leader = True
            else:
                leader = False
            pending = self._connecting

        if stale is not None:
            logger.info("Dropping stale MQTT connection")
            close_client(stale)

        if leader:
            return self._lead_connect(pending)

        try:
            client = pending.result(timeout=self.config.connect_timeout)
        except FutureTimeout:
            raise ConnectTimeout(
                f"MQTT connection timeout ({self.config.connect_timeout:g}s)"
            )
        with self._lock:
            self._hold(client)
        return client

    def _lead_connect(self, pending: Future) -> mqtt.Client:
        try:
            client = self._dial()
        except DeliveryError as e:
            with self._lock:
                self._connecting = None
                self.state = BusState.DISCONNECTED
            pending.set_exception(e)
            raise

        with self._lock:
            self._client = client
            self._connecting = None
            self._hold(client)
            self.state = BusState.CONNECTED
        pending.set_result(client)
        return client

    def _dial(self) -> mqtt.Client:
        self.state = BusState.CONNECTING
        connected = threading.Event()
        outcome = {}

        def on_connect(client, userdata, flags, reason_code, properties=None):
            outcome["reason_code"] = reason_code
            connected.set()

        def on_disconnect(client, userdata, flags, reason_code, properties=None):
            logger.info(f"MQTT disconnected with reason code: {reason_code}")

        try:
            client = self._client_factory(self.config)
            client.on_connect = on_connect
            client.on_disconnect = on_disconnect
            logger.info(f"Connecting to {self.config.host}:{self.config.port}")
            client.connect_async(self.config.host, self.config.port, keepalive=self.config.keepalive)
            client.loop_start()
        except Exception as e:
            raise ConnectFailed(f"MQTT connection failed: {e}") from e
        self.connections_opened += 1

        if not connected.wait(timeout=self.config.connect_timeout):
            close_client(client)
            raise ConnectTimeout(
                f"MQTT connection timeout ({self.config.connect_timeout:g}s)"
            )

        reason_code = outcome["reason_code"]
        if reason_code.is_failure:
            close_client(client)
            raise ConnectFailed(f"MQTT broker refused connection: {reason_code}")

        logger.info(f"MQTT connected successfully to {self.config.host}")
        return client

    def _retire(self, client: mqtt.Client) -> bool:
        """
        Detach ``client`` from the pool. Returns True when nobody holds it and
        it can be closed now; otherwise the last holder closes it.
        """
        if client is self._client:
            self._client = None
            self.state = BusState.DISCONNECTED
        if self._holders.get(client):
            self._retired.add(client)
            return False
        self._retired.discard(client)
        return True

    def release(self, client: mqtt.Client) -> None:
        """Hand a healthy client back. Closes it when connection reuse is off."""
        with self._lock:
            remaining = self._let_go(client)
            if client in self._retired:
                close_now = remaining == 0 and self._retire(client)
            else:
                close_now = not self.config.reuse_connections and client is self._client and self._retire(client)
        if close_now:
            close_client(client)

    def discard(self, client: mqtt.Client) -> None:
        """
        Drop a client that failed mid-operation. New callers get a fresh
        connection; the client is closed once its last holder lets go.
        """
        with self._lock:
            self._let_go(client)
            close_now = self._retire(client)
        if close_now:
            logger.warning("Closing MQTT connection after failure")
            close_client(client)
        else:
            logger.warning("MQTT connection failed, closing after in-flight publishes finish")

    def close_if_idle(self) -> bool:
        with self._lock:
            idle_for = self._clock() - self._last_release
            if self._client is None or self.in_use > 0 or idle_for < self.config.idle_timeout:
                return False
            client, self._client = self._client, None
            self.state = BusState.DISCONNECTED
        logger.info(f"Closing MQTT connection idle for {idle_for:.0f}s")
        close_client(client)
        return True

    def close(self) -> None:
        with self._lock:
            clients = list(self._retired)
            if self._client is not None:
                clients.append(self._client)
            self._client = None
            self._retired.clear()
            self._holders.clear()
            self.state = BusState.DISCONNECTED
        for client in clients:
            close_client(client)
        if clients:
            logger.info("MQTT connection closed")
