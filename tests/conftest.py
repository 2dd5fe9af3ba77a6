'''
Pytest configuration for the bell scheduler.

This file sets up fixtures for:
1. An in-memory stand-in for the Firestore client (collections, queries,
   write batches, Increment transforms).
2. An in-memory stand-in for the paho MQTT client whose connect and publish
   behaviour is chosen per test.
3. Pre-wired store, connection manager, delivery engine, reconciler and
   command gateway instances, plus a FastAPI TestClient.
'''
import copy
import datetime
import itertools
import threading
from typing import Any, Dict, List, Optional

import paho.mqtt.client as mqtt
import pytest
from fastapi.testclient import TestClient
from google.api_core import exceptions as gcp_exceptions
from google.cloud.firestore_v1 import Increment
from paho.mqtt.packettypes import PacketTypes
from paho.mqtt.reasoncodes import ReasonCode

from bell_scheduler.api.app import create_app
from bell_scheduler.api.identity import JWTIdentityProvider
from bell_scheduler.config import DeliveryConfig, MqttConfig
from bell_scheduler.firestore.schedule_firestore import ScheduleStore
from bell_scheduler.gateway.command_gateway import CommandGateway
from bell_scheduler.models.model import Period, TimeReading
from bell_scheduler.mqtt.delivery_engine import DeliveryEngine
from bell_scheduler.mqtt.mqtt_manager import MqttConnectionManager
from bell_scheduler.scheduler.reconciler import ScheduleReconciler

TEST_USER = "u1@example.com"
OTHER_USER = "u2@example.com"
JWT_SECRET = "test-secret"

BASE_TIME = datetime.datetime(2024, 5, 6, 8, 0, tzinfo=datetime.timezone.utc)


# ---------------------------------------------------------------------------
# Firestore test double
# ---------------------------------------------------------------------------

class FakeSnapshot:
    def __init__(self, reference: "FakeDocumentReference", data: Optional[Dict[str, Any]], update_time=None):
        self.reference = reference
        self.id = reference.id
        self._data = data
        self.update_time = update_time

    @property
    def exists(self) -> bool:
        return self._data is not None

    def to_dict(self) -> Optional[Dict[str, Any]]:
        return copy.deepcopy(self._data)


class FakeDocumentReference:
    def __init__(self, db: "FakeFirestore", collection: str, doc_id: str):
        self._db = db
        self.collection = collection
        self.id = doc_id

    def get(self) -> FakeSnapshot:
        self._db.check()
        data = self._db.docs(self.collection).get(self.id)
        return FakeSnapshot(self, data, self._db.update_time(self))

    def set(self, data: Dict[str, Any]) -> None:
        self._db.check()
        self._db.apply_set(self, data)

    def update(self, data: Dict[str, Any], option: Optional["FakeWriteOption"] = None) -> None:
        self._db.check()
        if self._db.before_update is not None:
            hook, self._db.before_update = self._db.before_update, None
            hook()
        if option is not None and option.last_update_time != self._db.update_time(self):
            raise gcp_exceptions.FailedPrecondition(f"{self.id} was modified since last read")
        self._db.apply_update(self, data)

    def delete(self) -> None:
        self._db.check()
        self._db.docs(self.collection).pop(self.id, None)


class FakeQuery:
    OPS = {
        "==": lambda a, b: a == b,
        "!=": lambda a, b: a != b,
        "<": lambda a, b: a is not None and a < b,
        "<=": lambda a, b: a is not None and a <= b,
        ">": lambda a, b: a is not None and a > b,
        ">=": lambda a, b: a is not None and a >= b,
    }

    def __init__(self, db: "FakeFirestore", collection: str, filters=(), order=None, limit_to=None):
        self._db = db
        self._collection = collection
        self._filters = list(filters)
        self._order = order
        self._limit = limit_to

    def _copy(self, **changes) -> "FakeQuery":
        params = dict(filters=self._filters, order=self._order, limit_to=self._limit)
        params.update(changes)
        return FakeQuery(self._db, self._collection, **params)

    def where(self, *, filter):
        return self._copy(filters=self._filters + [filter])

    def order_by(self, field_path: str, direction: str = "ASCENDING"):
        return self._copy(order=(field_path, direction))

    def limit(self, count: int):
        return self._copy(limit_to=count)

    def stream(self):
        self._db.check()
        self._db.query_count += 1
        docs = self._db.docs(self._collection)
        matches = []
        for doc_id, data in docs.items():
            if all(self.OPS[f.op_string](data.get(f.field_path), f.value) for f in self._filters):
                matches.append((doc_id, data))
        if self._order is not None:
            field, direction = self._order
            matches.sort(key=lambda item: item[1].get(field), reverse=direction == "DESCENDING")
        if self._limit is not None:
            matches = matches[:self._limit]
        for doc_id, data in matches:
            ref = FakeDocumentReference(self._db, self._collection, doc_id)
            yield FakeSnapshot(ref, data, self._db.update_time(ref))


class FakeCollection(FakeQuery):
    def __init__(self, db: "FakeFirestore", name: str):
        super().__init__(db, name)
        self.name = name

    def document(self, doc_id: Optional[str] = None) -> FakeDocumentReference:
        if doc_id is None:
            doc_id = f"doc{next(self._db.ids):04d}"
        return FakeDocumentReference(self._db, self.name, doc_id)


class FakeWriteBatch:
    def __init__(self, db: "FakeFirestore"):
        self._db = db
        self._ops: List[tuple] = []

    def set(self, ref, data):
        self._ops.append(("set", ref, data))

    def update(self, ref, data):
        self._ops.append(("update", ref, data))

    def delete(self, ref):
        self._ops.append(("delete", ref, None))

    def commit(self):
        self._db.check()
        for op, ref, data in self._ops:
            if op == "set":
                self._db.apply_set(ref, data)
            elif op == "update":
                self._db.apply_update(ref, data)
            else:
                self._db.docs(ref.collection).pop(ref.id, None)
        self._db.commits += 1


class FakeWriteOption:
    def __init__(self, last_update_time):
        self.last_update_time = last_update_time


class FakeFirestore:
    """Implements the slice of google.cloud.firestore_v1.Client the store uses."""

    def __init__(self):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.ids = itertools.count(1)
        self.commits = 0
        self.query_count = 0
        self.fail_with: Optional[Exception] = None
        # runs once, right before the next document update is applied
        self.before_update = None
        self._versions: Dict[tuple, int] = {}
        self._clock = itertools.count(1)

    def check(self):
        if self.fail_with is not None:
            raise self.fail_with

    def docs(self, collection: str) -> Dict[str, Dict[str, Any]]:
        return self._collections.setdefault(collection, {})

    def collection(self, name: str) -> FakeCollection:
        return FakeCollection(self, name)

    def batch(self) -> FakeWriteBatch:
        return FakeWriteBatch(self)

    def write_option(self, last_update_time=None) -> FakeWriteOption:
        return FakeWriteOption(last_update_time)

    def update_time(self, ref):
        return self._versions.get((ref.collection, ref.id))

    def _touch(self, ref):
        self._versions[(ref.collection, ref.id)] = next(self._clock)

    def apply_set(self, ref, data):
        self.docs(ref.collection)[ref.id] = copy.deepcopy(data)
        self._touch(ref)

    def apply_update(self, ref, data):
        docs = self.docs(ref.collection)
        if ref.id not in docs:
            raise gcp_exceptions.NotFound(f"No document to update: {ref.id}")
        current = docs[ref.id]
        for key, value in data.items():
            if isinstance(value, Increment):
                current[key] = current.get(key, 0) + value.value
            else:
                current[key] = copy.deepcopy(value)
        self._touch(ref)


# ---------------------------------------------------------------------------
# paho MQTT test double
# ---------------------------------------------------------------------------

class FakeMessageInfo:
    def __init__(self, rc: int, acked: bool):
        self.rc = rc
        self._acked = acked
        self.wait_timeouts: List[Optional[float]] = []

    def wait_for_publish(self, timeout: Optional[float] = None) -> None:
        self.wait_timeouts.append(timeout)

    def is_published(self) -> bool:
        return self._acked


class FakeMqttClient:
    """
    connect_mode: "ack" (broker accepts), "refuse" (CONNACK failure),
                  "never" (no CONNACK at all)
    publish_mode: "ack", "never" (no PUBACK), "reject" (client error rc)
    """

    def __init__(self, connect_mode: str = "ack", publish_mode: str = "ack", connect_delay: float = 0.0):
        self.connect_mode = connect_mode
        self.publish_mode = publish_mode
        self.connect_delay = connect_delay
        self.on_connect = None
        self.on_disconnect = None
        self.connected = False
        self.loop_running = False
        self.closed = False
        self.published: List[Dict[str, Any]] = []
        self.infos: List[FakeMessageInfo] = []

    def connect_async(self, host, port, keepalive=60):
        self.target = (host, port, keepalive)

    def _handshake(self):
        if self.connect_mode == "ack":
            self.connected = True
            self.on_connect(self, None, {}, ReasonCode(PacketTypes.CONNACK, "Success"), None)
        elif self.connect_mode == "refuse":
            self.on_connect(self, None, {}, ReasonCode(PacketTypes.CONNACK, "Not authorized"), None)

    def loop_start(self):
        self.loop_running = True
        if self.connect_delay:
            threading.Timer(self.connect_delay, self._handshake).start()
        else:
            self._handshake()

    def loop_stop(self):
        self.loop_running = False

    def disconnect(self):
        self.connected = False
        self.closed = True

    def is_connected(self) -> bool:
        return self.connected

    def publish(self, topic, payload=None, qos=0, retain=False):
        if self.publish_mode == "reject":
            info = FakeMessageInfo(mqtt.MQTT_ERR_NO_CONN, acked=False)
        else:
            info = FakeMessageInfo(mqtt.MQTT_ERR_SUCCESS, acked=self.publish_mode == "ack")
            self.published.append({"topic": topic, "payload": payload, "qos": qos})
        self.infos.append(info)
        return info

    @property
    def is_open(self) -> bool:
        return self.loop_running and not self.closed


class FakeMqttFactory:
    """Client factory handing out FakeMqttClient instances and keeping them for inspection."""

    def __init__(self, **client_kwargs):
        self.client_kwargs = client_kwargs
        self.clients: List[FakeMqttClient] = []
        self._lock = threading.Lock()

    def __call__(self, config: MqttConfig) -> FakeMqttClient:
        client = FakeMqttClient(**self.client_kwargs)
        with self._lock:
            self.clients.append(client)
        return client

    @property
    def messages(self) -> List[Dict[str, Any]]:
        return [m for c in self.clients for m in c.published]

    @property
    def open_clients(self) -> List[FakeMqttClient]:
        return [c for c in self.clients if c.is_open]


class FixedTimeSource:
    def __init__(self):
        self.calls = 0

    def now(self) -> TimeReading:
        self.calls += 1
        return TimeReading(
            hour=9, minute=30, second=15, day_of_week="Monday",
            timestamp="2024-05-06T09:30:15+05:30", source="test_clock",
        )

    def manual(self, hour: int, minute: int, second: int = 0) -> TimeReading:
        return TimeReading(
            hour=hour, minute=minute, second=second, day_of_week="Monday",
            timestamp="2024-05-06T00:00:00+05:30", source="manual", manual=True,
        )


class StepClock:
    """Deterministic UTC clock advancing one minute per call."""

    def __init__(self, start: datetime.datetime = BASE_TIME):
        self.current = start

    def __call__(self) -> datetime.datetime:
        value = self.current
        self.current += datetime.timedelta(minutes=1)
        return value


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def fake_db() -> FakeFirestore:
    return FakeFirestore()


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def store(fake_db, clock) -> ScheduleStore:
    return ScheduleStore(fake_db, clock=clock)


@pytest.fixture
def mqtt_config() -> MqttConfig:
    return MqttConfig(
        host="broker.test",
        username="bell",
        password="secret",
        use_tls=False,
        connect_timeout=0.5,
        publish_timeout=0.2,
        idle_timeout=60,
    )


@pytest.fixture
def mqtt_factory() -> FakeMqttFactory:
    return FakeMqttFactory()


@pytest.fixture
def connections(mqtt_config, mqtt_factory) -> MqttConnectionManager:
    return MqttConnectionManager(mqtt_config, client_factory=mqtt_factory)


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def engine(connections, sleeps) -> DeliveryEngine:
    return DeliveryEngine(connections, retry_base_delay=1.0, sleep=sleeps.append)


@pytest.fixture
def reconciler(store, engine) -> ScheduleReconciler:
    return ScheduleReconciler(store, engine)


@pytest.fixture
def time_source() -> FixedTimeSource:
    return FixedTimeSource()


@pytest.fixture
def gateway(store, engine, reconciler, time_source) -> CommandGateway:
    return CommandGateway(
        store=store,
        engine=engine,
        reconciler=reconciler,
        time_source=time_source,
        config=DeliveryConfig(live_retries=2, retry_base_delay=1.0),
    )


@pytest.fixture
def identity() -> JWTIdentityProvider:
    return JWTIdentityProvider(secret=JWT_SECRET)


@pytest.fixture
def client(gateway, identity) -> TestClient:
    return TestClient(create_app(gateway, identity))


@pytest.fixture
def auth_headers(identity) -> Dict[str, str]:
    return {"Authorization": f"Bearer {identity.create_token(TEST_USER)}"}


@pytest.fixture
def monday_period() -> Period:
    return Period(name="P1", day="Monday", start_time="08:00", end_time="08:45", duration=5)
