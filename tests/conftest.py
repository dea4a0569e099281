from __future__ import annotations

from types import SimpleNamespace

import numpy as np
import pytest

from processing.metrics import PlaceholderIntervalEstimator
from utils.config import BrokerConfig


class FakePahoClient:
    """Stands in for paho.mqtt.client.Client; records calls, never touches the network."""

    def __init__(self):
        self.calls = []
        self.on_connect = None
        self.on_connect_fail = None
        self.on_disconnect = None
        self.on_message = None

    def connect_async(self, host, port, keepalive=60):
        self.calls.append(("connect_async", host, port, keepalive))

    def loop_start(self):
        self.calls.append(("loop_start",))

    def loop_stop(self):
        self.calls.append(("loop_stop",))

    def disconnect(self):
        self.calls.append(("disconnect",))

    def subscribe(self, topic, qos=0):
        self.calls.append(("subscribe", topic, qos))

    def count(self, name: str) -> int:
        return sum(1 for c in self.calls if c[0] == name)

    # helpers that play the broker side
    def ack(self, ok: bool = True):
        rc = SimpleNamespace(is_failure=not ok, value=0 if ok else 135)
        self.on_connect(self, None, SimpleNamespace(session_present=False), rc, None)

    def drop(self):
        rc = SimpleNamespace(is_failure=True, value=7)
        self.on_disconnect(self, None, SimpleNamespace(), rc, None)

    def deliver(self, payload: bytes, topic: str = "esp32/health"):
        self.on_message(self, None, SimpleNamespace(topic=topic, payload=payload))


@pytest.fixture
def broker_cfg():
    return BrokerConfig(url="wss://broker.example.com:8884/mqtt", topic="esp32/health")


@pytest.fixture
def fake_paho():
    return FakePahoClient()


@pytest.fixture
def seeded_estimator():
    return PlaceholderIntervalEstimator(rng=np.random.default_rng(1234))


@pytest.fixture
def paho_factory():
    """每次呼叫產生新的 FakePahoClient；created 依序保留，方便對照每次 activate。"""
    created = []

    def factory(cfg):
        c = FakePahoClient()
        created.append(c)
        return c

    factory.created = created
    return factory
