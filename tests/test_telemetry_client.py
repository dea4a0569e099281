from __future__ import annotations

import paho.mqtt.client as mqtt
import pytest

from telemetry_helpers import (
    MSG_CONNECT_FAILED,
    MSG_DISCONNECTED,
    ConnectionState,
    TelemetryClient,
    build_paho_client,
)
from utils.config import BrokerConfig


@pytest.fixture
def client(broker_cfg, fake_paho):
    c = TelemetryClient(broker_cfg, client_factory=lambda cfg: fake_paho)
    c.states = []
    c.messages = []
    c.state_callback = lambda st, msg: c.states.append((st, msg))
    c.message_callback = lambda topic, payload: c.messages.append((topic, payload))
    return c


def test_open_is_non_blocking_and_enters_connecting(client, fake_paho):
    client.open()
    assert client.state is ConnectionState.CONNECTING
    assert client.states == [(ConnectionState.CONNECTING, "")]
    assert ("connect_async", "broker.example.com", 8884, 60) in fake_paho.calls
    assert fake_paho.count("loop_start") == 1


def test_ack_marks_connected_and_subscribes(client, fake_paho):
    client.open()
    fake_paho.ack()
    assert client.is_connected
    assert client.last_error == ""
    assert ("subscribe", "esp32/health", 0) in fake_paho.calls
    assert client.states[-1] == (ConnectionState.CONNECTED, "")


def test_refused_connack_is_an_error(client, fake_paho):
    client.open()
    fake_paho.ack(ok=False)
    assert client.state is ConnectionState.ERROR
    assert client.last_error.startswith(MSG_CONNECT_FAILED)
    assert fake_paho.count("subscribe") == 0


def test_connect_fail_is_an_error(client, fake_paho):
    client.open()
    fake_paho.on_connect_fail(fake_paho, None)
    assert client.state is ConnectionState.ERROR
    assert client.last_error == MSG_CONNECT_FAILED
    assert not client.is_connected


def test_disconnect_event_records_message(client, fake_paho):
    client.open()
    fake_paho.ack()
    fake_paho.drop()
    assert client.state is ConnectionState.DISCONNECTED
    assert client.last_error == MSG_DISCONNECTED


def test_messages_are_forwarded_as_bytes(client, fake_paho):
    client.open()
    fake_paho.ack()
    fake_paho.deliver(bytearray(b'{"heart_rate":72}'))
    assert client.messages == [("esp32/health", b'{"heart_rate":72}')]
    assert isinstance(client.messages[0][1], bytes)


def test_failing_message_callback_does_not_escape(client, fake_paho):
    def boom(topic, payload):
        raise RuntimeError("boom")

    client.message_callback = boom
    client.open()
    fake_paho.deliver(b"{}")


def test_close_when_connected_disconnects_once(client, fake_paho):
    client.open()
    fake_paho.ack()
    client.close()
    client.close()
    assert fake_paho.count("disconnect") == 1
    assert fake_paho.count("loop_stop") == 1
    assert client.state is ConnectionState.DISCONNECTED
    assert client.is_closed


def test_close_when_not_connected_only_stops_loop(client, fake_paho):
    client.open()
    client.close()
    assert fake_paho.count("disconnect") == 0
    assert fake_paho.count("loop_stop") == 1


def test_close_runs_once_regardless_of_reconnects(client, fake_paho):
    client.open()
    for _ in range(3):
        fake_paho.ack()
        fake_paho.drop()
    fake_paho.ack()
    assert client.connect_count == 4

    client.close()
    client.close()
    assert fake_paho.count("disconnect") == 1
    assert fake_paho.count("loop_stop") == 1


def test_events_after_close_are_ignored(client, fake_paho):
    client.open()
    fake_paho.ack()
    client.close()
    seen = list(client.states)

    fake_paho.deliver(b'{"ecg":1.0}')
    fake_paho.drop()
    fake_paho.ack()

    assert client.messages == []
    assert client.states == seen
    assert client.state is ConnectionState.DISCONNECTED


def test_subscription_releases_on_error(client, fake_paho):
    with pytest.raises(RuntimeError):
        with client.subscription():
            fake_paho.ack()
            raise RuntimeError("view crashed")
    assert client.is_closed
    assert fake_paho.count("disconnect") == 1


def test_setup_failure_becomes_error_state(broker_cfg):
    def factory(cfg):
        raise OSError("no route to host")

    c = TelemetryClient(broker_cfg, client_factory=factory)
    c.open()
    assert c.state is ConnectionState.ERROR
    assert "no route to host" in c.last_error
    c.close()


def test_build_paho_client_for_secure_websockets():
    cfg = BrokerConfig(url="wss://broker.example.com:8884/mqtt", username="u", password="p")
    c = build_paho_client(cfg)
    assert isinstance(c, mqtt.Client)


def test_build_paho_client_for_plain_tcp():
    cfg = BrokerConfig(url="mqtt://localhost", protocol_version=5)
    c = build_paho_client(cfg)
    assert isinstance(c, mqtt.Client)
