from __future__ import annotations

import socket
import time

import pytest
from fastapi.testclient import TestClient

from monsters.bus import BusError
from monsters.hub import HubBus, TopicHub, create_hub_app


@pytest.fixture()
def hub() -> TopicHub:
    return TopicHub(status_provider=lambda: {"round_id": 1, "phase": "running"})


def test_subscriber_receives_published_payloads(hub: TopicHub):
    with TestClient(create_hub_app(hub)) as client:
        with client.websocket_connect("/ws/Monsters") as websocket:
            assert hub.publish_threadsafe("Monsters", "0 4 2", timeout=2.0) == 1
            assert websocket.receive_text() == "0 4 2"
            assert hub.publish_threadsafe("Other", "WINNER bob", timeout=2.0) == 0
            hub.publish_threadsafe("Monsters", "WINNER alice", timeout=2.0)
            assert websocket.receive_text() == "WINNER alice"


def test_health_reports_topics_and_game_state(hub: TopicHub):
    with TestClient(create_hub_app(hub)) as client:
        with client.websocket_connect("/ws/Monsters"):
            body = client.get("/health").json()
    assert body["status"] == "ok"
    assert body["topics"] == {"Monsters": 1}
    assert body["game"]["phase"] == "running"


def test_publish_without_running_loop_fails(hub: TopicHub):
    with pytest.raises(BusError):
        hub.publish_threadsafe("Monsters", "0 1 1", timeout=0.1)


def free_port() -> int:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def _wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_hub_bus_delivers_to_remote_subscribers():
    bus = HubBus("127.0.0.1", free_port(), publish_timeout=2.0)
    bus.start()
    try:
        assert bus.running
        subscription = bus.subscribe("Monsters")
        assert _wait_for(lambda: bus.hub.subscriber_count("Monsters") == 1)
        bus.publish("Monsters", "0 1 2")
        bus.publish("Monsters", "WINNER alice")
        assert subscription.get(timeout=5.0) == "0 1 2"
        assert subscription.get(timeout=5.0) == "WINNER alice"
        subscription.close()
        assert _wait_for(lambda: bus.hub.subscriber_count("Monsters") == 0)
    finally:
        bus.close()
    assert not bus.running


def test_hub_bus_reports_busy_port():
    with socket.socket() as taken:
        taken.bind(("127.0.0.1", 0))
        taken.listen(1)
        bus = HubBus("127.0.0.1", taken.getsockname()[1])
        with pytest.raises(BusError):
            bus.start()
        bus.close()
