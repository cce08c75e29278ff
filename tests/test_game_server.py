"""End-to-end tests over real loopback sockets."""

from __future__ import annotations

import socket
import time

import pytest

from monsters import GameConfig, GameServer, InMemoryBus, RoundPhase
from monsters.models import GameOverEvent, WinnerEvent
from monsters.protocol import parse_event, parse_info


class Player:
    def __init__(self, address, name=None):
        self.sock = socket.create_connection(address, timeout=5.0)
        self.reader = self.sock.makefile("r", encoding="utf-8", newline="\n")
        self.welcome = self.readline()
        self.prompt = self.readline()
        self.greeting = None
        self.info = None
        if name is not None:
            self.send(name)
            self.greeting = self.readline()
            self.info = self.readline()

    def send(self, line: str) -> None:
        self.sock.sendall(f"{line}\n".encode("utf-8"))

    def readline(self) -> str:
        return self.reader.readline().rstrip("\n")

    def hit(self, count: int = 1) -> None:
        for _ in range(count):
            self.send(f"hit {int(time.time() * 1000)}")

    def close(self) -> None:
        self.reader.close()
        self.sock.close()


def _wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture()
def make_server(tmp_path):
    servers = []

    def _make(**overrides) -> GameServer:
        values = dict(
            host="127.0.0.1",
            port=0,
            spawn_interval=60.0,
            results_path=str(tmp_path / "stress_results.csv"),
        )
        values.update(overrides)
        server = GameServer(GameConfig(**values), bus=InMemoryBus())
        server.start()
        servers.append(server)
        return server

    yield _make
    for server in servers:
        server.stop()


def test_handshake_sends_score_and_channel_info(make_server):
    server = make_server(game_name="MONSTERS", bus_host="10.0.0.5", bus_port=7000, topic="Monsters")
    player = Player(server.address, "alice")
    assert player.welcome == "WELCOME TO MONSTERS"
    assert player.prompt == "Enter your name:"
    assert player.greeting == "Welcome alice! Your current score: 0"
    assert player.info == "INFO CHANNEL=ws://10.0.0.5:7000 TOPIC=Monsters"
    player.close()


def test_empty_name_closes_without_registering(make_server):
    server = make_server()
    player = Player(server.address)
    player.send("   ")
    assert player.reader.readline() == ""
    assert server.ledger.snapshot() == {}
    player.close()


def test_reregistration_resumes_score(make_server):
    server = make_server(win_threshold=10)
    first = Player(server.address, "alice")
    first.hit(3)
    assert _wait_for(lambda: server.ledger.score_of("alice") == 3)
    first.send("exit")
    first.close()

    second = Player(server.address, "alice")
    assert second.greeting == "Welcome alice! Your current score: 3"
    second.close()


def test_malformed_hit_keeps_session_alive(make_server):
    server = make_server(win_threshold=10)
    player = Player(server.address, "alice")
    player.send("hit abc")
    player.send("hit 1 2 3")
    player.send("dance")
    player.hit()
    assert _wait_for(lambda: server.ledger.score_of("alice") == 1)
    player.close()


def test_winner_is_announced_on_bus_and_registration_channel(make_server):
    server = make_server(win_threshold=5, max_rounds=1)
    events = server.bus.subscribe(server.config.topic)
    players = [Player(server.address, name) for name in ("alice", "bob", "carol")]
    assert _wait_for(lambda: len(server.registrar.sessions()) == 3)
    for player in players:
        player.hit(5)

    for player in players:
        line = player.readline()
        assert line.startswith("WINNER ")
    assert server.wait(timeout=5.0)

    winners = [payload for payload in events.drain() if payload.startswith("WINNER")]
    assert len(winners) == 1
    scores = server.ledger.snapshot()
    assert sorted(scores.values())[-1] == 5
    assert sum(1 for score in scores.values() if score == 5) == 1
    for player in players:
        player.close()


def test_round_limit_stops_accepting(make_server, tmp_path):
    server = make_server(win_threshold=2, max_rounds=1, metrics_enabled=True, expected_clients=1)
    events = server.bus.subscribe(server.config.topic)
    player = Player(server.address, "alice")
    player.hit(2)
    assert player.readline() == "WINNER alice"
    assert server.wait(timeout=5.0)
    assert server.rounds.phase is RoundPhase.TERMINATED
    assert _wait_for(lambda: not server.registrar.accepting)
    assert events.drain()[-2:] == ["WINNER alice", "The game is over!"]

    rows = (tmp_path / "stress_results.csv").read_text().splitlines()
    assert rows[1].startswith("1,alice,1,")
    assert rows[1].endswith(",100.0")
    player.close()


def test_stop_closes_open_connections(make_server):
    server = make_server()
    player = Player(server.address, "alice")
    assert _wait_for(lambda: len(server.registrar.sessions()) == 1)
    server.stop()
    assert player.reader.readline() == ""
    assert _wait_for(lambda: not server.registrar.sessions())
    player.close()


def test_port_in_use_is_a_startup_error(make_server):
    server = make_server()
    clash = GameServer(GameConfig(host="127.0.0.1", port=server.address[1]), bus=InMemoryBus())
    with pytest.raises(OSError):
        clash.start()


def test_unusable_listener_terminates_the_game(make_server, caplog):
    server = make_server()
    server.registrar._server.close()
    assert server.wait(timeout=5.0)
    assert server.failure is not None
    assert server.rounds.phase is RoundPhase.TERMINATED
    assert _wait_for(lambda: not server.registrar.accepting)
    assert "Listening socket is unusable" in caplog.text
    assert "Failed to accept a connection" not in caplog.text


def _free_port() -> int:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def test_default_bus_delivers_winner_over_websocket(tmp_path):
    bus_port = _free_port()
    config = GameConfig(
        host="127.0.0.1",
        port=0,
        bus_host="127.0.0.1",
        bus_port=bus_port,
        win_threshold=2,
        max_rounds=1,
        spawn_interval=60.0,
        publish_timeout=2.0,
        results_path=str(tmp_path / "stress_results.csv"),
    )
    server = GameServer(config)
    server.start()
    try:
        player = Player(server.address, "alice")
        info = parse_info(player.info)
        assert info == {"CHANNEL": f"ws://127.0.0.1:{bus_port}", "TOPIC": "Monsters"}
        events = server.bus.subscribe(info["TOPIC"])
        assert _wait_for(lambda: server.bus.hub.subscriber_count("Monsters") == 1)

        player.hit(2)
        assert player.readline() == "WINNER alice"
        received = []
        while not received or not isinstance(received[-1], GameOverEvent):
            payload = events.get(timeout=5.0)
            assert payload is not None
            received.append(parse_event(payload))
        assert received[-2:] == [WinnerEvent("alice"), GameOverEvent()]
        assert server.wait(timeout=5.0)
        events.close()
        player.close()
    finally:
        server.stop()
    assert not server.bus.running
