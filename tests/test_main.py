from __future__ import annotations

from dataclasses import replace

import main as cli
from main import _build_parser, build_config, main
from monsters import GameServer, InMemoryBus


def test_flags_override_environment_and_preset(monkeypatch):
    monkeypatch.setenv("MONSTERS_PORT", "7001")
    monkeypatch.setenv("MONSTERS_TOPIC", "FromEnv")
    args = _build_parser().parse_args(["serve", "--mode", "stress", "--topic", "FromFlag"])
    config = build_config(args)
    assert config.port == 7001
    assert config.topic == "FromFlag"
    assert config.win_threshold == 20
    assert config.metrics_enabled


def test_invalid_configuration_exits_with_usage_code(monkeypatch):
    monkeypatch.delenv("MONSTERS_PORT", raising=False)
    assert main(["serve", "--win-threshold", "0"]) == 2


class _ListenerLostServer(GameServer):
    def __init__(self, config):
        super().__init__(replace(config, host="127.0.0.1", port=0), bus=InMemoryBus())

    def start(self):
        address = super().start()
        self.registrar._server.close()
        return address


def test_lost_listener_exits_non_zero(monkeypatch):
    monkeypatch.setattr(cli, "GameServer", _ListenerLostServer)
    assert main(["serve", "--spawn-interval", "60"]) == 1
