from __future__ import annotations

import pytest

from monsters.config import GameConfig


def test_presets_differ_in_threshold_and_rounds():
    interactive = GameConfig.interactive()
    stress = GameConfig.stress()
    assert interactive.win_threshold == 5
    assert interactive.max_rounds == 0
    assert not interactive.metrics_enabled
    assert stress.win_threshold == 20
    assert stress.max_rounds == 1
    assert stress.metrics_enabled
    assert stress.expected_clients == 500
    assert GameConfig.stress(win_threshold=3).win_threshold == 3


def test_bus_address():
    assert GameConfig(bus_host="broker", bus_port=1234).bus_address == "ws://broker:1234"


def test_environment_overrides():
    config = GameConfig().with_env(
        {
            "MONSTERS_PORT": "6000",
            "MONSTERS_SPAWN_INTERVAL": "0.25",
            "MONSTERS_METRICS_ENABLED": "yes",
            "MONSTERS_TOPIC": "",
        }
    )
    assert config.port == 6000
    assert config.spawn_interval == 0.25
    assert config.metrics_enabled is True
    assert config.topic == "Monsters"


def test_environment_rejects_garbage():
    with pytest.raises(ValueError):
        GameConfig().with_env({"MONSTERS_WIN_THRESHOLD": "lots"})


@pytest.mark.parametrize(
    "overrides",
    [
        {"win_threshold": 0},
        {"spawn_interval": -1},
        {"field_width": 0},
        {"port": 70000},
        {"topic": "two words"},
        {"max_rounds": -1},
        {"publish_timeout": 0},
    ],
)
def test_validate_rejects_invalid_values(overrides):
    with pytest.raises(ValueError):
        GameConfig(**overrides).validate()
