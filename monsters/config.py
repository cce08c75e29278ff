"""Configuration objects for the coordination server runtime."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from typing import Any, Mapping, Optional

ENV_PREFIX = "MONSTERS_"

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class GameConfig:
    """Static configuration describing how the game server runs.

    Attributes
    ----------
    game_name:
        Name announced in the first handshake line
        (``WELCOME TO <game_name>``).
    host, port:
        Address of the registration listener.  Port ``0`` lets the
        operating system pick a free port.
    bus_host, bus_port:
        Address of the broadcast hub.  Players receive it in the ``INFO``
        handshake line and subscribe there for spawn and winner events.
    topic:
        Name of the broadcast topic.
    win_threshold:
        Score that ends a round.  The first player whose increment reaches
        it is declared the winner.
    spawn_interval:
        Seconds between two spawn events.  ``0`` publishes continuously.
    field_width, field_height:
        Size of the play field; spawn coordinates are drawn from
        ``[0, width)`` and ``[0, height)``.
    expected_clients:
        Number of clients a stress run expects.  Used for the success
        rate; ``0`` reports 100%.
    max_rounds:
        Rounds to play before the server terminates.  ``0`` plays forever.
    metrics_enabled:
        Collect latency samples and append one CSV row per round.
    results_path:
        CSV file receiving the per-round statistics.
    publish_timeout:
        Upper bound, in seconds, for a single publication on the bus.
    handshake_timeout:
        Seconds a freshly accepted connection may take to send its name.
    """

    game_name: str = "MONSTERS"
    host: str = "0.0.0.0"
    port: int = 50000
    bus_host: str = "127.0.0.1"
    bus_port: int = 61616
    topic: str = "Monsters"
    win_threshold: int = 5
    spawn_interval: float = 1.0
    field_width: int = 9
    field_height: int = 9
    expected_clients: int = 0
    max_rounds: int = 0
    metrics_enabled: bool = False
    results_path: str = "stress_results.csv"
    publish_timeout: float = 0.5
    handshake_timeout: float = 10.0

    @property
    def bus_address(self) -> str:
        return f"ws://{self.bus_host}:{self.bus_port}"

    @classmethod
    def interactive(cls, **overrides: Any) -> "GameConfig":
        return cls(**overrides)

    @classmethod
    def stress(cls, **overrides: Any) -> "GameConfig":
        """Preset used by load tests: one long round with metrics on."""
        values = dict(
            game_name="THE STRESS TEST",
            port=5000,
            win_threshold=20,
            expected_clients=500,
            max_rounds=1,
            metrics_enabled=True,
        )
        values.update(overrides)
        return cls(**values)

    def with_env(self, environ: Optional[Mapping[str, str]] = None) -> "GameConfig":
        """Return a copy with ``MONSTERS_*`` environment overrides applied."""
        environ = os.environ if environ is None else environ
        overrides = {}
        for field_ in fields(self):
            raw = environ.get(ENV_PREFIX + field_.name.upper())
            if raw is None or raw == "":
                continue
            overrides[field_.name] = _coerce(raw, type(getattr(self, field_.name)), field_.name)
        return replace(self, **overrides)

    def validate(self) -> None:
        if not self.game_name.strip():
            raise ValueError("Game name must not be empty")
        if not 0 <= self.port <= 65535 or not 0 <= self.bus_port <= 65535:
            raise ValueError("Ports must be between 0 and 65535")
        if not self.topic.strip() or any(ch.isspace() for ch in self.topic):
            raise ValueError("Topic must be a single non-empty token")
        if self.win_threshold <= 0:
            raise ValueError("Win threshold must be positive")
        if self.spawn_interval < 0:
            raise ValueError("Spawn interval cannot be negative")
        if self.field_width <= 0 or self.field_height <= 0:
            raise ValueError("Play field dimensions must be positive")
        if self.expected_clients < 0:
            raise ValueError("Expected client count cannot be negative")
        if self.max_rounds < 0:
            raise ValueError("Round limit cannot be negative")
        if self.publish_timeout <= 0 or self.handshake_timeout <= 0:
            raise ValueError("Timeouts must be positive")


def _coerce(raw: str, kind: type, name: str) -> Any:
    if kind is bool:
        return raw.strip().lower() in _TRUE_VALUES
    try:
        return kind(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid value for {ENV_PREFIX}{name.upper()}: {raw!r}") from exc
