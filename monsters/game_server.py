"""Coordination server facade wiring every component together."""

from __future__ import annotations

import logging
import random
from typing import Optional, Tuple

from .broadcaster import EventBroadcaster
from .bus import MessageBus
from .config import GameConfig
from .hub import HubBus
from .ledger import ScoreLedger
from .metrics import MetricsCollector
from .registrar import ConnectionRegistrar
from .rounds import GameStateMachine

logger = logging.getLogger(__name__)


class GameServer:
    """High level facade representing one coordination server process."""

    def __init__(
        self,
        config: Optional[GameConfig] = None,
        bus: Optional[MessageBus] = None,
        rng: Optional[random.Random] = None,
    ):
        self.config = config or GameConfig()
        self.config.validate()
        if bus is None:
            bus = HubBus(self.config.bus_host, self.config.bus_port, self.config.publish_timeout)
        self.bus = bus
        self.ledger = ScoreLedger()
        self.metrics: Optional[MetricsCollector] = None
        if self.config.metrics_enabled:
            self.metrics = MetricsCollector(self.config.results_path, self.config.expected_clients)
        self.rounds = GameStateMachine(
            self.config,
            self.ledger,
            self.bus,
            metrics=self.metrics,
            notify=self._notify_players,
            on_terminated=self._on_terminated,
        )
        self.registrar = ConnectionRegistrar(
            self.config, self.rounds, self.metrics, on_fatal=self._on_listener_failed
        )
        self.broadcaster = EventBroadcaster(self.config, self.rounds, self.bus, rng=rng)
        if isinstance(self.bus, HubBus):
            self.bus.hub.status_provider = self.rounds.snapshot

    @property
    def address(self) -> Tuple[str, int]:
        return self.registrar.address

    @property
    def terminated(self) -> bool:
        return self.rounds.terminated.is_set()

    @property
    def failure(self) -> Optional[OSError]:
        """The error that stopped the listener, if any."""
        return self.registrar.failure

    def start(self) -> Tuple[str, int]:
        """Start the bus, the registration listener and the spawner.

        ``OSError`` and :class:`monsters.bus.BusError` from the startup
        steps propagate; the caller treats them as fatal.
        """
        self.bus.start()
        try:
            address = self.registrar.start()
        except OSError:
            self.bus.close()
            raise
        self.broadcaster.start()
        logger.info(
            "%s running: win threshold %s, rounds %s, metrics %s",
            self.config.game_name,
            self.config.win_threshold,
            self.config.max_rounds or "unlimited",
            "on" if self.metrics else "off",
        )
        return address

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the game terminates; returns ``False`` on timeout."""
        return self.rounds.terminated.wait(timeout)

    def stop(self) -> None:
        """Stop spawning, close every connection and release the bus."""
        self.broadcaster.stop()
        self.rounds.terminate()
        self.registrar.stop()
        self.bus.close()
        logger.info("Server shut down.")

    def _notify_players(self, line: str) -> None:
        self.registrar.broadcast_line(line)

    def _on_listener_failed(self, exc: OSError) -> None:
        self.rounds.terminate()

    def _on_terminated(self) -> None:
        self.broadcaster.stop()
        self.registrar.stop_accepting()
