"""Timer driven publication of monster spawn events."""

from __future__ import annotations

import logging
import random
import threading
from typing import Optional

from .bus import BusError, MessageBus
from .config import GameConfig
from .models import SpawnEvent
from .rounds import GameStateMachine

logger = logging.getLogger(__name__)


class EventBroadcaster:
    """Publishes one spawn event per tick while the round is running.

    The broadcaster never touches scores.  It asks the state machine for
    the next spawn id under the publication gate, which is ``None`` once
    the round is won, so nothing is published between a win and the next
    round.  Spawns are best effort: a failed publication is logged and the
    next tick proceeds normally.
    """

    def __init__(
        self,
        config: GameConfig,
        rounds: GameStateMachine,
        bus: MessageBus,
        rng: Optional[random.Random] = None,
    ):
        self.config = config
        self.rounds = rounds
        self.bus = bus
        self.rng = rng or random.Random()
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    def tick(self) -> Optional[SpawnEvent]:
        with self.rounds.publishing():
            spawn_id = self.rounds.next_spawn_id()
            if spawn_id is None:
                return None
            event = SpawnEvent(
                spawn_id=spawn_id,
                x=self.rng.randrange(self.config.field_width),
                y=self.rng.randrange(self.config.field_height),
            )
            try:
                self.bus.publish(self.config.topic, event.encode())
            except BusError as exc:
                logger.warning("Could not publish monster %s: %s", spawn_id, exc)
                return None
        logger.debug("Sending monster ID: %s at position: %s, %s", event.spawn_id, event.x, event.y)
        return event

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="event-broadcaster", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 2.0) -> None:
        self._stop_event.set()
        thread = self._thread
        if thread and thread is not threading.current_thread():
            thread.join(timeout=timeout)

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:  # pragma: no cover - keep the timer alive
                logger.exception("Unexpected failure while spawning a monster")
            if self._stop_event.wait(self.config.spawn_interval):
                break
        logger.info("Event broadcaster stopped.")
