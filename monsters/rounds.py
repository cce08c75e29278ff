"""Round lifecycle: win claim, winner announcement, reset and termination."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, Optional

from .bus import BusError, MessageBus
from .config import GameConfig
from .ledger import ScoreLedger
from .metrics import MetricsCollector
from .models import GameOverEvent, GameRound, HitResult, RoundPhase, WinnerEvent

logger = logging.getLogger(__name__)


class GameStateMachine:
    """Single authority over the current round.

    ``RUNNING -> WON -> RESETTING -> RUNNING`` or ``WON -> TERMINATED``.

    Two locks are involved:

    * the round lock guards the current :class:`GameRound`.  Accepting a
      hit (phase check, ledger increment, reaction sample, win claim) is
      one critical section, so the earliest linearized increment that
      reaches the threshold is the one that wins, and a reset can never
      interleave with an increment.
    * the publication gate orders what goes out on the bus: spawns from
      the broadcaster and the winner/reset sequence never interleave.
    """

    def __init__(
        self,
        config: GameConfig,
        ledger: ScoreLedger,
        bus: MessageBus,
        metrics: Optional[MetricsCollector] = None,
        notify: Optional[Callable[[str], None]] = None,
        on_terminated: Optional[Callable[[], None]] = None,
    ):
        self.config = config
        self.ledger = ledger
        self.bus = bus
        self.metrics = metrics
        self._notify = notify
        self._on_terminated = on_terminated
        self._round = GameRound(round_id=1, win_threshold=config.win_threshold)
        self._rounds_completed = 0
        self._lock = threading.RLock()
        self._publish_lock = threading.Lock()
        self.terminated = threading.Event()

    # ------------------------------------------------------------------
    # Round state
    # ------------------------------------------------------------------
    @property
    def round_id(self) -> int:
        with self._lock:
            return self._round.round_id

    @property
    def phase(self) -> RoundPhase:
        with self._lock:
            return self._round.phase

    @property
    def winner(self) -> Optional[str]:
        with self._lock:
            return self._round.winner

    @property
    def rounds_completed(self) -> int:
        with self._lock:
            return self._rounds_completed

    def is_running(self) -> bool:
        with self._lock:
            return self._round.is_running

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "round_id": self._round.round_id,
                "phase": self._round.phase.value,
                "winner": self._round.winner,
                "win_threshold": self._round.win_threshold,
                "rounds_completed": self._rounds_completed,
                "scores": self.ledger.snapshot(),
            }

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------
    def accept_hit(self, name: str, reaction_ms: Optional[float] = None) -> HitResult:
        """Score one hit for ``name`` unless the round is no longer running."""
        with self._lock:
            current = self._round
            if not current.is_running:
                return HitResult(accepted=False, round_id=current.round_id)
            score = self.ledger.increment_and_get(name)
            if self.metrics is not None and reaction_ms is not None:
                self.metrics.record_reaction(reaction_ms)
            won = score >= current.win_threshold and self.claim_win(current.round_id, name)
        logger.debug("%s hit a monster. Score: %s", name, score)
        return HitResult(accepted=True, round_id=current.round_id, score=score, won=won)

    def claim_win(self, round_id: int, name: str) -> bool:
        """Compare-and-set the round from RUNNING to WON.

        Exactly one caller per round gets ``True``; every later claim for
        the same round, or a claim for a stale round, is a no-op.
        """
        with self._lock:
            current = self._round
            if current.round_id != round_id or current.phase is not RoundPhase.RUNNING:
                return False
            current.phase = RoundPhase.WON
            current.winner = name
            return True

    # ------------------------------------------------------------------
    # Spawning
    # ------------------------------------------------------------------
    @contextmanager
    def publishing(self) -> Iterator[None]:
        """Hold the publication gate for the duration of the block."""
        with self._publish_lock:
            yield

    def next_spawn_id(self) -> Optional[int]:
        """Allocate the next spawn id, or ``None`` when the round is over."""
        with self._lock:
            current = self._round
            if not current.is_running:
                return None
            spawn_id = current.next_spawn_id
            current.next_spawn_id += 1
            return spawn_id

    # ------------------------------------------------------------------
    # Round completion
    # ------------------------------------------------------------------
    def complete_round(self, round_id: int) -> RoundPhase:
        """Announce the winner of ``round_id`` and move to the next state.

        Called once by the session whose hit claimed the win.  Calls for
        any other round, or for a round that is not WON, are ignored.  The
        direct ``WINNER`` lines go out after the publication gate is
        released, so a slow player cannot hold up the spawn timer.
        """
        with self._publish_lock:
            with self._lock:
                current = self._round
                if current.round_id != round_id or current.phase is not RoundPhase.WON:
                    return current.phase
                winner = current.winner or ""
            logger.info("%s won game %s!", winner, round_id)
            self._publish(WinnerEvent(winner).encode())
            if self.metrics is not None:
                self.metrics.persist(self.metrics.summarize(round_id, winner))
            with self._lock:
                if self._round.phase is not RoundPhase.WON:
                    logger.info("Game %s was stopped before it could be reset.", round_id)
                    return self._round.phase
                self._rounds_completed += 1
                if self.config.max_rounds and self._rounds_completed >= self.config.max_rounds:
                    self._round.phase = RoundPhase.TERMINATED
                else:
                    self._start_next_round()
                phase = self._round.phase
            if phase is RoundPhase.TERMINATED:
                logger.info("%s game(s) completed. Game over.", self._rounds_completed)
                self._publish(GameOverEvent().encode())
        if self._notify is not None:
            self._notify(WinnerEvent(winner).encode())
        if phase is RoundPhase.TERMINATED:
            self._finish()
        return phase

    def terminate(self) -> None:
        """Stop the game regardless of the current phase."""
        with self._lock:
            if self._round.phase is RoundPhase.TERMINATED:
                return
            self._round.phase = RoundPhase.TERMINATED
        self._finish()

    def _start_next_round(self) -> None:
        self._round.phase = RoundPhase.RESETTING
        self.ledger.reset()
        if self.metrics is not None:
            self.metrics.reset()
        self._round = GameRound(round_id=self._round.round_id + 1, win_threshold=self.config.win_threshold)
        logger.info("Restarting game... round %s", self._round.round_id)

    def _finish(self) -> None:
        self.terminated.set()
        if self._on_terminated is not None:
            self._on_terminated()

    def _publish(self, payload: str) -> None:
        try:
            self.bus.publish(self.config.topic, payload)
        except BusError as exc:
            logger.warning("Could not publish %r: %s", payload, exc)
