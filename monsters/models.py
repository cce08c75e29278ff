"""Domain entities shared by the coordination server components."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class RoundPhase(Enum):
    """Lifecycle state of the current round."""

    RUNNING = "running"
    WON = "won"
    RESETTING = "resetting"
    TERMINATED = "terminated"


@dataclass
class Player:
    """A registered player as seen by a single registration connection."""

    name: str
    score: int = 0


@dataclass
class GameRound:
    """Mutable state of one play cycle.

    Only :class:`monsters.rounds.GameStateMachine` touches instances of
    this class, always while holding its round lock.
    """

    round_id: int
    win_threshold: int
    phase: RoundPhase = RoundPhase.RUNNING
    winner: Optional[str] = None
    next_spawn_id: int = 0

    @property
    def is_running(self) -> bool:
        return self.phase is RoundPhase.RUNNING


@dataclass(frozen=True)
class HitReport:
    """A parsed ``hit`` line."""

    timestamp_ms: int
    cell: Optional[int] = None


@dataclass(frozen=True)
class HitResult:
    """Outcome of offering a hit to the state machine."""

    accepted: bool
    round_id: int
    score: Optional[int] = None
    won: bool = False


@dataclass(frozen=True)
class SpawnEvent:
    spawn_id: int
    x: int
    y: int

    def encode(self) -> str:
        return f"{self.spawn_id} {self.x} {self.y}"


@dataclass(frozen=True)
class WinnerEvent:
    name: str

    def encode(self) -> str:
        return f"WINNER {self.name}"


@dataclass(frozen=True)
class GameOverEvent:
    def encode(self) -> str:
        return "The game is over!"


BroadcastEvent = Union[SpawnEvent, WinnerEvent, GameOverEvent]


@dataclass(frozen=True)
class RoundSummary:
    """Statistics persisted once per completed round."""

    game_id: int
    winner: str
    num_clients: int
    avg_reaction_ms: float
    std_reaction_ms: float
    avg_registration_ms: float
    std_registration_ms: float
    success_rate: float

    def as_row(self) -> list:
        return [
            self.game_id,
            self.winner,
            self.num_clients,
            self.avg_reaction_ms,
            self.std_reaction_ms,
            self.avg_registration_ms,
            self.std_registration_ms,
            self.success_rate,
        ]
