"""Coordination server for the real-time "hit the monsters" game.

Players register over a line-oriented TCP channel, receive spawn events on
a publish/subscribe topic and report hits until one of them reaches the
win threshold.  The package is usable without any graphical dependency:
the display client only needs the registration protocol and the topic.
"""

from .bus import BusError, InMemoryBus, MessageBus
from .config import GameConfig
from .game_server import GameServer
from .ledger import ScoreLedger
from .metrics import MetricsCollector
from .models import RoundPhase
from .rounds import GameStateMachine

__all__ = [
    "BusError",
    "GameConfig",
    "GameServer",
    "GameStateMachine",
    "InMemoryBus",
    "MessageBus",
    "MetricsCollector",
    "RoundPhase",
    "ScoreLedger",
]
