"""Thread-safe score ledger shared by every hit session."""

from __future__ import annotations

import threading
from typing import Dict


class ScoreLedger:
    """Mapping from player name to score.

    Every mutation happens under a single lock, so increments on the same
    name are linearizable and a reset can never interleave with an
    increment.  The ledger never forgets a name: a reset zeroes the scores
    but keeps the registrations so a returning player resumes at zero
    rather than being rejected.
    """

    def __init__(self) -> None:
        self._scores: Dict[str, int] = {}
        self._lock = threading.Lock()

    def register(self, name: str) -> int:
        """Create ``name`` at zero if unknown and return its current score."""
        with self._lock:
            return self._scores.setdefault(name, 0)

    def increment_and_get(self, name: str) -> int:
        with self._lock:
            score = self._scores.get(name, 0) + 1
            self._scores[name] = score
            return score

    def score_of(self, name: str) -> int:
        with self._lock:
            return self._scores.get(name, 0)

    def reset(self) -> None:
        with self._lock:
            for name in self._scores:
                self._scores[name] = 0

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._scores)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._scores

    def __len__(self) -> int:  # pragma: no cover - trivial
        with self._lock:
            return len(self._scores)
