"""Latency sampling and per-round result persistence for stress runs."""

from __future__ import annotations

import csv
import logging
import statistics
import threading
from pathlib import Path
from typing import List, Sequence, Tuple, Union

from .models import RoundSummary

logger = logging.getLogger(__name__)

RESULTS_HEADER = [
    "GameID",
    "Winner",
    "NumClients",
    "AvgReactionTime",
    "StdReactionTime",
    "AvgRegistrationTime",
    "StdRegistrationTime",
    "SuccessRate",
]


class MetricsCollector:
    """Collects registration and reaction latencies for the current round.

    Samples are appended from many session threads.  They are read once,
    when a winner is declared, and cleared when the next round starts.
    """

    def __init__(self, results_path: Union[str, Path], expected_clients: int = 0):
        self.results_path = Path(results_path)
        self.expected_clients = expected_clients
        self._registration_ms: List[float] = []
        self._reaction_ms: List[float] = []
        self._lock = threading.Lock()

    def record_registration(self, elapsed_ms: float) -> None:
        with self._lock:
            self._registration_ms.append(float(elapsed_ms))

    def record_reaction(self, elapsed_ms: float) -> None:
        with self._lock:
            self._reaction_ms.append(float(elapsed_ms))

    @property
    def registrations(self) -> int:
        with self._lock:
            return len(self._registration_ms)

    def samples(self) -> Tuple[List[float], List[float]]:
        """Return copies of the (registration, reaction) samples."""
        with self._lock:
            return list(self._registration_ms), list(self._reaction_ms)

    def summarize(self, round_id: int, winner: str) -> RoundSummary:
        registration, reaction = self.samples()
        avg_reaction, std_reaction = _mean_std(reaction)
        avg_registration, std_registration = _mean_std(registration)
        if self.expected_clients > 0:
            success_rate = len(registration) / self.expected_clients * 100.0
        else:
            success_rate = 100.0
        return RoundSummary(
            game_id=round_id,
            winner=winner,
            num_clients=len(registration),
            avg_reaction_ms=avg_reaction,
            std_reaction_ms=std_reaction,
            avg_registration_ms=avg_registration,
            std_registration_ms=std_registration,
            success_rate=success_rate,
        )

    def persist(self, summary: RoundSummary) -> bool:
        """Append ``summary`` to the results file.

        The header is written only when the file is missing or empty.
        Failures are logged and reported through the return value.
        """
        try:
            write_header = not self.results_path.exists() or self.results_path.stat().st_size == 0
            with self.results_path.open("a", newline="", encoding="utf-8") as handle:
                writer = csv.writer(handle, lineterminator="\n")
                if write_header:
                    writer.writerow(RESULTS_HEADER)
                writer.writerow(summary.as_row())
        except OSError as exc:
            logger.warning("Could not save results for game %s to %s: %s", summary.game_id, self.results_path, exc)
            return False
        logger.info("Results saved for game %s (%s)", summary.game_id, self.results_path)
        return True

    def reset(self) -> None:
        with self._lock:
            self._registration_ms.clear()
            self._reaction_ms.clear()


def _mean_std(values: Sequence[float]) -> Tuple[float, float]:
    if not values:
        return 0.0, 0.0
    return statistics.fmean(values), statistics.pstdev(values)
