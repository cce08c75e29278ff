"""Load generator simulating many players hitting monsters at once."""

from __future__ import annotations

import logging
import random
import socket
import threading
import time
from dataclasses import dataclass, field
from typing import List, Optional

from . import protocol
from .models import WinnerEvent

logger = logging.getLogger(__name__)


@dataclass
class ClientOutcome:
    name: str
    registered: bool = False
    registration_ms: Optional[float] = None
    hits_sent: int = 0
    channel: Optional[str] = None
    winner: Optional[str] = None
    error: Optional[str] = None


@dataclass
class StressReport:
    outcomes: List[ClientOutcome] = field(default_factory=list)

    @property
    def registered(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.registered)

    @property
    def failed(self) -> int:
        return len(self.outcomes) - self.registered

    @property
    def winners(self) -> List[str]:
        return sorted({outcome.winner for outcome in self.outcomes if outcome.winner})

    @property
    def registration_times(self) -> List[float]:
        return [outcome.registration_ms for outcome in self.outcomes if outcome.registration_ms is not None]


class _LineReader:
    """Buffered line reads from a socket with a per-call timeout."""

    def __init__(self, sock: socket.socket):
        self.sock = sock
        self.buffer = b""

    def readline(self, timeout: float) -> Optional[str]:
        """Return the next line, ``""`` at end of stream, ``None`` on timeout."""
        self.sock.settimeout(timeout)
        while b"\n" not in self.buffer:
            try:
                chunk = self.sock.recv(4096)
            except socket.timeout:
                return None
            if not chunk:
                return ""
            self.buffer += chunk
        line, _, self.buffer = self.buffer.partition(b"\n")
        return line.decode("utf-8", errors="replace").rstrip("\r")


def simulate_client(
    host: str,
    port: int,
    name: str,
    rng: random.Random,
    max_delay: float = 0.5,
    deadline: Optional[float] = None,
    connect_timeout: float = 10.0,
) -> ClientOutcome:
    """Register as ``name`` and report hits until a winner is announced."""
    outcome = ClientOutcome(name=name)
    started = time.perf_counter()
    try:
        with socket.create_connection((host, port), timeout=connect_timeout) as sock:
            reader = _LineReader(sock)
            reader.readline(connect_timeout)
            reader.readline(connect_timeout)
            sock.sendall(f"{name}\n".encode("utf-8"))
            greeting = reader.readline(connect_timeout)
            if not greeting:
                outcome.error = "closed during registration"
                return outcome
            info = protocol.parse_info(reader.readline(connect_timeout) or "")
            if "CHANNEL" not in info:
                outcome.error = "no channel info during registration"
                return outcome
            outcome.channel = info["CHANNEL"]
            outcome.registered = True
            outcome.registration_ms = (time.perf_counter() - started) * 1000.0
            while deadline is None or time.monotonic() < deadline:
                sock.sendall(f"{protocol.HIT_COMMAND} {int(time.time() * 1000)}\n".encode("utf-8"))
                outcome.hits_sent += 1
                line = reader.readline(max(rng.random() * max_delay, 0.001))
                if line is None:
                    continue
                if not line:
                    break
                event = protocol.parse_event(line)
                if isinstance(event, WinnerEvent):
                    outcome.winner = event.name
                    break
            try:
                sock.sendall(f"{protocol.EXIT_COMMAND}\n".encode("utf-8"))
            except OSError:
                pass
    except OSError as exc:
        outcome.error = str(exc)
    return outcome


def run_stress(
    host: str,
    port: int,
    clients: int,
    max_delay: float = 0.5,
    duration: Optional[float] = 60.0,
    seed: Optional[int] = None,
) -> StressReport:
    """Start ``clients`` simulated players in parallel and wait for them."""
    deadline = time.monotonic() + duration if duration else None
    report = StressReport(outcomes=[ClientOutcome(name=f"Player_{i}") for i in range(clients)])
    master = random.Random(seed)

    def _worker(index: int, rng: random.Random) -> None:
        report.outcomes[index] = simulate_client(
            host, port, f"Player_{index}", rng, max_delay=max_delay, deadline=deadline
        )

    threads = [
        threading.Thread(target=_worker, args=(i, random.Random(master.random())), daemon=True)
        for i in range(clients)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    logger.info(
        "Stress run finished: %s registered, %s failed, winners %s",
        report.registered,
        report.failed,
        report.winners or "none",
    )
    return report
