"""Per-connection handling once a player has registered."""

from __future__ import annotations

import logging
import socket
import threading
import time
from typing import Callable, Optional

from . import protocol
from .models import Player
from .rounds import GameStateMachine

logger = logging.getLogger(__name__)


def now_ms() -> float:
    return time.time() * 1000.0


class LineConnection:
    """Newline-delimited UTF-8 text over a connected socket.

    Reads happen on the owning session thread only; writes may come from
    any thread (the winner notification) and are serialised.
    """

    def __init__(self, sock: socket.socket, address=None):
        self.sock = sock
        self.address = address
        self._reader = sock.makefile("r", encoding="utf-8", errors="replace", newline="\n")
        self._write_lock = threading.Lock()
        self._closed = False

    def send_line(self, line: str) -> None:
        data = (line + "\n").encode("utf-8")
        with self._write_lock:
            self.sock.sendall(data)

    def read_line(self) -> Optional[str]:
        """Return the next line without its terminator, ``None`` at end of stream."""
        line = self._reader.readline()
        if not line:
            return None
        return line.rstrip("\r\n")

    def set_timeout(self, timeout: Optional[float]) -> None:
        self.sock.settimeout(timeout)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        try:
            self._reader.close()
        finally:
            self.sock.close()


class HitSession:
    """Reads hit reports from one registered player until they leave."""

    def __init__(
        self,
        player: Player,
        connection: LineConnection,
        rounds: GameStateMachine,
        clock: Callable[[], float] = now_ms,
    ):
        self.player = player
        self.connection = connection
        self.rounds = rounds
        self.clock = clock

    @property
    def name(self) -> str:
        return self.player.name

    def run(self) -> None:
        try:
            while True:
                line = self.connection.read_line()
                if line is None or protocol.is_exit(line):
                    break
                self.handle_line(line)
        except (OSError, ValueError) as exc:
            if not self.connection.closed:
                logger.warning("Connection with %s lost: %s", self.name, exc)
        finally:
            self.connection.close()
            logger.info("%s left the game (last score %s).", self.name, self.player.score)

    def handle_line(self, line: str) -> None:
        report = protocol.parse_hit(line)
        if report is None:
            logger.debug("Ignoring malformed line from %s: %r", self.name, line)
            return
        reaction_ms = None
        if self.rounds.metrics is not None:
            reaction_ms = max(0.0, self.clock() - report.timestamp_ms)
        result = self.rounds.accept_hit(self.name, reaction_ms)
        if not result.accepted:
            return
        self.player.score = result.score
        if result.won:
            self.rounds.complete_round(result.round_id)

    def notify(self, line: str) -> None:
        try:
            self.connection.send_line(line)
        except OSError as exc:
            logger.warning("Could not notify %s: %s", self.name, exc)
