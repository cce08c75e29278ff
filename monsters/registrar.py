"""TCP registration listener: handshake and hand-off to hit sessions."""

from __future__ import annotations

import errno
import itertools
import logging
import socket
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

from . import protocol
from .config import GameConfig
from .metrics import MetricsCollector
from .models import Player
from .rounds import GameStateMachine
from .session import HitSession, LineConnection

logger = logging.getLogger(__name__)

ACCEPT_POLL_SECONDS = 0.5
LISTENER_FAILURES = (errno.EBADF, errno.ENOTSOCK, errno.EINVAL)


class ConnectionRegistrar:
    """Accepts players and runs one thread per connection.

    Each thread performs the registration handshake and then becomes the
    player's :class:`HitSession`.  Failures are contained: a failed accept
    is logged and the loop continues, a failed handshake closes only that
    connection.  A listening socket that can no longer accept is fatal and
    is reported through ``on_fatal``.
    """

    def __init__(
        self,
        config: GameConfig,
        rounds: GameStateMachine,
        metrics: Optional[MetricsCollector] = None,
        on_fatal: Optional[Callable[[OSError], None]] = None,
    ):
        self.config = config
        self.rounds = rounds
        self.metrics = metrics
        self.failure: Optional[OSError] = None
        self._on_fatal = on_fatal
        self._server: Optional[socket.socket] = None
        self._accept_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._sessions: Dict[int, HitSession] = {}
        self._pending: Dict[int, LineConnection] = {}
        self._lock = threading.Lock()
        self._ids = itertools.count(1)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> Tuple[str, int]:
        """Bind the listener and start accepting; returns the bound address.

        Raises ``OSError`` when the port cannot be bound.
        """
        server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            server.bind((self.config.host, self.config.port))
            server.listen(128)
        except OSError:
            server.close()
            raise
        server.settimeout(ACCEPT_POLL_SECONDS)
        self._server = server
        self._stop_event.clear()
        self._accept_thread = threading.Thread(target=self._accept_loop, name="registrar-accept", daemon=True)
        self._accept_thread.start()
        logger.info("TCP server started on %s:%s", *self.address)
        return self.address

    @property
    def address(self) -> Tuple[str, int]:
        if self._server is None:
            raise RuntimeError("Registrar is not listening")
        host, port = self._server.getsockname()[:2]
        return host, port

    @property
    def accepting(self) -> bool:
        return bool(self._accept_thread and self._accept_thread.is_alive())

    def stop_accepting(self) -> None:
        """Close the listener; players already connected keep playing."""
        self._stop_event.set()
        thread = self._accept_thread
        if thread and thread is not threading.current_thread():
            thread.join(timeout=ACCEPT_POLL_SECONDS * 4)
        if self._server is not None:
            self._server.close()

    def stop(self) -> None:
        """Stop accepting and close every open connection."""
        self.stop_accepting()
        with self._lock:
            connections = list(self._pending.values())
            connections.extend(session.connection for session in self._sessions.values())
        for connection in connections:
            connection.close()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------
    def sessions(self) -> List[HitSession]:
        with self._lock:
            return list(self._sessions.values())

    def broadcast_line(self, line: str) -> None:
        """Send ``line`` to every registered connection still open."""
        for session in self.sessions():
            session.notify(line)

    def _accept_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                client, address = self._server.accept()
            except socket.timeout:
                continue
            except OSError as exc:
                if self._stop_event.is_set():
                    break
                if self._listener_broken(exc):
                    logger.error("Listening socket is unusable: %s", exc)
                    self.failure = exc
                    if self._on_fatal is not None:
                        self._on_fatal(exc)
                    break
                logger.exception("Failed to accept a connection")
                continue
            accepted_at = time.perf_counter()
            client.settimeout(None)
            handler = threading.Thread(
                target=self._handle_client,
                args=(client, address, accepted_at),
                name=f"player-{address[0]}:{address[1]}",
                daemon=True,
            )
            handler.start()
        logger.info("Registrar stopped accepting players.")

    def _listener_broken(self, exc: OSError) -> bool:
        return exc.errno in LISTENER_FAILURES or self._server is None or self._server.fileno() == -1

    def _handle_client(self, client: socket.socket, address, accepted_at: float) -> None:
        connection = LineConnection(client, address)
        with self._lock:
            connection_id = next(self._ids)
            self._pending[connection_id] = connection
        try:
            session = self._handshake(connection, accepted_at)
        except (OSError, ValueError) as exc:
            logger.warning("Registration with %s failed: %s", address, exc)
            session = None
        finally:
            with self._lock:
                self._pending.pop(connection_id, None)
        if session is None:
            connection.close()
            return
        with self._lock:
            self._sessions[connection_id] = session
        try:
            session.run()
        finally:
            with self._lock:
                self._sessions.pop(connection_id, None)

    def _handshake(self, connection: LineConnection, accepted_at: float) -> Optional[HitSession]:
        connection.set_timeout(self.config.handshake_timeout)
        connection.send_line(protocol.welcome_line(self.config.game_name))
        connection.send_line(protocol.NAME_PROMPT)
        raw = connection.read_line()
        name = (raw or "").strip()
        if not name:
            logger.debug("Connection from %s closed without a name", connection.address)
            return None
        score = self.rounds.ledger.register(name)
        connection.send_line(protocol.greeting_line(name, score))
        connection.send_line(protocol.info_line(self.config.bus_address, self.config.topic))
        connection.set_timeout(None)
        if self.metrics is not None:
            self.metrics.record_registration((time.perf_counter() - accepted_at) * 1000.0)
        logger.info("%s registered from %s with score %s", name, connection.address, score)
        return HitSession(Player(name=name, score=score), connection, self.rounds)
