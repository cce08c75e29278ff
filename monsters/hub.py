"""WebSocket topic hub serving the broadcast channel.

Subscribers connect to ``ws://<host>:<port>/ws/<topic>`` and receive one
text frame per published payload.  The game server publishes from its own
threads; payloads are handed to the hub's event loop and the call waits
for the fan-out, bounded by the publish timeout.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
import time
from contextlib import ExitStack
from typing import Any, Callable, Dict, Optional, Set

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.sync.client import connect

from .bus import BusError, MessageBus, Subscription

logger = logging.getLogger(__name__)

StatusProvider = Callable[[], Dict[str, Any]]


class TopicHub:
    """Holds the subscriber websockets of every topic."""

    def __init__(self, status_provider: Optional[StatusProvider] = None):
        self.connections: Dict[str, Set[WebSocket]] = {}
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.status_provider = status_provider

    def attach(self, topic: str, websocket: WebSocket) -> None:
        self.connections.setdefault(topic, set()).add(websocket)

    def detach(self, topic: str, websocket: WebSocket) -> None:
        subscribers = self.connections.get(topic)
        if subscribers is None:
            return
        subscribers.discard(websocket)
        if not subscribers:
            self.connections.pop(topic, None)

    def subscriber_count(self, topic: str) -> int:
        return len(self.connections.get(topic, ()))

    async def broadcast(self, topic: str, payload: str) -> int:
        """Send ``payload`` to every subscriber of ``topic``."""
        delivered = 0
        stale = []
        for websocket in list(self.connections.get(topic, ())):
            try:
                await websocket.send_text(payload)
                delivered += 1
            except (RuntimeError, WebSocketDisconnect):
                stale.append(websocket)
        for websocket in stale:
            self.detach(topic, websocket)
        return delivered

    async def close_all(self) -> None:
        for topic, subscribers in list(self.connections.items()):
            for websocket in list(subscribers):
                try:
                    await websocket.close()
                except RuntimeError:
                    pass
        self.connections.clear()

    def publish_threadsafe(self, topic: str, payload: str, timeout: float) -> int:
        """Publish from a foreign thread; raises :class:`BusError` on failure."""
        loop = self.loop
        if loop is None or loop.is_closed():
            raise BusError("broadcast hub is not running")
        future = asyncio.run_coroutine_threadsafe(self.broadcast(topic, payload), loop)
        try:
            return future.result(timeout=timeout)
        except concurrent.futures.TimeoutError as exc:
            future.cancel()
            raise BusError(f"publishing to {topic!r} timed out after {timeout}s") from exc
        except (RuntimeError, OSError) as exc:
            raise BusError(f"publishing to {topic!r} failed: {exc}") from exc


def create_hub_app(hub: TopicHub) -> FastAPI:
    """Create the FastAPI application exposing ``hub``."""

    app = FastAPI(title="Monsters broadcast hub")
    app.state.hub = hub

    @app.on_event("startup")
    async def _bind_loop() -> None:
        hub.loop = asyncio.get_running_loop()

    @app.on_event("shutdown")
    async def _close_subscribers() -> None:
        await hub.close_all()
        hub.loop = None

    @app.get("/health")
    async def healthcheck() -> JSONResponse:
        payload: Dict[str, Any] = {
            "status": "ok",
            "topics": {topic: hub.subscriber_count(topic) for topic in list(hub.connections)},
        }
        if hub.status_provider is not None:
            payload["game"] = hub.status_provider()
        return JSONResponse(payload)

    @app.websocket("/ws/{topic}")
    async def subscribe(websocket: WebSocket, topic: str) -> None:
        await websocket.accept()
        hub.attach(topic, websocket)
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            hub.detach(topic, websocket)

    return app


class RemoteSubscription(Subscription):
    """Subscription fed by a websocket connection to a hub."""

    def __init__(self, address: str, topic: str, open_timeout: float = 5.0):
        super().__init__(topic)
        self.url = f"{address.rstrip('/')}/ws/{topic}"
        self._connection = ExitStack()
        try:
            self._websocket = self._connection.enter_context(connect(self.url, open_timeout=open_timeout))
        except (OSError, TimeoutError, WebSocketException) as exc:
            raise BusError(f"could not subscribe to {self.url}: {exc}") from exc
        self._reader = threading.Thread(target=self._pump, name=f"subscriber-{topic}", daemon=True)
        self._reader.start()

    def _pump(self) -> None:
        try:
            for message in self._websocket:
                if isinstance(message, bytes):
                    message = message.decode("utf-8", errors="replace")
                self.deliver(message)
        except ConnectionClosed as exc:
            logger.debug("Subscription to %s closed: %s", self.url, exc)
        finally:
            Subscription.close(self)

    def close(self) -> None:
        self._connection.close()
        super().close()


class HubBus(MessageBus):
    """Message bus backed by an in-process hub served with uvicorn."""

    def __init__(
        self,
        host: str,
        port: int,
        publish_timeout: float = 0.5,
        status_provider: Optional[StatusProvider] = None,
    ):
        self.host = host
        self.port = port
        self.publish_timeout = publish_timeout
        self.hub = TopicHub(status_provider)
        self.app = create_hub_app(self.hub)
        self._server = uvicorn.Server(
            uvicorn.Config(self.app, host=host, port=port, log_level="warning", lifespan="on")
        )
        self._thread: Optional[threading.Thread] = None

    @property
    def address(self) -> str:
        return f"ws://{self.host}:{self.port}"

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, timeout: float = 5.0) -> None:
        self._thread = threading.Thread(target=self._server.run, name="broadcast-hub", daemon=True)
        self._thread.start()
        deadline = time.monotonic() + timeout
        while not self._server.started:
            if not self._thread.is_alive():
                raise BusError(f"broadcast hub could not listen on {self.host}:{self.port}")
            if time.monotonic() > deadline:
                raise BusError("broadcast hub did not start in time")
            time.sleep(0.05)
        logger.info("Broadcast hub listening on %s", self.address)

    def publish(self, topic: str, payload: str) -> None:
        self.hub.publish_threadsafe(topic, payload, self.publish_timeout)

    def subscribe(self, topic: str) -> Subscription:
        return RemoteSubscription(self.address, topic)

    def close(self) -> None:
        self._server.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout=5.0)
            self._thread = None
