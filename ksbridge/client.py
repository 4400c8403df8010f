"""Reconnecting WebSocket client for the bridge.

Used by both sides of the bridge: the track monitor (detector) and headless
display clients.  One task owns the connection and walks the states

  DISCONNECTED -> CONNECTING -> CONNECTED -> BACKOFF_WAIT -> CONNECTING ...

so there is never more than one connection attempt or retry timer alive.
Retries are unbounded, after a fixed delay with optional jitter.
"""

from __future__ import annotations

import asyncio
import logging
import random
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import websockets
from websockets.exceptions import WebSocketException

from ksbridge import protocol
from ksbridge.errors import ConnectionLost, NoOutputAvailable
from ksbridge.paths import default_bridge_url

logger = logging.getLogger(__name__)

DEFAULT_RETRY_DELAY = 3.0

MessageHandler = Callable[[dict[str, Any]], Awaitable[None]]
OpenHandler = Callable[["BridgeClient"], Awaitable[None]]


class ClientState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    BACKOFF_WAIT = "backoff-wait"


class BridgeClient:
    def __init__(self, url: Optional[str] = None,
                 on_message: Optional[MessageHandler] = None,
                 on_open: Optional[OpenHandler] = None,
                 retry_delay: float = DEFAULT_RETRY_DELAY,
                 jitter: float = 0.0,
                 connect=websockets.connect,
                 concurrent: bool = False):
        self.url = url or default_bridge_url()
        self.retry_delay = retry_delay
        self.jitter = jitter
        self.on_message = on_message
        self.on_open = on_open
        self._connect = connect
        # Run each on_message call as its own task so a slow handler does not
        # hold back later frames.
        self.concurrent = concurrent
        self._handlers: set[asyncio.Task] = set()

        self.state = ClientState.DISCONNECTED
        self.attempts = 0
        self._task: Optional[asyncio.Task] = None
        self._outbox: Optional[asyncio.Queue] = None
        self._connected = asyncio.Event()

    # -- lifecycle -------------------------------------------------------------

    def start(self) -> asyncio.Task:
        """Start the connection task; calling it again returns the same task."""
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    async def stop(self):
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        for handler in list(self._handlers):
            handler.cancel()
        self._handlers.clear()
        self._set_state(ClientState.DISCONNECTED)

    async def wait_connected(self, timeout: Optional[float] = None):
        await asyncio.wait_for(self._connected.wait(), timeout)

    @property
    def is_connected(self) -> bool:
        return self.state is ClientState.CONNECTED

    def _set_state(self, state: ClientState):
        if state is not self.state:
            logger.debug("bridge client %s -> %s", self.state.value, state.value)
        self.state = state
        if state is ClientState.CONNECTED:
            self._connected.set()
        else:
            self._connected.clear()

    async def run(self):
        """Connect, serve, and reconnect forever (until cancelled)."""
        while True:
            self._set_state(ClientState.CONNECTING)
            self.attempts += 1
            try:
                await self._serve_once()
                logger.warning("bridge connection lost: %s closed the connection", self.url)
            except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
                logger.warning("bridge connection lost: %s", ConnectionLost(f"{self.url}: {exc}"))
            except Exception:
                logger.exception("bridge connection to %s failed", self.url)

            self._outbox = None
            self._set_state(ClientState.BACKOFF_WAIT)
            delay = self.retry_delay + random.uniform(0, self.jitter)
            logger.info("reconnecting to %s in %.1fs", self.url, delay)
            await asyncio.sleep(delay)

    async def _serve_once(self):
        async with self._connect(self.url) as ws:
            self._outbox = asyncio.Queue()
            self._set_state(ClientState.CONNECTED)
            logger.info("connected to bridge %s", self.url)
            if self.on_open is not None:
                try:
                    await self.on_open(self)
                except Exception:
                    logger.exception("bridge on_open handler failed")

            sender = asyncio.get_running_loop().create_task(self._pump_outbox(ws, self._outbox))
            try:
                async for raw in ws:
                    message = protocol.decode(raw)
                    if message is not None and self.on_message is not None:
                        await self._deliver(message)
            finally:
                sender.cancel()
                try:
                    await sender
                except (asyncio.CancelledError, OSError, WebSocketException):
                    pass

    async def _deliver(self, message: dict[str, Any]):
        if not self.concurrent:
            await self._handle(message)
            return
        task = asyncio.get_running_loop().create_task(self._handle(message))
        self._handlers.add(task)
        task.add_done_callback(self._handlers.discard)

    async def _handle(self, message: dict[str, Any]):
        try:
            await self.on_message(message)
        except Exception:
            logger.exception("bridge message handler failed for %s frame", message.get("type"))

    @staticmethod
    async def _pump_outbox(ws, outbox: asyncio.Queue):
        while True:
            text = await outbox.get()
            await ws.send(text)

    # -- sending ---------------------------------------------------------------

    def send(self, message: dict[str, Any]):
        """Queue ``message`` for the current connection.

        Raises :class:`~ksbridge.errors.ConnectionLost` when not connected.
        """
        if self.state is not ClientState.CONNECTED or self._outbox is None:
            raise ConnectionLost(f"not connected to {self.url}")
        self._outbox.put_nowait(protocol.encode(message))


class BridgeOutput:
    """MIDI output that forwards messages to the bridge server."""

    def __init__(self, client: BridgeClient):
        self._client = client
        self.port_name: Optional[str] = None

    @property
    def name(self) -> str:
        return f"MIDI Bridge ({self.port_name or self._client.url})"

    @property
    def is_open(self) -> bool:
        return self._client.is_connected

    def send_message(self, message: list[int]):
        status, data1, data2 = message
        try:
            self._client.send({"type": protocol.MessageType.MIDI.value,
                               "status": status, "data1": data1, "data2": data2})
        except ConnectionLost as exc:
            raise NoOutputAvailable(str(exc)) from exc
