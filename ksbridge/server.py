"""WebSocket bridge server.

Relays track changes from the detector to every display client, forwards
``midi`` frames from display clients to the MIDI output the DAW listens on,
and serves the articulation-set catalogue over HTTP:

  ws   /  (or /ws)                 bridge protocol, see ksbridge.protocol
  GET  /api/articulations?search=  {"sets": [{"name", "path"}], "total"}
  POST /api/articulations/load     {"path"} -> {"path", "content"}

Any number of clients may be connected.  Everything runs on one asyncio
loop, so the session registry needs no locking.
"""

from __future__ import annotations

import asyncio
import errno
import logging
import socket
from contextlib import asynccontextmanager
from typing import Any, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from ksbridge import protocol
from ksbridge.catalogue import Catalogue
from ksbridge.dispatch import MidiDispatcher, classify
from ksbridge.errors import CataloguePathError, NoOutputAvailable
from ksbridge.midi import MidiOutPort
from ksbridge.paths import DEFAULT_HOST, DEFAULT_PORT, RESERVED_PORTS
from ksbridge.protocol import MessageType, Session, SessionRegistry

logger = logging.getLogger(__name__)


# -- port selection ------------------------------------------------------------

def is_port_available(port: int, host: str = DEFAULT_HOST) -> bool:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.bind((host, port))
    except OSError as exc:
        if exc.errno not in (errno.EADDRINUSE, errno.EACCES):
            logger.debug("port %d check failed: %s", port, exc)
        return False
    finally:
        sock.close()
    return True


def find_available_port(start: int = DEFAULT_PORT, max_attempts: int = 10,
                        host: str = DEFAULT_HOST,
                        reserved: frozenset[int] = RESERVED_PORTS) -> int:
    """Return the first free port from ``start``, skipping reserved ports."""
    port = start
    for _ in range(max_attempts):
        while port in reserved:
            port += 1
        if is_port_available(port, host):
            return port
        port += 1
    raise RuntimeError(f"could not find an available port after {max_attempts} attempts")


# -- bridge --------------------------------------------------------------------

class BridgeServer:
    """Shared state behind every connection: sessions, MIDI output, catalogue."""

    def __init__(self, catalogue: Catalogue, dispatcher: Optional[MidiDispatcher] = None,
                 ws_port: int = DEFAULT_PORT, channel: Optional[int] = None,
                 listen_inputs: bool = False):
        self.catalogue = catalogue
        self.dispatcher = dispatcher or MidiDispatcher()
        self.ws_port = ws_port
        # 0-15 forces every forwarded channel-voice message onto this channel.
        self.channel = channel
        self.listen_inputs = listen_inputs
        self.registry = SessionRegistry()

        self._output: Optional[MidiOutPort] = None
        self._listener = None
        self._tasks: set[asyncio.Task] = set()

    # -- MIDI ------------------------------------------------------------------

    def open_output(self, port: Optional[int] = None,
                    virtual_name: Optional[str] = None) -> Optional[str]:
        """Open the MIDI output: by index, as a virtual port, or by preference."""
        output = MidiOutPort()
        if virtual_name:
            name = output.open_virtual(virtual_name)
        elif port is not None:
            name = output.open(port)
        else:
            name = output.open_preferred()
        if name is None:
            logger.warning("no loopback MIDI output found; running in no-midi mode")
            return None
        self._output = output
        self.dispatcher.bind(output)
        logger.info("MIDI output: %s", name)
        return name

    def start_listener(self, loop: asyncio.AbstractEventLoop):
        from controllers.plugsearch import PlugSearchListener

        self._listener = PlugSearchListener(self.notify_articulation_set, loop)
        opened = self._listener.open_all()
        logger.info("listening on %d MIDI input(s)", len(opened))

    def close(self):
        if self._listener is not None:
            self._listener.close()
            self._listener = None
        if self._output is not None:
            self._output.close()
            self._output = None
            self.dispatcher.bind(None)

    @property
    def output_name(self) -> Optional[str]:
        return self.dispatcher.output_name

    # -- protocol --------------------------------------------------------------

    def connected_message(self) -> dict[str, Any]:
        return protocol.connected(self.output_name, self.dispatcher.has_output, self.ws_port)

    async def handle_message(self, session: Session, message: dict[str, Any]):
        msg_type = message["type"]

        if msg_type == MessageType.MIDI:
            self.forward_midi(message)
        elif msg_type == MessageType.PING:
            await session.deliver(protocol.encode(protocol.pong(self.output_name, self.ws_port)))
        elif msg_type == MessageType.IDENTIFY:
            if session.identify(message.get("clientType")):
                logger.info("session %d identified as %s", session.id, session.role.value)
        elif msg_type == MessageType.TRACK_CHANGE:
            track_name = message.get("trackName")
            if not isinstance(track_name, str):
                logger.debug("trackChange without a track name dropped")
                return
            delivered = await self.registry.broadcast(protocol.track_change(track_name))
            logger.info("track changed: '%s' (sent to %d display(s))", track_name, delivered)
        else:
            logger.debug("session %d sent unhandled message type '%s'", session.id, msg_type)

    def forward_midi(self, message: dict[str, Any]):
        trigger = protocol.midi_trigger_from(message)
        if trigger is None:
            logger.debug("malformed midi frame dropped: %s", message)
            return
        try:
            self.dispatcher.dispatch(trigger, self.channel or 0, self.channel is not None)
        except NoOutputAvailable:
            logger.warning("no MIDI output - message not sent: %s",
                           classify(trigger.as_bytes()))

    def notify_articulation_set(self, articulation_set_id: int):
        """Broadcast a set-id change; called on the event loop."""
        task = asyncio.get_running_loop().create_task(
            self.registry.broadcast(protocol.articulation_set_change(articulation_set_id)))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def serve_session(self, websocket: WebSocket):
        """Run one connection until the peer goes away."""
        await websocket.accept()
        peer = f"{websocket.client.host}:{websocket.client.port}" if websocket.client else ""
        session = Session(websocket.send_text, peer=peer)
        self.registry.add(session)
        logger.info("client connected: %s (%d open)", peer, len(self.registry))

        try:
            await session.deliver(protocol.encode(self.connected_message()))
            while True:
                event = await websocket.receive()
                if event["type"] == "websocket.disconnect":
                    break
                raw = event.get("text")
                if raw is None:
                    raw = event.get("bytes")
                if raw is None:
                    continue
                message = protocol.decode(raw)
                if message is not None:
                    await self.handle_message(session, message)
        except WebSocketDisconnect:
            pass
        finally:
            session.close()
            self.registry.remove(session)
            logger.info("client disconnected: %s (%d open)", peer, len(self.registry))


# -- HTTP / ASGI ---------------------------------------------------------------

class LoadRequest(BaseModel):
    path: str = ""


def create_app(bridge: BridgeServer) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if bridge.listen_inputs:
            try:
                bridge.start_listener(asyncio.get_running_loop())
            except Exception as exc:
                logger.warning("MIDI input listener failed: %s", exc)
        yield
        bridge.close()

    app = FastAPI(title="ksbridge", lifespan=lifespan)
    app.state.bridge = bridge

    app.add_api_websocket_route("/", bridge.serve_session)
    app.add_api_websocket_route("/ws", bridge.serve_session)

    @app.get("/api/articulations")
    def list_articulation_sets(search: str = ""):
        entries = bridge.catalogue.search(search)
        return {
            "sets": [{"name": e.name, "path": e.relative_path} for e in entries],
            "total": bridge.catalogue.total(),
        }

    @app.post("/api/articulations/load")
    def load_articulation_set(request: LoadRequest):
        try:
            content = bridge.catalogue.load(request.path)
        except CataloguePathError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except (FileNotFoundError, IsADirectoryError) as exc:
            raise HTTPException(status_code=404, detail="articulation set not found") from exc
        except OSError as exc:
            logger.warning("loading '%s' failed: %s", request.path, exc)
            raise HTTPException(status_code=500, detail="failed to load articulation set") from exc
        try:
            text = content.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise HTTPException(status_code=415, detail="articulation set is not UTF-8 XML") from exc
        return {"path": request.path, "content": text}

    return app


def run_server(bridge: BridgeServer, host: str = DEFAULT_HOST):
    """Serve ``bridge`` until interrupted.  Used by ``main.py``."""
    app = create_app(bridge)

    # Parseable by launchers that start the bridge and need the port.
    print(f"KSBRIDGE_PORT={bridge.ws_port}")
    print(f"[Server] WebSocket bridge on ws://{host}:{bridge.ws_port}")
    print(f"[Server] Catalogue: {bridge.catalogue.root}")
    print(f"[Server] MIDI output: {bridge.output_name or '(none)'}")

    config = uvicorn.Config(app, host=host, port=bridge.ws_port, log_config=None)
    try:
        uvicorn.Server(config).run()
    finally:
        bridge.close()
