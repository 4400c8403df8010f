"""Bridge protocol: message schema and per-connection sessions.

Every frame is one UTF-8 JSON object with a ``type`` field:

  identify               client -> server   {"clientType": "track-monitor"}
  trackChange            detector -> server -> displays   {"trackName"}
  articulationSetChange  server -> displays {"articulationSetId"}
  midi                   display -> server  {"status", "data1", "data2"}
  ping / pong            display <-> server {"port", "wsPort"} on pong
  connected              server -> client, first frame after accept
                         {"port", "status": "ready"|"no-midi", "wsPort"}

Sessions start unidentified and are treated as displays until an
``identify`` says otherwise.  Broadcasts only ever reach display sessions.
"""

from __future__ import annotations

import itertools
import json
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Iterator, Optional

from ksbridge.models import MidiTrigger

logger = logging.getLogger(__name__)

TRACK_MONITOR = "track-monitor"


class MessageType(str, Enum):
    IDENTIFY = "identify"
    TRACK_CHANGE = "trackChange"
    ARTICULATION_SET_CHANGE = "articulationSetChange"
    MIDI = "midi"
    PING = "ping"
    PONG = "pong"
    CONNECTED = "connected"


class ClientRole(Enum):
    UNIDENTIFIED = "unidentified"
    DISPLAY = "display"
    DETECTOR = "detector"


class ConnectionState(Enum):
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


# -- encoding ----------------------------------------------------------------

def encode(message: dict[str, Any]) -> str:
    return json.dumps(message, separators=(",", ":"), ensure_ascii=False)


def decode(raw: str | bytes) -> Optional[dict[str, Any]]:
    """Decode one frame; malformed frames are logged and yield ``None``."""
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            logger.warning("ignoring frame with invalid encoding: %s", exc)
            return None
    try:
        message = json.loads(raw)
    except ValueError as exc:
        logger.warning("ignoring non-JSON frame: %s", exc)
        return None
    if not isinstance(message, dict) or not isinstance(message.get("type"), str):
        logger.warning("ignoring frame without a message type: %.80s", raw)
        return None
    return message


# -- builders ----------------------------------------------------------------

def identify(client_type: str = TRACK_MONITOR) -> dict[str, Any]:
    return {"type": MessageType.IDENTIFY.value, "clientType": client_type}


def track_change(track_name: str) -> dict[str, Any]:
    return {"type": MessageType.TRACK_CHANGE.value, "trackName": track_name}


def articulation_set_change(articulation_set_id: int) -> dict[str, Any]:
    return {"type": MessageType.ARTICULATION_SET_CHANGE.value,
            "articulationSetId": articulation_set_id}


def midi(trigger: MidiTrigger) -> dict[str, Any]:
    return {"type": MessageType.MIDI.value, "status": trigger.status,
            "data1": trigger.data1, "data2": trigger.data2}


def ping() -> dict[str, Any]:
    return {"type": MessageType.PING.value}


def pong(port: Optional[str], ws_port: int) -> dict[str, Any]:
    return {"type": MessageType.PONG.value, "port": port, "wsPort": ws_port}


def connected(port: Optional[str], ready: bool, ws_port: int) -> dict[str, Any]:
    return {
        "type": MessageType.CONNECTED.value,
        "port": port,
        "status": "ready" if ready else "no-midi",
        "trackSwitching": True,
        "wsPort": ws_port,
    }


def midi_trigger_from(message: dict[str, Any]) -> Optional[MidiTrigger]:
    """The trigger carried by a ``midi`` frame, or ``None`` if malformed."""
    values = []
    for key in ("status", "data1", "data2"):
        value = message.get(key)
        if not isinstance(value, int) or isinstance(value, bool):
            return None
        values.append(value)
    try:
        return MidiTrigger(*values)
    except ValueError:
        return None


# -- sessions ----------------------------------------------------------------

SendFn = Callable[[str], Awaitable[None]]

_session_ids = itertools.count(1)


class Session:
    """One accepted connection."""

    def __init__(self, send: SendFn, peer: str = ""):
        self.id = next(_session_ids)
        self.peer = peer
        self.role = ClientRole.UNIDENTIFIED
        self.state = ConnectionState.OPEN
        self._send = send

    def __repr__(self) -> str:
        return f"<Session {self.id} {self.peer} {self.role.value} {self.state.value}>"

    @property
    def effective_role(self) -> ClientRole:
        if self.role is ClientRole.UNIDENTIFIED:
            return ClientRole.DISPLAY
        return self.role

    @property
    def is_display(self) -> bool:
        return self.effective_role is ClientRole.DISPLAY

    def identify(self, client_type: Any) -> bool:
        """Fix the session role; only the first call has an effect."""
        if self.role is not ClientRole.UNIDENTIFIED:
            logger.debug("session %d already identified as %s", self.id, self.role.value)
            return False
        self.role = ClientRole.DETECTOR if client_type == TRACK_MONITOR else ClientRole.DISPLAY
        return True

    async def deliver(self, text: str):
        if self.state is not ConnectionState.OPEN:
            return
        await self._send(text)

    def close(self):
        self.state = ConnectionState.CLOSED


class SessionRegistry:
    """The set of live sessions.  ``add`` and ``remove`` are its only mutators."""

    def __init__(self):
        self._sessions: dict[int, Session] = {}

    def add(self, session: Session):
        self._sessions[session.id] = session

    def remove(self, session: Session):
        self._sessions.pop(session.id, None)

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))

    def __contains__(self, session: object) -> bool:
        return isinstance(session, Session) and session.id in self._sessions

    def displays(self) -> list[Session]:
        return [s for s in self if s.is_display and s.state is ConnectionState.OPEN]

    async def broadcast(self, message: dict[str, Any]) -> int:
        """Send ``message`` to every open display session; return the count."""
        text = encode(message)
        delivered = 0
        for session in self.displays():
            try:
                await session.deliver(text)
            except Exception as exc:
                logger.warning("broadcast to session %d failed: %s", session.id, exc)
                continue
            delivered += 1
        return delivered
