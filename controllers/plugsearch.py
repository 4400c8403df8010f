"""PlugSearch articulation-set signal and inbound MIDI diagnostics."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Iterable, Optional

from ksbridge.deps import HAS_MIDO, mido
from ksbridge.dispatch import classify
from ksbridge.midi import MidiInPort, list_input_ports

logger = logging.getLogger(__name__)

PLUGSEARCH_PORT = "PlugSearch"

# PlugSearch announces the active articulation set as Poly Pressure on this
# note, with the set id as the pressure value.
SET_ID_NOTE = 127


class PlugSearchListener:
    """Listen on MIDI inputs and report articulation-set id changes.

    rtmidi delivers callbacks on its own thread; every event is handed to the
    asyncio loop before it is looked at, so ``on_set_change`` always runs on
    the loop.
    """

    def __init__(self, on_set_change: Callable[[int], None],
                 loop: asyncio.AbstractEventLoop):
        self._on_set_change = on_set_change
        self._loop = loop
        self._ports: list[MidiInPort] = []
        self._last_set_id: Optional[int] = None

    @property
    def last_set_id(self) -> Optional[int]:
        return self._last_set_id

    @property
    def port_names(self) -> list[str]:
        return [p.name for p in self._ports if p.name]

    def open_all(self, only: Optional[Iterable[str]] = None) -> list[str]:
        """Open every input (or those whose name contains one of ``only``)."""
        wanted = [w.lower() for w in only] if only else None
        for index, name in enumerate(list_input_ports()):
            if wanted and not any(w in name.lower() for w in wanted):
                continue
            port = MidiInPort()
            try:
                port.open(index, self._callback_for(name))
            except Exception as exc:
                logger.info("skipped MIDI input %s (%s)", name, exc)
                continue
            self._ports.append(port)
            logger.info("listening on MIDI input: %s", name)
        return self.port_names

    def close(self):
        for port in self._ports:
            port.close()
        self._ports.clear()

    def _callback_for(self, port_name: str):
        def on_midi(event, data=None):
            del data
            raw, _dt = event
            self._loop.call_soon_threadsafe(self.handle, port_name, list(raw))
        return on_midi

    def handle(self, port_name: str, raw: list[int]):
        """Inspect one inbound message; runs on the event loop."""
        if not raw:
            return

        set_id = self._set_id_from(port_name, raw)
        if set_id is None:
            logger.debug("[%s] %s - %s", port_name, raw, classify(raw))
            return

        if set_id != self._last_set_id:
            self._last_set_id = set_id
            logger.info("PlugSearch: articulation set id changed to %d", set_id)
            self._on_set_change(set_id)

    @staticmethod
    def _set_id_from(port_name: str, raw: list[int]) -> Optional[int]:
        if PLUGSEARCH_PORT.lower() not in port_name.lower() or not HAS_MIDO:
            return None
        try:
            msg = mido.parse(raw)
        except (ValueError, TypeError) as exc:
            logger.debug("[%s] unparseable bytes %s: %s", port_name, raw, exc)
            return None
        if msg is not None and msg.type == "polytouch" and msg.note == SET_ID_NOTE:
            return msg.value
        return None
