"""Low-level MIDI port wrappers (python-rtmidi)."""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional

from ksbridge.deps import HAS_RTMIDI, rtmidi
from ksbridge.errors import NoOutputAvailable

logger = logging.getLogger(__name__)

# Loopback ports the DAW listens on, most specific first.
PREFERRED_OUTPUTS = (
    "Browser to Cubase",
    "Browser to Logic",
    "IAC Driver",
    "ArticulationRemote",
    "loopMIDI",
)


def list_output_ports() -> list[str]:
    if not HAS_RTMIDI:
        return []
    m = rtmidi.MidiOut()
    ports = [m.get_port_name(i) for i in range(m.get_port_count())]
    m.delete()
    return ports


def list_input_ports() -> list[str]:
    if not HAS_RTMIDI:
        return []
    m = rtmidi.MidiIn()
    ports = [m.get_port_name(i) for i in range(m.get_port_count())]
    m.delete()
    return ports


def find_port(ports: list[str], preferred: Iterable[str]) -> Optional[int]:
    """Index of the first port whose name contains a preferred name (any case)."""
    for wanted in preferred:
        for index, name in enumerate(ports):
            if wanted.lower() in name.lower():
                return index
    return None


class MidiOutPort:
    """A single hardware, loopback or virtual MIDI output."""

    def __init__(self):
        self._port = None
        self._name: Optional[str] = None

    # -- open / close --------------------------------------------------------

    def open(self, port_index: int) -> str:
        self.close()
        if not HAS_RTMIDI:
            raise RuntimeError("python-rtmidi not installed")
        self._port = rtmidi.MidiOut()
        self._port.open_port(port_index)
        self._name = self._port.get_port_name(port_index)
        return self._name

    def open_preferred(self, preferred: Iterable[str] = PREFERRED_OUTPUTS) -> Optional[str]:
        """Open the first output matching ``preferred``; ``None`` if none does."""
        index = find_port(list_output_ports(), preferred)
        if index is None:
            return None
        return self.open(index)

    def open_virtual(self, name: str) -> str:
        self.close()
        if not HAS_RTMIDI:
            raise RuntimeError("python-rtmidi not installed")
        self._port = rtmidi.MidiOut()
        self._port.open_virtual_port(name)
        self._name = name
        return name

    def close(self):
        if self._port:
            self._port.close_port()
            self._port.delete()
            self._port = None
            self._name = None

    # -- output --------------------------------------------------------------

    def send_message(self, message: list[int]):
        if self._port is None:
            raise NoOutputAvailable("MIDI output is not open")
        self._port.send_message(message)

    @property
    def is_open(self) -> bool:
        return self._port is not None

    @property
    def name(self) -> Optional[str]:
        return self._name


class MidiInPort:
    """Opens a single hardware or virtual MIDI input port with a callback."""

    def __init__(self):
        self._port = None
        self._name: Optional[str] = None

    def open(self, port_index: int, callback: Callable) -> str:
        self.close()
        if not HAS_RTMIDI:
            raise RuntimeError("python-rtmidi not installed")
        self._port = rtmidi.MidiIn()
        self._port.open_port(port_index)
        self._name = self._port.get_port_name(port_index)
        self._port.set_callback(callback)
        return self._name

    def close(self):
        if self._port:
            self._port.cancel_callback()
            self._port.close_port()
            self._port.delete()
            self._port = None
            self._name = None

    @property
    def is_open(self) -> bool:
        return self._port is not None

    @property
    def name(self) -> Optional[str]:
        return self._name
