"""MIDI dispatch: channel override, transmission and diagnostics.

The dispatcher writes to an *output*: any object with a ``name``, an
``is_open`` flag and ``send_message(list[int])``.  The bridge server binds a
:class:`~ksbridge.midi.MidiOutPort`; display clients bind a
:class:`~ksbridge.client.BridgeOutput` that forwards over the bridge.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Sequence

from ksbridge.errors import NoOutputAvailable
from ksbridge.models import MidiTrigger

logger = logging.getLogger(__name__)

CHANNEL_VOICE_FIRST = 0x80
SYSTEM_FIRST = 0xF0


def with_channel(status: int, channel: int) -> int:
    """Replace the channel of a channel-voice status byte.

    System messages (0xF0 and up) are returned unchanged.
    """
    if not 0 <= channel <= 15:
        raise ValueError(f"channel must be 0-15, got {channel}")
    if CHANNEL_VOICE_FIRST <= status < SYSTEM_FIRST:
        return (status & 0xF0) | channel
    return status


class MidiDispatcher:
    def __init__(self, output=None):
        self._output = output

    def bind(self, output):
        self._output = output

    @property
    def has_output(self) -> bool:
        return self._output is not None and self._output.is_open

    @property
    def output_name(self) -> Optional[str]:
        if not self.has_output:
            return None
        return self._output.name

    def dispatch(self, trigger: MidiTrigger, global_channel: int = 0,
                 apply_channel: bool = False) -> MidiTrigger:
        """Send ``trigger``, optionally moved to ``global_channel``.

        Returns the trigger as transmitted.  Raises
        :class:`~ksbridge.errors.NoOutputAvailable` when nothing is bound.
        """
        status = trigger.status
        if apply_channel:
            status = with_channel(status, global_channel)
        sent = MidiTrigger(status, trigger.data1, trigger.data2)

        if not self.has_output:
            raise NoOutputAvailable(f"no MIDI output for {classify(sent.as_bytes())}")

        self._output.send_message(sent.as_bytes())
        logger.info("MIDI out [%s] %s", self._output.name, classify(sent.as_bytes()))
        return sent

    def dispatch_all(self, triggers: Iterable[MidiTrigger], global_channel: int = 0,
                     apply_channel: bool = False) -> list[MidiTrigger]:
        return [self.dispatch(t, global_channel, apply_channel) for t in triggers]


def classify(data: Sequence[int]) -> str:
    """Describe raw MIDI bytes for logs."""
    if not data:
        return "empty"
    status = data[0]
    data1 = data[1] if len(data) > 1 else 0
    data2 = data[2] if len(data) > 2 else 0
    channel = (status & 0x0F) + 1
    kind = status & 0xF0

    if kind == 0x80:
        return f"Note Off ch{channel} note={data1} vel={data2}"
    if kind == 0x90:
        if data2 > 0:
            return f"Note On ch{channel} note={data1} vel={data2}"
        return f"Note Off ch{channel} note={data1}"
    if kind == 0xA0:
        return f"Poly Pressure ch{channel} note={data1} pressure={data2}"
    if kind == 0xB0:
        return f"CC ch{channel} cc={data1} val={data2}"
    if kind == 0xC0:
        return f"Program Change ch{channel} program={data1}"
    if kind == 0xD0:
        return f"Channel Pressure ch{channel} pressure={data1}"
    if kind == 0xE0:
        return f"Pitch Bend ch{channel} value={(data2 << 7) | data1}"
    if status == 0xF0:
        return "SysEx Start"
    if status == 0xF7:
        return "SysEx End"
    if kind == 0xF0:
        return f"System message 0x{status:02x}"
    return f"Unknown 0x{status:02x}"
