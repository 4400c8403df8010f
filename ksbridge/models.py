"""Shared data models and constants."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterable, Optional

NOTE_ON = 0x90
NOTE_OFF = 0x80
POLY_PRESSURE = 0xA0
CONTROL_CHANGE = 0xB0

MAX_DATA = 127

# Indexed by Articulation.color (0-15).
COLOR_PALETTE = (
    "#808080",  # gray (default)
    "#e74c3c",  # red
    "#e67e22",  # orange
    "#f1c40f",  # yellow
    "#2ecc71",  # green
    "#1abc9c",  # teal
    "#3498db",  # blue
    "#9b59b6",  # purple
    "#e91e63",  # pink
    "#795548",  # brown
    "#607d8b",  # gray blue
    "#00bcd4",  # cyan
    "#8bc34a",  # light green
    "#ff5722",  # deep orange
    "#673ab7",  # deep purple
    "#03a9f4",  # light blue
)
PALETTE_SIZE = len(COLOR_PALETTE)

NOTE_NAMES = ("C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B")


def _check_data(name: str, value: int):
    if not 0 <= value <= MAX_DATA:
        raise ValueError(f"{name} must be 0-127, got {value}")


@dataclass(frozen=True)
class MidiTrigger:
    """One raw three-byte MIDI event."""

    status: int
    data1: int
    data2: int

    def __post_init__(self):
        if not 0x80 <= self.status <= 0xFF:
            raise ValueError(f"status must be 0x80-0xFF, got {self.status}")
        _check_data("data1", self.data1)
        _check_data("data2", self.data2)

    @property
    def message_type(self) -> int:
        return self.status & 0xF0

    @property
    def channel(self) -> int:
        return self.status & 0x0F

    def as_bytes(self) -> list[int]:
        return [self.status, self.data1, self.data2]


@dataclass(frozen=True)
class RemoteTrigger:
    """The note/CC a controller sends to select an articulation."""

    status: int
    data1: int
    is_auto_assigned: bool = False


class ArticulationType(IntEnum):
    ATTRIBUTE = 0
    DIRECTION = 1


@dataclass(frozen=True)
class Articulation:
    id: str
    name: str
    short_name: str
    description: str
    color: int
    group: int
    output_messages: tuple[MidiTrigger, ...] = ()
    remote_trigger: Optional[RemoteTrigger] = None
    articulation_type: ArticulationType = ArticulationType.ATTRIBUTE
    key_switch: Optional[int] = None

    @property
    def color_hex(self) -> str:
        return color_hex(self.color)


@dataclass(frozen=True)
class ArticulationSet:
    """A named, ordered collection of articulations for one instrument."""

    name: str
    source_file_name: str
    articulations: tuple[Articulation, ...] = field(default_factory=tuple)

    def __len__(self) -> int:
        return len(self.articulations)

    def find(self, articulation_id: str) -> Optional[Articulation]:
        for art in self.articulations:
            if art.id == articulation_id:
                return art
        return None

    def groups(self) -> dict[int, list[Articulation]]:
        """Group articulations by group number, in first-seen order."""
        grouped: dict[int, list[Articulation]] = {}
        for art in self.articulations:
            grouped.setdefault(art.group, []).append(art)
        return grouped

    def count_by_type(self) -> dict[ArticulationType, int]:
        counts = {kind: 0 for kind in ArticulationType}
        for art in self.articulations:
            counts[art.articulation_type] += 1
        return counts


@dataclass(frozen=True)
class CatalogueEntry:
    """One articulation-set file found in the catalogue."""

    name: str
    relative_path: str


def color_hex(index: int) -> str:
    return COLOR_PALETTE[index % PALETTE_SIZE]


def midi_note_name(note: int) -> str:
    """Name a MIDI note the way the DAW does (60 -> C3)."""
    return f"{NOTE_NAMES[note % 12]}{note // 12 - 2}"


def new_articulation_id(prefix: str, index: int) -> str:
    return f"{prefix}_{index}_{uuid.uuid4().hex[:12]}"


def create_simple_set(name: str,
                      keyswitches: Iterable[tuple[str, int, int]]) -> ArticulationSet:
    """Build a set from ``(name, note, color)`` keyswitch definitions.

    Each articulation outputs a full-velocity Note On and is selected by a
    remote trigger on the same note.
    """
    articulations = []
    for index, (art_name, note, color) in enumerate(keyswitches):
        articulations.append(Articulation(
            id=new_articulation_id("simple", index),
            name=art_name,
            short_name=art_name[:4].upper(),
            description=art_name,
            color=color,
            group=0,
            output_messages=(MidiTrigger(NOTE_ON, note, MAX_DATA),),
            remote_trigger=RemoteTrigger(NOTE_ON, note, False),
            key_switch=note,
        ))
    return ArticulationSet(name=name, source_file_name="custom",
                           articulations=tuple(articulations))


DEMO_KEYSWITCHES = (
    ("Sustain", 0, 6),
    ("Staccato", 1, 1),
    ("Spiccato", 2, 2),
    ("Pizzicato", 3, 4),
    ("Tremolo", 4, 5),
    ("Trills", 5, 7),
    ("Harmonics", 6, 8),
    ("Col Legno", 7, 3),
)


def demo_set() -> ArticulationSet:
    return create_simple_set("Demo Strings", DEMO_KEYSWITCHES)
