"""Articulation-set parser.

Articulation sets are XML property lists.  Two dialects share the same
entry point:

* **Key-switch sets** list ``Articulations`` whose ``Output`` dictionary
  carries a ``Note`` (plus ``Velocity``) and/or a ``CC`` array of
  ``Number``/``Value`` pairs.
* **Switch-table sets** (e.g. Art Conductor) give each articulation's
  ``Output`` an ``MB1`` note and a ``Status`` string, and add a ``Switches``
  array, keyed by ``ID``, holding the note a controller sends to select the
  articulation.

When no switch entry exists the output note doubles as the remote trigger
and is flagged as auto-assigned.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Callable, Optional

from ksbridge import plist
from ksbridge.models import (
    CONTROL_CHANGE,
    MAX_DATA,
    NOTE_ON,
    PALETTE_SIZE,
    POLY_PRESSURE,
    Articulation,
    ArticulationSet,
    ArticulationType,
    MidiTrigger,
    RemoteTrigger,
    new_articulation_id,
)
from ksbridge.plist import Node, lookup_int, lookup_sequence, lookup_str

logger = logging.getLogger(__name__)

STATUS_NAMES = {
    "Note On": NOTE_ON,
    "Control Change": CONTROL_CHANGE,
    "Poly Pressure": POLY_PRESSURE,
}

# Vendor tag such as "AC " in "AC Violins 1".
VENDOR_PREFIX = re.compile(r"^[A-Z]{2,}\s+")

DIRECTION_TYPE = "direction"

# Only these are stripped; set names often contain dots ("Violins 1.2").
SET_SUFFIXES = (".plist", ".xml")


# -- field defaults -----------------------------------------------------------
#
# Each policy receives the 0-based articulation index and the fields resolved
# so far, in table order.

FieldPolicy = Callable[[int, dict], object]

FIELD_DEFAULTS: dict[str, FieldPolicy] = {
    "name": lambda index, fields: f"Articulation {index + 1}",
    "short_name": lambda index, fields: fields["name"][:4].upper(),
    "description": lambda index, fields: fields["name"],
    "color": lambda index, fields: index % PALETTE_SIZE,
    "group": lambda index, fields: 0,
}


def status_from_name(name: Optional[str]) -> int:
    """Map a ``Status`` string to a status byte; unknown values are Note On."""
    return STATUS_NAMES.get(name or "", NOTE_ON)


def _in_data_range(value: Optional[int]) -> bool:
    return value is not None and 0 <= value <= MAX_DATA


def _velocity(value: Optional[int]) -> int:
    # Absent and zero both mean full velocity: a Note On at 0 is a Note Off.
    if _in_data_range(value) and value:
        return value
    return MAX_DATA


def resolve_set_name(root: Node, file_hint: str) -> str:
    name = lookup_str(root, "Name", "name") or Path(file_hint).name
    for suffix in SET_SUFFIXES:
        if name.endswith(suffix):
            name = name[: -len(suffix)]
            break
    return VENDOR_PREFIX.sub("", name)


def _switch_table(root: Node) -> dict[int, Node]:
    switches: dict[int, Node] = {}
    for entry in lookup_sequence(root, "Switches", "switches"):
        switch_id = lookup_int(entry, "ID")
        if switch_id is not None:
            switches[switch_id] = entry
    return switches


def _output_messages(output: Optional[Node]) -> tuple[list[MidiTrigger], Optional[int]]:
    """Return the output triggers and the first keyswitch note found."""
    messages: list[MidiTrigger] = []
    key_switch: Optional[int] = None

    mb1 = lookup_int(output, "MB1")
    if _in_data_range(mb1):
        status = status_from_name(lookup_str(output, "Status"))
        messages.append(MidiTrigger(status, mb1, _velocity(lookup_int(output, "ValueLow"))))
        key_switch = mb1

    note = lookup_int(output, "Note", "note")
    if _in_data_range(note):
        messages.append(MidiTrigger(NOTE_ON, note, _velocity(lookup_int(output, "Velocity"))))
        if key_switch is None:
            key_switch = note

    for cc in lookup_sequence(output, "CC", "cc"):
        number = lookup_int(cc, "Number")
        value = lookup_int(cc, "Value")
        if _in_data_range(number) and _in_data_range(value):
            messages.append(MidiTrigger(CONTROL_CHANGE, number, value))
        elif number is not None or value is not None:
            logger.debug("skipping CC entry out of range: %s=%s", number, value)

    return messages, key_switch


def _remote_trigger(entry: Node, switches: dict[int, Node],
                    key_switch: Optional[int]) -> Optional[RemoteTrigger]:
    art_id = lookup_int(entry, "ID", "id")
    switch = switches.get(art_id) if art_id is not None else None
    if switch is not None:
        switch_note = lookup_int(switch, "MB1")
        if _in_data_range(switch_note):
            return RemoteTrigger(status_from_name(lookup_str(switch, "Status")),
                                 switch_note, False)

    if key_switch is not None:
        return RemoteTrigger(NOTE_ON, key_switch, True)
    return None


def _resolve_fields(entry: Node, index: int) -> dict:
    explicit = {
        "name": lookup_str(entry, "Name", "name") or None,
        "short_name": lookup_str(entry, "ShortName", "shortName") or None,
        "description": lookup_str(entry, "Description", "description") or None,
        "color": lookup_int(entry, "Color", "color"),
        "group": lookup_int(entry, "Group", "group"),
    }
    fields: dict = {}
    for key, policy in FIELD_DEFAULTS.items():
        value = explicit[key]
        fields[key] = value if value is not None else policy(index, fields)
    fields["color"] = fields["color"] % PALETTE_SIZE
    fields["group"] = max(0, fields["group"])
    return fields


def _articulation_type(entry: Node) -> ArticulationType:
    if lookup_str(entry, "Type", "type") == DIRECTION_TYPE:
        return ArticulationType.DIRECTION
    return ArticulationType.ATTRIBUTE


def parse_articulation(entry: Node, index: int,
                       switches: dict[int, Node]) -> Articulation:
    fields = _resolve_fields(entry, index)
    messages, key_switch = _output_messages(entry.lookup("Output", "output"))
    return Articulation(
        id=new_articulation_id("art", index),
        name=fields["name"],
        short_name=fields["short_name"],
        description=fields["description"],
        color=fields["color"],
        group=fields["group"],
        output_messages=tuple(messages),
        remote_trigger=_remote_trigger(entry, switches, key_switch),
        articulation_type=_articulation_type(entry),
        key_switch=key_switch,
    )


def parse(document: bytes, file_hint: str) -> ArticulationSet:
    """Parse an articulation-set plist into an :class:`ArticulationSet`.

    Raises :class:`~ksbridge.errors.ParseError` when the document is not a
    property list with a dictionary root.
    """
    root = plist.decode(document)
    switches = _switch_table(root)

    articulations = []
    for index, entry in enumerate(lookup_sequence(root, "Articulations", "articulations")):
        if not entry.is_mapping:
            logger.debug("articulation %d is a %s, skipped", index + 1, entry.kind.value)
            continue
        articulations.append(parse_articulation(entry, index, switches))

    art_set = ArticulationSet(
        name=resolve_set_name(root, file_hint),
        source_file_name=file_hint,
        articulations=tuple(articulations),
    )
    logger.debug("parsed '%s': %d articulations, %d switches",
                 art_set.name, len(articulations), len(switches))
    return art_set


def parse_file(path: str | Path) -> ArticulationSet:
    """Read and parse an articulation-set file from disk."""
    path = Path(path)
    return parse(path.read_bytes(), path.name)
