"""ksbridge - articulation key-switch bridge between a DAW and display clients."""

from ksbridge.models import Articulation, ArticulationSet, MidiTrigger, RemoteTrigger
from ksbridge.parser import parse, parse_file
from ksbridge.assign import auto_assign
from ksbridge.resolver import resolve

__all__ = [
    "Articulation", "ArticulationSet", "MidiTrigger", "RemoteTrigger",
    "parse", "parse_file", "auto_assign", "resolve",
]
