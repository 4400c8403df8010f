"""Remote-trigger auto-assignment.

Articulations without a remote trigger get the next free note, scanning
upwards from a start note.  Notes held by explicit (non-auto) remote triggers
are never reused.  The input set is left untouched; a new set is returned.
"""

from __future__ import annotations

import logging
from dataclasses import replace

from ksbridge.errors import ExhaustionError
from ksbridge.models import MAX_DATA, NOTE_ON, ArticulationSet, RemoteTrigger

logger = logging.getLogger(__name__)


def _explicit_notes(art_set: ArticulationSet) -> set[int]:
    return {
        art.remote_trigger.data1
        for art in art_set.articulations
        if art.remote_trigger is not None and not art.remote_trigger.is_auto_assigned
    }


def auto_assign(art_set: ArticulationSet, start_note: int = 0) -> ArticulationSet:
    """Return a copy of ``art_set`` where every articulation has a remote trigger.

    Raises :class:`~ksbridge.errors.ExhaustionError` when notes 0-127 run
    out before every articulation is assigned.
    """
    if not 0 <= start_note <= MAX_DATA:
        raise ValueError(f"start_note must be 0-127, got {start_note}")

    used = _explicit_notes(art_set)
    next_note = start_note
    updated = []

    for art in art_set.articulations:
        if art.remote_trigger is not None:
            updated.append(art)
            continue
        while next_note in used and next_note <= MAX_DATA:
            next_note += 1
        if next_note > MAX_DATA:
            raise ExhaustionError(
                f"no free MIDI note left for '{art.name}' in '{art_set.name}'")
        used.add(next_note)
        updated.append(replace(art, remote_trigger=RemoteTrigger(NOTE_ON, next_note, True)))
        logger.debug("auto-assigned note %d to '%s'", next_note, art.name)
        next_note += 1

    return replace(art_set, articulations=tuple(updated))


def has_unassigned_remotes(art_set: ArticulationSet) -> bool:
    return any(art.remote_trigger is None for art in art_set.articulations)


def count_auto_assigned(art_set: ArticulationSet) -> int:
    return sum(
        1 for art in art_set.articulations
        if art.remote_trigger is not None and art.remote_trigger.is_auto_assigned
    )
