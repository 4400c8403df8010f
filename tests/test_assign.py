"""Tests for ksbridge/assign.py."""
from __future__ import annotations

from typing import Optional

import pytest

from ksbridge.assign import auto_assign, count_auto_assigned, has_unassigned_remotes
from ksbridge.errors import ExhaustionError
from ksbridge.models import Articulation, ArticulationSet, RemoteTrigger


def _art(index: int, remote: Optional[int] = None) -> Articulation:
    return Articulation(
        id=f"art_{index}",
        name=f"Art {index}",
        short_name=f"A{index}",
        description="",
        color=0,
        group=0,
        remote_trigger=RemoteTrigger(0x90, remote) if remote is not None else None,
    )


def _set(*arts: Articulation) -> ArticulationSet:
    return ArticulationSet(name="Test", source_file_name="test.plist", articulations=arts)


class TestAutoAssign:
    def test_skips_explicit_notes_in_order(self):
        art_set = _set(_art(0, remote=0), _art(1), _art(2, remote=2), _art(3))
        result = auto_assign(art_set)
        remotes = [a.remote_trigger for a in result.articulations]
        assert remotes == [
            RemoteTrigger(0x90, 0, False),
            RemoteTrigger(0x90, 1, True),
            RemoteTrigger(0x90, 2, False),
            RemoteTrigger(0x90, 3, True),
        ]

    def test_input_set_unchanged(self):
        art_set = _set(_art(0))
        auto_assign(art_set)
        assert art_set.articulations[0].remote_trigger is None

    def test_idempotent(self):
        once = auto_assign(_set(_art(0), _art(1, remote=5), _art(2)))
        assert auto_assign(once) == once

    def test_start_note(self):
        result = auto_assign(_set(_art(0), _art(1, remote=61), _art(2)), start_note=60)
        assert [a.remote_trigger.data1 for a in result.articulations] == [60, 61, 62]

    def test_start_note_out_of_range(self):
        with pytest.raises(ValueError):
            auto_assign(_set(_art(0)), start_note=128)

    def test_exhaustion(self):
        arts = [_art(n, remote=n) for n in range(128)] + [_art(128)]
        with pytest.raises(ExhaustionError):
            auto_assign(_set(*arts))

    def test_exhaustion_from_high_start_note(self):
        with pytest.raises(ExhaustionError):
            auto_assign(_set(_art(0), _art(1)), start_note=127)


class TestQueries:
    def test_has_unassigned_remotes(self):
        assert has_unassigned_remotes(_set(_art(0, remote=1), _art(1)))
        assert not has_unassigned_remotes(_set(_art(0, remote=1)))
        assert not has_unassigned_remotes(_set())

    def test_count_auto_assigned(self):
        result = auto_assign(_set(_art(0), _art(1, remote=0), _art(2)))
        assert count_auto_assigned(result) == 2
