"""Match an observed track name to an articulation set.

Matching is plain case-insensitive containment in either direction:
"Violin" matches the set "Stradivari Violin" and the track "Violin 1 Solo"
matches the set "violin 1".
"""

from __future__ import annotations

from typing import Iterable, Iterator, Optional, Sequence

from ksbridge.models import ArticulationSet, CatalogueEntry


def _fold(text: str) -> str:
    return text.strip().lower()


def matches(candidate: str, track_name: str) -> bool:
    """True when either name contains the other, ignoring case."""
    track = _fold(track_name)
    name = _fold(candidate)
    if not track or not name:
        return False
    return track in name or name in track


def resolve(track_name: str,
            catalogue: Sequence[CatalogueEntry]) -> Optional[CatalogueEntry]:
    """Pick the best catalogue entry for ``track_name``.

    The first entry whose name contains the track name wins; otherwise the
    first entry matching in either direction.  Returns ``None`` on no match.
    """
    track = _fold(track_name)
    if not track:
        return None

    first_match: Optional[CatalogueEntry] = None
    for entry in catalogue:
        if not matches(entry.name, track):
            continue
        if track in _fold(entry.name):
            return entry
        if first_match is None:
            first_match = entry
    return first_match


class LoadedSets:
    """Sets already loaded this session, keyed by resolved set name."""

    def __init__(self, sets: Iterable[ArticulationSet] = ()):
        self._sets: dict[str, ArticulationSet] = {}
        for art_set in sets:
            self.add(art_set)

    def add(self, art_set: ArticulationSet):
        self._sets[art_set.name] = art_set

    def get(self, name: str) -> Optional[ArticulationSet]:
        return self._sets.get(name)

    def find(self, track_name: str) -> Optional[ArticulationSet]:
        """Return the first loaded set whose name matches ``track_name``."""
        for name, art_set in self._sets.items():
            if matches(name, track_name):
                return art_set
        return None

    def names(self) -> list[str]:
        return list(self._sets)

    def __len__(self) -> int:
        return len(self._sets)

    def __iter__(self) -> Iterator[ArticulationSet]:
        return iter(self._sets.values())

    def __contains__(self, name: object) -> bool:
        return name in self._sets
