"""Exceptions raised by the bridge core."""

from __future__ import annotations


class ParseError(ValueError):
    """An articulation-set document could not be decoded."""


class ExhaustionError(RuntimeError):
    """Auto-assignment ran out of free MIDI notes (0-127)."""


class NoOutputAvailable(RuntimeError):
    """A MIDI send was attempted with no open output bound."""


class ConnectionLost(ConnectionError):
    """The bridge connection dropped or is not established."""


class CataloguePathError(ValueError):
    """A catalogue path resolved outside the catalogue root."""
