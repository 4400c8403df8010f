"""Listeners for external MIDI sources."""

from controllers.plugsearch import PlugSearchListener

__all__ = ["PlugSearchListener"]
