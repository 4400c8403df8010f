"""Graceful optional dependency imports.

The MIDI libraries need native backends (ALSA, CoreMIDI, WinMM) that are not
present on every machine the bridge or its tests run on.  Every other module
imports availability flags from here so the try/except blocks live in exactly
one place.
"""

from __future__ import annotations

# -- python-rtmidi (port I/O) ------------------------------------------------

try:
    import rtmidi
    HAS_RTMIDI = True
except ImportError:
    rtmidi = None  # type: ignore[assignment]
    HAS_RTMIDI = False

# -- mido (MIDI message parsing) ---------------------------------------------

try:
    import mido
    HAS_MIDO = True
except ImportError:
    mido = None  # type: ignore[assignment]
    HAS_MIDO = False
