"""Runtime defaults, overridable from the environment."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

APP_NAME = "ksbridge"

# Auto-selection starts here; 3001 is the fixed port older detectors dial.
DEFAULT_PORT = 7101
LEGACY_PORT = 3001

# Ports claimed by macOS services (AirPlay receiver, Control Center).
RESERVED_PORTS = frozenset({3000, 5000, 7000})

DEFAULT_HOST = "0.0.0.0"

CATALOGUE_ENV = "KSBRIDGE_CATALOGUE_DIR"
PORT_ENV = "KSBRIDGE_PORT"
URL_ENV = "KSBRIDGE_URL"


def default_catalogue_dir() -> Path:
    """Return the articulation-set library root for this user."""
    configured = os.environ.get(CATALOGUE_ENV)
    if configured:
        return Path(configured).expanduser()
    return Path("~/Music/Audio Music Apps/Articulation Settings").expanduser()


def configured_port() -> Optional[int]:
    """Return the port pinned via ``KSBRIDGE_PORT``, or ``None`` to auto-select."""
    value = os.environ.get(PORT_ENV, "").strip()
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{PORT_ENV} must be an integer, got '{value}'") from None


def default_bridge_url() -> str:
    return os.environ.get(URL_ENV) or f"ws://localhost:{DEFAULT_PORT}"


def api_url_for(bridge_url: str) -> str:
    """Derive the catalogue HTTP base URL served next to a bridge WebSocket."""
    if bridge_url.startswith("wss://"):
        base = "https://" + bridge_url[len("wss://"):]
    elif bridge_url.startswith("ws://"):
        base = "http://" + bridge_url[len("ws://"):]
    else:
        base = bridge_url
    base = base.rstrip("/")
    if base.endswith("/ws"):
        base = base[: -len("/ws")]
    return base


DEFAULT_CATALOGUE_DIR = default_catalogue_dir()
