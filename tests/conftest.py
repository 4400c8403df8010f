"""Pytest configuration and fixtures."""
from __future__ import annotations

import plistlib
from typing import Any, Callable

import pytest


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def set_document() -> Callable[..., bytes]:
    """Build an articulation-set plist document from keyword fields."""

    def build(articulations: list[Any] | None = None, **fields: Any) -> bytes:
        root: dict[str, Any] = dict(fields)
        root["Articulations"] = articulations or []
        return plistlib.dumps(root)

    return build


@pytest.fixture
def catalogue_dir(tmp_path, set_document):
    """A small catalogue tree on disk."""
    strings = tmp_path / "Strings"
    strings.mkdir()
    (strings / "Stradivari Violin.plist").write_bytes(set_document(
        [{"Name": "Sustain", "Output": {"Note": 24}}],
    ))
    (strings / "Violins 1.plist").write_bytes(set_document(
        [{"Name": "Legato", "Output": {"Note": 36}},
         {"Name": "Pizzicato"}],
    ))
    brass = tmp_path / "Brass"
    brass.mkdir()
    (brass / "Horns.plist").write_bytes(set_document(
        [{"Name": "Marcato", "Output": {"Note": 12}}],
    ))
    (tmp_path / "notes.txt").write_text("not a set")
    return tmp_path
