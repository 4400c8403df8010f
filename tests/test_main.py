"""Tests for the ksbridge command line."""
from __future__ import annotations

import argparse
import logging
import sys

import pytest

from ksbridge.main import _channel_arg, main


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def _run(monkeypatch, *argv: str):
    monkeypatch.setattr(sys, "argv", ["ksbridge", *argv])
    main()


def test_channel_arg():
    assert _channel_arg("1") == 0
    assert _channel_arg("16") == 15
    with pytest.raises(argparse.ArgumentTypeError):
        _channel_arg("0")
    with pytest.raises(argparse.ArgumentTypeError):
        _channel_arg("bass")


def test_command_required(monkeypatch):
    with pytest.raises(SystemExit):
        _run(monkeypatch)


def test_search(monkeypatch, capsys, catalogue_dir):
    _run(monkeypatch, "search", "violin", "--catalogue", str(catalogue_dir))
    out = capsys.readouterr().out.splitlines()
    assert out[0] == "Stradivari Violin\tStrings/Stradivari Violin.plist"
    assert out[-1].startswith("2 of 3 sets in ")


def test_inspect_with_assign(monkeypatch, capsys, catalogue_dir):
    _run(monkeypatch, "inspect", str(catalogue_dir / "Strings" / "Violins 1.plist"), "--assign")
    out = capsys.readouterr().out
    assert "== Violins 1 (2 articulations)" in out
    assert "Pizzicato" in out
    assert "attribute=2" in out


def test_inspect_unreadable(monkeypatch, capsys, tmp_path):
    bad = tmp_path / "bad.plist"
    bad.write_bytes(b"nope")
    with pytest.raises(SystemExit):
        _run(monkeypatch, "inspect", str(bad))
    assert "error:" in capsys.readouterr().err
