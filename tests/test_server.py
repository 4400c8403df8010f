"""Tests for ksbridge/server.py: the WebSocket bridge and catalogue API.

Run targeted:
    pytest tests/test_server.py -v
"""
from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

from ksbridge import protocol, server
from ksbridge.catalogue import Catalogue
from ksbridge.protocol import Session
from ksbridge.server import BridgeServer, create_app, find_available_port


class FakeOutput:
    name = "IAC Driver Bus 1"
    is_open = True

    def __init__(self):
        self.sent: list[list[int]] = []

    def send_message(self, message: list[int]):
        self.sent.append(message)


class Recorder:
    def __init__(self):
        self.frames: list[dict] = []

    async def __call__(self, text: str):
        self.frames.append(json.loads(text))


@pytest.fixture
def bridge(catalogue_dir) -> BridgeServer:
    return BridgeServer(Catalogue(catalogue_dir), ws_port=7101)


@pytest.fixture
def client(bridge) -> Generator[TestClient, None, None]:
    with TestClient(create_app(bridge)) as c:
        yield c


# ── WebSocket protocol ───────────────────────────────────────────────────────


class TestWebSocket:
    def test_connected_is_first_frame(self, client):
        with client.websocket_connect("/") as ws:
            assert ws.receive_json() == {
                "type": "connected", "port": None, "status": "no-midi",
                "trackSwitching": True, "wsPort": 7101,
            }

    def test_ws_path_alias(self, client):
        with client.websocket_connect("/ws") as ws:
            assert ws.receive_json()["type"] == "connected"

    def test_connected_reports_bound_output(self, bridge, client):
        bridge.dispatcher.bind(FakeOutput())
        with client.websocket_connect("/") as ws:
            first = ws.receive_json()
        assert first["status"] == "ready"
        assert first["port"] == "IAC Driver Bus 1"

    def test_ping_pong(self, client):
        with client.websocket_connect("/") as ws:
            ws.receive_json()
            ws.send_json(protocol.ping())
            assert ws.receive_json() == {"type": "pong", "port": None, "wsPort": 7101}

    def test_malformed_frames_do_not_close_session(self, client):
        with client.websocket_connect("/") as ws:
            ws.receive_json()
            ws.send_text("not json")
            ws.send_bytes(b"\xff\xfe")
            ws.send_text('{"no": "type"}')
            ws.send_json({"type": "midi", "status": 0x90})
            ws.send_json(protocol.ping())
            assert ws.receive_json()["type"] == "pong"

    def test_binary_frames_are_decoded(self, client):
        with client.websocket_connect("/") as ws:
            ws.receive_json()
            ws.send_bytes(b'{"type":"ping"}')
            assert ws.receive_json()["type"] == "pong"

    def test_track_change_reaches_display_not_detector(self, client):
        with client.websocket_connect("/") as display:
            display.receive_json()
            with client.websocket_connect("/") as detector:
                detector.receive_json()
                detector.send_json(protocol.identify())
                detector.send_json(protocol.track_change("Violins 1"))
                # Frames are handled in order, so the pong proves the
                # broadcast has already happened.
                detector.send_json(protocol.ping())
                assert detector.receive_json()["type"] == "pong"

            assert display.receive_json() == {"type": "trackChange", "trackName": "Violins 1"}

    def test_track_change_reaches_every_display(self, client):
        with client.websocket_connect("/") as first, client.websocket_connect("/") as second:
            first.receive_json()
            second.receive_json()
            with client.websocket_connect("/") as detector:
                detector.receive_json()
                detector.send_json(protocol.identify())
                detector.send_json(protocol.track_change("Horns"))
                detector.send_json(protocol.ping())
                assert detector.receive_json()["type"] == "pong"

            expected = {"type": "trackChange", "trackName": "Horns"}
            assert first.receive_json() == expected
            assert second.receive_json() == expected

    def test_midi_forwarded_to_output(self, bridge, client):
        output = FakeOutput()
        bridge.dispatcher.bind(output)
        with client.websocket_connect("/") as ws:
            ws.receive_json()
            ws.send_json({"type": "midi", "status": 0x90, "data1": 24, "data2": 127})
            ws.send_json(protocol.ping())
            ws.receive_json()
        assert output.sent == [[0x90, 24, 127]]

    def test_midi_without_output_is_dropped(self, client):
        with client.websocket_connect("/") as ws:
            ws.receive_json()
            ws.send_json({"type": "midi", "status": 0x90, "data1": 24, "data2": 127})
            ws.send_json(protocol.ping())
            assert ws.receive_json()["type"] == "pong"

    def test_sessions_removed_on_disconnect(self, bridge, client):
        with client.websocket_connect("/") as ws:
            ws.receive_json()
            ws.send_json(protocol.ping())
            ws.receive_json()
            assert len(bridge.registry) == 1
        # the server notices the close on its next receive
        for _ in range(50):
            if len(bridge.registry) == 0:
                break
            time.sleep(0.01)
        assert len(bridge.registry) == 0


# ── Bridge logic without a transport ─────────────────────────────────────────


class TestBridgeServer:
    @pytest.mark.anyio
    async def test_channel_override(self, catalogue_dir):
        output = FakeOutput()
        bridge = BridgeServer(Catalogue(catalogue_dir), channel=4)
        bridge.dispatcher.bind(output)
        await bridge.handle_message(Session(Recorder()),
                                    {"type": "midi", "status": 0x90, "data1": 1, "data2": 2})
        assert output.sent == [[0x94, 1, 2]]

    @pytest.mark.anyio
    async def test_track_change_without_name_dropped(self, bridge):
        display = Recorder()
        bridge.registry.add(Session(display))
        await bridge.handle_message(Session(Recorder()), {"type": "trackChange"})
        assert display.frames == []

    @pytest.mark.anyio
    async def test_articulation_set_change_broadcast(self, bridge):
        display, detector = Recorder(), Recorder()
        bridge.registry.add(Session(display))
        detector_session = Session(detector)
        detector_session.identify("track-monitor")
        bridge.registry.add(detector_session)

        bridge.notify_articulation_set(7)
        for _ in range(5):
            await asyncio.sleep(0)

        assert display.frames == [{"type": "articulationSetChange", "articulationSetId": 7}]
        assert detector.frames == []


# ── Catalogue HTTP API ───────────────────────────────────────────────────────


class TestCatalogueApi:
    def test_search(self, client):
        response = client.get("/api/articulations", params={"search": "violin"})
        assert response.status_code == 200
        assert response.json() == {
            "sets": [
                {"name": "Stradivari Violin", "path": "Strings/Stradivari Violin.plist"},
                {"name": "Violins 1", "path": "Strings/Violins 1.plist"},
            ],
            "total": 3,
        }

    def test_list_all(self, client):
        names = [s["name"] for s in client.get("/api/articulations").json()["sets"]]
        assert names == ["Horns", "Stradivari Violin", "Violins 1"]

    def test_load(self, client):
        response = client.post("/api/articulations/load", json={"path": "Brass/Horns.plist"})
        assert response.status_code == 200
        body = response.json()
        assert body["path"] == "Brass/Horns.plist"
        assert "Marcato" in body["content"]

    @pytest.mark.parametrize("path", ["", "../outside.plist", "/etc/passwd",
                                      "Brass/\x00Horns.plist"])
    def test_load_rejects_paths_outside_catalogue(self, client, path):
        response = client.post("/api/articulations/load", json={"path": path})
        assert response.status_code == 400

    def test_load_missing(self, client):
        response = client.post("/api/articulations/load", json={"path": "Brass/Tuba.plist"})
        assert response.status_code == 404

    def test_load_non_utf8(self, client, catalogue_dir):
        (catalogue_dir / "Binary.plist").write_bytes(b"\xff\xfe\x00")
        response = client.post("/api/articulations/load", json={"path": "Binary.plist"})
        assert response.status_code == 415


# ── Port selection ───────────────────────────────────────────────────────────


class TestFindAvailablePort:
    def test_skips_busy_ports(self, monkeypatch):
        monkeypatch.setattr(server, "is_port_available", lambda port, host: port != 7101)
        assert find_available_port(7101) == 7102

    def test_skips_reserved_ports(self, monkeypatch):
        tried = []

        def available(port, host):
            tried.append(port)
            return port != 2999

        monkeypatch.setattr(server, "is_port_available", available)
        assert find_available_port(2999, reserved=frozenset({3000})) == 3001
        assert 3000 not in tried

    def test_gives_up(self, monkeypatch):
        monkeypatch.setattr(server, "is_port_available", lambda port, host: False)
        with pytest.raises(RuntimeError):
            find_available_port(7101, max_attempts=3)
