"""Tests for ksbridge/display.py."""
from __future__ import annotations

import asyncio

import pytest

from ksbridge.dispatch import MidiDispatcher
from ksbridge.display import DisplayController, describe_set
from ksbridge.models import CatalogueEntry, MidiTrigger
from ksbridge.resolver import matches


class FakeOutput:
    name = "IAC Driver Bus 1"
    is_open = True

    def __init__(self):
        self.sent: list[list[int]] = []

    def send_message(self, message: list[int]):
        self.sent.append(message)


class FakeCatalogue:
    """Async catalogue over in-memory documents; searches can be held open."""

    def __init__(self, documents: dict[str, bytes]):
        self.documents = documents
        self.gates: dict[str, asyncio.Event] = {}
        self.searches: list[str] = []

    async def search(self, query: str) -> list[CatalogueEntry]:
        self.searches.append(query)
        if query in self.gates:
            await self.gates[query].wait()
        return [CatalogueEntry(name, f"{name}.plist")
                for name in self.documents if matches(name, query)]

    async def load(self, relative_path: str) -> bytes:
        name = relative_path[: -len(".plist")]
        if name not in self.documents:
            raise FileNotFoundError(relative_path)
        return self.documents[name]


@pytest.fixture
def documents(set_document) -> dict[str, bytes]:
    return {
        "Horns": set_document([{"Name": "Marcato", "Output": {"Note": 12}},
                               {"Name": "Sforzando", "Output": {"Note": 13, "Velocity": 90}}]),
        "Violins 1": set_document([{"Name": "Legato", "Output": {"Note": 36}},
                                   {"Name": "Pizzicato"}]),
        "Broken": b"this is not a property list",
        "Dated": (b'<?xml version="1.0" encoding="UTF-8"?>\n'
                  b'<plist version="1.0"><dict><key>When</key>'
                  b'<date>soon</date></dict></plist>'),
    }


@pytest.fixture
def output() -> FakeOutput:
    return FakeOutput()


@pytest.fixture
def controller(documents, output) -> DisplayController:
    return DisplayController(FakeCatalogue(documents), MidiDispatcher(output), channel=3)


class TestTrackChange:
    def test_starts_with_demo_set(self, controller):
        assert controller.current_set.name == "Demo Strings"
        assert len(controller.current_set) == 8

    @pytest.mark.anyio
    async def test_loads_matching_set(self, controller):
        art_set = await controller.on_track_change("Horns a4")
        assert art_set.name == "Horns"
        assert controller.current_set is art_set
        assert "Horns" in controller.loaded

    @pytest.mark.anyio
    async def test_fills_missing_remotes(self, controller):
        art_set = await controller.on_track_change("Violins 1")
        assert all(a.remote_trigger is not None for a in art_set.articulations)
        assert art_set.articulations[1].remote_trigger.is_auto_assigned

    @pytest.mark.anyio
    async def test_loaded_set_preferred_over_catalogue(self, controller):
        await controller.on_track_change("Horns")
        searches = list(controller.catalogue.searches)
        art_set = await controller.on_track_change("Horns a2")
        assert art_set.name == "Horns"
        assert controller.catalogue.searches == searches

    @pytest.mark.anyio
    async def test_no_match_keeps_current_set(self, controller):
        assert await controller.on_track_change("Timpani") is None
        assert controller.current_set.name == "Demo Strings"
        assert controller.current_track == "Timpani"

    @pytest.mark.anyio
    async def test_parse_error_keeps_current_set(self, controller):
        assert await controller.on_track_change("Broken") is None
        assert controller.current_set.name == "Demo Strings"

    @pytest.mark.anyio
    async def test_bad_date_keeps_current_set(self, controller):
        assert await controller.on_track_change("Dated") is None
        assert controller.current_set.name == "Demo Strings"

    @pytest.mark.anyio
    async def test_stale_lookup_discarded(self, controller):
        controller.catalogue.gates["Violins 1"] = asyncio.Event()
        slow = asyncio.create_task(controller.on_track_change("Violins 1"))
        await asyncio.sleep(0)

        await controller.on_track_change("Horns")
        controller.catalogue.gates["Violins 1"].set()

        assert await slow is None
        assert controller.current_set.name == "Horns"
        assert controller.current_track == "Horns"
        assert "Violins 1" not in controller.loaded

    @pytest.mark.anyio
    async def test_handle_message_routes(self, controller):
        await controller.handle_message({"type": "trackChange", "trackName": "Horns"})
        await controller.handle_message({"type": "articulationSetChange", "articulationSetId": 9})
        await controller.handle_message({"type": "trackChange"})
        assert controller.current_set.name == "Horns"
        assert controller.articulation_set_id == 9


class TestActivation:
    @pytest.mark.anyio
    async def test_activate_sends_on_global_channel(self, controller, output):
        await controller.on_track_change("Horns")
        sent = controller.activate_index(2)
        assert sent == [MidiTrigger(0x93, 13, 90)]
        assert output.sent == [[0x93, 13, 90]]
        assert controller.active_id == controller.current_set.articulations[1].id

    def test_activate_without_channel_override(self, documents, output):
        controller = DisplayController(FakeCatalogue(documents), MidiDispatcher(output),
                                       channel=3, apply_channel=False)
        controller.activate_index(1)
        assert output.sent == [[0x90, 0, 127]]

    def test_unknown_articulation(self, controller):
        with pytest.raises(KeyError):
            controller.activate("art_99_missing")
        with pytest.raises(IndexError):
            controller.activate_index(9)

    def test_no_output(self, documents):
        controller = DisplayController(FakeCatalogue(documents), MidiDispatcher())
        assert controller.activate_index(1) == []
        assert controller.active_id is None

    def test_load_document_and_select(self, controller, documents):
        controller.load_document(documents["Horns"], "Horns.plist")
        assert controller.current_set.name == "Horns"
        assert controller.select("Demo Strings") is None
        assert controller.select("Horns").name == "Horns"


def test_describe_set_lists_groups_and_remotes(set_document):
    from ksbridge.assign import auto_assign
    from ksbridge.parser import parse

    art_set = auto_assign(parse(set_document([
        {"Name": "Sustain", "Output": {"Note": 24}, "Group": 1},
        {"Name": "Staccato"},
    ]), "Cellos.plist"))
    lines = describe_set(art_set)
    assert lines[0] == "== Cellos (2 articulations)"
    assert "-- group 1" in lines
    assert "-- group 0" in lines
    assert any("Sustain" in line and "C0*" in line for line in lines)
