"""Headless display client.

Follows the selected track: on every ``trackChange`` it picks an
articulation set (already-loaded sets first, then the catalogue), fills in
missing remote triggers and makes it current.  Activating an articulation
sends its output messages through the dispatcher.

Lookups are not cancelled when the track changes again mid-flight.  Each
lookup remembers the track name it was started for and drops its result if
that is no longer the current track.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from ksbridge.assign import auto_assign, count_auto_assigned, has_unassigned_remotes
from ksbridge.dispatch import MidiDispatcher
from ksbridge.errors import ExhaustionError, NoOutputAvailable, ParseError
from ksbridge.models import Articulation, ArticulationSet, MidiTrigger, demo_set, midi_note_name
from ksbridge.parser import parse
from ksbridge.protocol import MessageType
from ksbridge.resolver import LoadedSets, resolve

logger = logging.getLogger(__name__)


class DisplayController:
    def __init__(self, catalogue, dispatcher: MidiDispatcher,
                 channel: int = 0, apply_channel: bool = True, start_note: int = 0):
        self.catalogue = catalogue
        self.dispatcher = dispatcher
        self.channel = channel
        self.apply_channel = apply_channel
        self.start_note = start_note

        self.loaded = LoadedSets()
        self.current_set: ArticulationSet = demo_set()
        self.current_track: Optional[str] = None
        self.articulation_set_id: Optional[int] = None
        self.active_id: Optional[str] = None

    # -- inbound protocol ------------------------------------------------------

    async def handle_message(self, message: dict[str, Any]):
        msg_type = message["type"]
        if msg_type == MessageType.TRACK_CHANGE:
            track_name = message.get("trackName")
            if isinstance(track_name, str) and track_name:
                await self.on_track_change(track_name)
        elif msg_type == MessageType.ARTICULATION_SET_CHANGE:
            set_id = message.get("articulationSetId")
            if isinstance(set_id, int):
                self.on_articulation_set_change(set_id)
        elif msg_type in (MessageType.CONNECTED, MessageType.PONG):
            logger.info("bridge output: %s", message.get("port") or "(none)")

    def on_articulation_set_change(self, articulation_set_id: int):
        # The id comes from PlugSearch and has no mapping to a set file yet.
        self.articulation_set_id = articulation_set_id
        logger.info("articulation set id: %d", articulation_set_id)

    async def on_track_change(self, track_name: str) -> Optional[ArticulationSet]:
        """Make the best set for ``track_name`` current and return it."""
        self.current_track = track_name

        cached = self.loaded.find(track_name)
        if cached is not None:
            logger.info("using loaded set '%s' for track '%s'", cached.name, track_name)
            return self._show(cached)

        entries = await self.catalogue.search(track_name)
        if self._is_stale(track_name):
            return None

        best = resolve(track_name, entries)
        if best is None:
            logger.info("no articulation set found for track '%s'", track_name)
            return None
        logger.info("found set '%s' for track '%s'", best.name, track_name)

        try:
            document = await self.catalogue.load(best.relative_path)
        except (OSError, ValueError, KeyError, httpx.HTTPError) as exc:
            logger.warning("loading '%s' failed: %s", best.relative_path, exc)
            return None
        if self._is_stale(track_name):
            return None

        art_set = self._prepare(document, best.name)
        if art_set is None:
            return None
        self.loaded.add(art_set)
        return self._show(art_set)

    def _is_stale(self, track_name: str) -> bool:
        if self.current_track != track_name:
            logger.debug("discarding lookup for '%s'; track is now '%s'",
                         track_name, self.current_track)
            return True
        return False

    # -- sets ------------------------------------------------------------------

    def _prepare(self, document: bytes, file_name: str) -> Optional[ArticulationSet]:
        try:
            art_set = parse(document, file_name)
        except ParseError as exc:
            logger.error("could not parse '%s': %s", file_name, exc)
            return None

        if has_unassigned_remotes(art_set):
            try:
                art_set = auto_assign(art_set, self.start_note)
            except ExhaustionError as exc:
                logger.error("%s; showing '%s' without full assignment", exc, art_set.name)
        logger.info("loaded '%s': %d articulations (%d auto-assigned remotes)",
                    art_set.name, len(art_set), count_auto_assigned(art_set))
        return art_set

    def load_document(self, document: bytes, file_name: str) -> Optional[ArticulationSet]:
        """Load a set from raw file contents and make it current."""
        art_set = self._prepare(document, file_name)
        if art_set is None:
            return None
        self.loaded.add(art_set)
        return self._show(art_set)

    def select(self, name: str) -> Optional[ArticulationSet]:
        art_set = self.loaded.get(name)
        if art_set is not None:
            self._show(art_set)
        return art_set

    def _show(self, art_set: ArticulationSet) -> ArticulationSet:
        self.current_set = art_set
        self.active_id = None
        for line in describe_set(art_set):
            logger.info("%s", line)
        return art_set

    # -- activation ------------------------------------------------------------

    def activate(self, articulation_id: str) -> list[MidiTrigger]:
        """Send the output messages of one articulation of the current set."""
        art = self.current_set.find(articulation_id)
        if art is None:
            raise KeyError(articulation_id)
        try:
            sent = self.dispatcher.dispatch_all(art.output_messages, self.channel,
                                                self.apply_channel)
        except NoOutputAvailable as exc:
            logger.warning("'%s' not sent: %s", art.name, exc)
            return []
        self.active_id = art.id
        return sent

    def activate_index(self, index: int) -> list[MidiTrigger]:
        """Activate by 1-based position in the current set."""
        articulations = self.current_set.articulations
        if not 1 <= index <= len(articulations):
            raise IndexError(f"articulation must be 1-{len(articulations)}")
        return self.activate(articulations[index - 1].id)


def _remote_label(art: Articulation) -> str:
    if art.remote_trigger is None:
        return "-"
    label = midi_note_name(art.remote_trigger.data1)
    return f"{label}*" if art.remote_trigger.is_auto_assigned else label


def describe_set(art_set: ArticulationSet) -> list[str]:
    """Text rendering of a set, one line per articulation, grouped."""
    lines = [f"== {art_set.name} ({len(art_set)} articulations)"]
    position = {art.id: i + 1 for i, art in enumerate(art_set.articulations)}
    for group, arts in art_set.groups().items():
        lines.append(f"-- group {group}")
        for art in arts:
            lines.append(f"  [{position[art.id]:>3}] {art.short_name:<5} {art.name:<28} "
                         f"remote={_remote_label(art):<5} {art.color_hex}")
    return lines


async def run_display(url: Optional[str] = None, catalogue=None, channel: int = 0,
                      apply_channel: bool = True, retry_delay: float = 3.0):
    """Follow track changes from the bridge; stdin lines activate articulations.

    Input: ``<n>`` activates the n-th articulation, ``load <file>`` loads a
    set from disk, ``sets`` lists loaded sets, ``use <name>`` selects one.
    """
    import asyncio
    import sys
    from pathlib import Path

    from ksbridge import protocol
    from ksbridge.catalogue import RemoteCatalogue
    from ksbridge.client import BridgeClient, BridgeOutput
    from ksbridge.paths import api_url_for

    # Track changes are looked up concurrently; stale results are dropped.
    client = BridgeClient(url, retry_delay=retry_delay, concurrent=True)
    if catalogue is None:
        catalogue = RemoteCatalogue(api_url_for(client.url))
    output = BridgeOutput(client)
    controller = DisplayController(catalogue, MidiDispatcher(output), channel, apply_channel)

    async def on_message(message: dict[str, Any]):
        if message["type"] in (MessageType.CONNECTED, MessageType.PONG):
            output.port_name = message.get("port")
        await controller.handle_message(message)

    async def on_open(bridge: BridgeClient):
        bridge.send(protocol.ping())

    client.on_message = on_message
    client.on_open = on_open
    client.start()

    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
    try:
        while True:
            line = await reader.readline()
            if not line:
                break
            command = line.decode("utf-8", errors="replace").strip()
            if not command:
                continue
            if command.isdigit():
                try:
                    controller.activate_index(int(command))
                except IndexError as exc:
                    logger.warning("%s", exc)
            elif command.startswith("load "):
                path = Path(command[5:].strip()).expanduser()
                try:
                    controller.load_document(path.read_bytes(), path.name)
                except OSError as exc:
                    logger.warning("cannot read %s: %s", path, exc)
            elif command == "sets":
                logger.info("loaded sets: %s", ", ".join(controller.loaded.names()) or "(none)")
            elif command.startswith("use "):
                if controller.select(command[4:].strip()) is None:
                    logger.warning("no loaded set named '%s'", command[4:].strip())
            else:
                logger.warning("unknown command '%s'", command)
    finally:
        await client.stop()
        if isinstance(catalogue, RemoteCatalogue):
            await catalogue.aclose()
