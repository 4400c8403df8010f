"""Track monitor: the detector side of the bridge.

Watching the DAW itself is left to an accessibility helper; this module takes
what it observes (plain track names or the accessibility description
``Track 3 "Violins 1"``), drops repeats and reports each new track to the
bridge as a ``trackChange``.
"""

from __future__ import annotations

import asyncio
import logging
import re
import sys
from typing import Optional

from ksbridge import protocol
from ksbridge.client import BridgeClient
from ksbridge.errors import ConnectionLost

logger = logging.getLogger(__name__)

TRACK_DESCRIPTION = re.compile(r'Track\s+\d+\s+[“"](.+?)[”"]')

MIN_NAME_LENGTH = 2


def parse_track_description(text: str) -> Optional[str]:
    """Extract the track name from ``Track N "Name"``; ``None`` if absent."""
    match = TRACK_DESCRIPTION.search(text)
    if match is None:
        return None
    name = match.group(1).strip()
    if len(name) < MIN_NAME_LENGTH:
        return None
    return name


class TrackMonitor:
    def __init__(self, client: BridgeClient):
        self.client = client
        self.last_track: Optional[str] = None

    async def on_open(self, client: BridgeClient):
        """Identify on every (re)connect and resend the current track."""
        client.send(protocol.identify())
        if self.last_track is not None:
            client.send(protocol.track_change(self.last_track))

    def report(self, observed: str) -> bool:
        """Report an observed track; returns True when a change was sent."""
        name = parse_track_description(observed) or observed.strip()
        if len(name) < MIN_NAME_LENGTH or name == self.last_track:
            return False
        self.last_track = name
        try:
            self.client.send(protocol.track_change(name))
        except ConnectionLost as exc:
            # sent again by on_open once the bridge is back
            logger.warning("track '%s' not sent: %s", name, exc)
            return False
        logger.info("sent track: '%s'", name)
        return True

    async def run_stdin(self):
        """Report one observation per stdin line until EOF."""
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
        while True:
            line = await reader.readline()
            if not line:
                break
            self.report(line.decode("utf-8", errors="replace"))


async def run_monitor(url: Optional[str] = None, retry_delay: float = 3.0):
    """Connect as a track monitor and forward stdin observations."""
    client = BridgeClient(url, retry_delay=retry_delay)
    monitor = TrackMonitor(client)
    client.on_open = monitor.on_open
    client.start()
    try:
        await monitor.run_stdin()
    finally:
        await client.stop()
