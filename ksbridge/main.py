"""Entry point and argument parsing for ksbridge.

Subcommands
-----------
serve     Run the WebSocket bridge and catalogue server.
monitor   Connect as the track monitor; track names are read from stdin.
display   Connect as a headless display client; stdin activates articulations.
inspect   Parse one articulation-set file and print it.
search    Search the local articulation-set catalogue.
ports     List MIDI input and output ports.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from ksbridge.catalogue import Catalogue
from ksbridge.logging_setup import configure_logging
from ksbridge.paths import (
    DEFAULT_CATALOGUE_DIR,
    DEFAULT_HOST,
    DEFAULT_PORT,
    configured_port,
    default_bridge_url,
)


logger = logging.getLogger(__name__)


# -- shared helpers ----------------------------------------------------------

def _channel_arg(value: str) -> int:
    """Parse a 1-based MIDI channel into its 0-based wire value."""
    try:
        channel = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid channel '{value}'") from None
    if not 1 <= channel <= 16:
        raise argparse.ArgumentTypeError("channel must be 1-16")
    return channel - 1


def _add_catalogue_arg(parser: argparse.ArgumentParser):
    parser.add_argument("--catalogue", default=None,
                        help=f"Articulation-set directory (default: {DEFAULT_CATALOGUE_DIR})")


def _resolve_port(args) -> int:
    from ksbridge.server import find_available_port

    if args.port is not None:
        return args.port
    pinned = configured_port()
    if pinned is not None:
        return pinned
    return find_available_port(DEFAULT_PORT, host=args.host)


# -- subcommand handlers -----------------------------------------------------

def _cmd_serve(args):
    """Run the bridge server."""
    from ksbridge.server import BridgeServer, run_server

    level = configure_logging(default_level="INFO")
    logger.info("ksbridge server starting (log level: %s)", logging.getLevelName(level))

    try:
        ws_port = _resolve_port(args)
    except (ValueError, RuntimeError) as e:
        logger.error("%s", e)
        sys.exit(1)

    catalogue = Catalogue(args.catalogue or DEFAULT_CATALOGUE_DIR)
    bridge = BridgeServer(catalogue, ws_port=ws_port, channel=args.channel,
                          listen_inputs=not args.no_inputs)
    try:
        bridge.open_output(args.output, args.virtual)
    except Exception as e:
        logger.warning("MIDI output startup failed: %s", e)

    run_server(bridge, args.host)


def _cmd_monitor(args):
    """Forward track names from stdin to the bridge."""
    from ksbridge.monitor import run_monitor

    configure_logging(default_level="INFO")
    try:
        asyncio.run(run_monitor(args.url, retry_delay=args.retry))
    except KeyboardInterrupt:
        pass


def _cmd_display(args):
    """Follow track changes and activate articulations from stdin."""
    from ksbridge.catalogue import LocalCatalogue
    from ksbridge.display import run_display

    configure_logging(default_level="INFO")
    catalogue = LocalCatalogue(Catalogue(args.catalogue)) if args.catalogue else None
    try:
        asyncio.run(run_display(args.url, catalogue, channel=args.channel,
                                apply_channel=not args.no_channel,
                                retry_delay=args.retry))
    except KeyboardInterrupt:
        pass


def _cmd_inspect(args):
    """Parse one set file and print it."""
    from ksbridge.assign import auto_assign, has_unassigned_remotes
    from ksbridge.display import describe_set
    from ksbridge.errors import ExhaustionError, ParseError
    from ksbridge.parser import parse_file

    configure_logging()
    try:
        art_set = parse_file(args.file)
    except (OSError, ParseError) as e:
        print(f"error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.assign and has_unassigned_remotes(art_set):
        try:
            art_set = auto_assign(art_set, args.start_note)
        except (ExhaustionError, ValueError) as e:
            print(f"warning: {e}", file=sys.stderr)

    for line in describe_set(art_set):
        print(line)
    counts = art_set.count_by_type()
    print(f"source: {art_set.source_file_name}  "
          + "  ".join(f"{t.name.lower()}={n}" for t, n in counts.items()))


def _cmd_search(args):
    """Search the local catalogue."""
    configure_logging()
    catalogue = Catalogue(args.catalogue or DEFAULT_CATALOGUE_DIR)
    entries = catalogue.search(args.query, limit=args.limit)
    for entry in entries:
        print(f"{entry.name}\t{entry.relative_path}")
    print(f"{len(entries)} of {catalogue.total()} sets in {catalogue.root}")


def _cmd_ports(args):
    """List MIDI ports."""
    from ksbridge.deps import HAS_RTMIDI
    from ksbridge.midi import PREFERRED_OUTPUTS, find_port, list_input_ports, list_output_ports

    configure_logging()
    if not HAS_RTMIDI:
        print("python-rtmidi not installed")
        return
    outputs = list_output_ports()
    preferred = find_port(outputs, PREFERRED_OUTPUTS)
    print("MIDI outputs:")
    for i, name in enumerate(outputs):
        print(f"  [{i}] {name}{'  (default)' if i == preferred else ''}")
    print("MIDI inputs:")
    for i, name in enumerate(list_input_ports()):
        print(f"  [{i}] {name}")

# -- main --------------------------------------------------------------------

def main():
    ap = argparse.ArgumentParser(
        description="ksbridge - articulation key-switch bridge for DAWs")
    sub = ap.add_subparsers(dest="command")

    # -- serve ---------------------------------------------------------------
    sp_serve = sub.add_parser(
        "serve",
        help="Run the WebSocket bridge and catalogue server")
    sp_serve.add_argument("--port", type=int, default=None,
                          help=f"Listen port (default: $KSBRIDGE_PORT, else first free from {DEFAULT_PORT})")
    sp_serve.add_argument("--host", default=DEFAULT_HOST, help="Listen address")
    _add_catalogue_arg(sp_serve)
    sp_serve.add_argument("--output", type=int, default=None,
                          help="MIDI output port index (default: first known loopback port)")
    sp_serve.add_argument("--virtual", default=None, metavar="NAME",
                          help="Open a virtual MIDI output with this name instead")
    sp_serve.add_argument("--channel", type=_channel_arg, default=None,
                          help="Force forwarded messages onto this channel (1-16)")
    sp_serve.add_argument("--no-inputs", action="store_true",
                          help="Do not listen on MIDI inputs for PlugSearch")
    sp_serve.set_defaults(func=_cmd_serve)

    # -- monitor -------------------------------------------------------------
    sp_monitor = sub.add_parser(
        "monitor",
        help="Report track names read from stdin to the bridge")
    sp_monitor.add_argument("--url", default=None,
                            help=f"Bridge URL (default: {default_bridge_url()})")
    sp_monitor.add_argument("--retry", type=float, default=3.0,
                            help="Seconds between reconnect attempts")
    sp_monitor.set_defaults(func=_cmd_monitor)

    # -- display -------------------------------------------------------------
    sp_display = sub.add_parser(
        "display",
        help="Headless display client; type a number to activate an articulation")
    sp_display.add_argument("--url", default=None,
                            help=f"Bridge URL (default: {default_bridge_url()})")
    sp_display.add_argument("--catalogue", default=None,
                            help="Search this local directory instead of the bridge's catalogue")
    sp_display.add_argument("--channel", type=_channel_arg, default=0,
                            help="Global MIDI channel for key switches (1-16, default 1)")
    sp_display.add_argument("--no-channel", action="store_true",
                            help="Send each message on the channel stored in the set")
    sp_display.add_argument("--retry", type=float, default=3.0,
                            help="Seconds between reconnect attempts")
    sp_display.set_defaults(func=_cmd_display)

    # -- inspect -------------------------------------------------------------
    sp_inspect = sub.add_parser(
        "inspect",
        help="Parse an articulation-set file and print its articulations")
    sp_inspect.add_argument("file", help="Articulation-set .plist file")
    sp_inspect.add_argument("--assign", action="store_true",
                            help="Auto-assign missing remote triggers")
    sp_inspect.add_argument("--start-note", type=int, default=0,
                            help="First note tried by --assign")
    sp_inspect.set_defaults(func=_cmd_inspect)

    # -- search --------------------------------------------------------------
    sp_search = sub.add_parser(
        "search",
        help="Search the local articulation-set catalogue")
    sp_search.add_argument("query", nargs="?", default="")
    _add_catalogue_arg(sp_search)
    sp_search.add_argument("--limit", type=int, default=100)
    sp_search.set_defaults(func=_cmd_search)

    # -- ports ---------------------------------------------------------------
    sp_ports = sub.add_parser("ports", help="List MIDI ports")
    sp_ports.set_defaults(func=_cmd_ports)

    args = ap.parse_args()
    if args.command is None:
        ap.error("a command is required: serve, monitor, display, inspect, search or ports")
    args.func(args)


if __name__ == "__main__":
    main()
