## Main Execution Script
from duet.controllers import main_call_task, run_relay
from duet.tools.config import (
    DEFAULT_FORMING_TIMEOUT,
    DEFAULT_HANDSHAKE_TIMEOUT,
    DEFAULT_RELAY_HOST,
    DEFAULT_RELAY_PATH,
    DEFAULT_RELAY_PORT,
    DEFAULT_RELAY_URL,
    ClientConfig,
    RelayConfig,
)
from duet.tools.errors import ConfigurationError
from duet.tools.logger import *
import argparse
import asyncio
import sys


def build_parser():
    parser = argparse.ArgumentParser(description="Two-party audio call signaling")
    parser.add_argument(
        "-l",
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
        help="Set the logging level (use -l or --log-level)",
    )
    parser.add_argument(
        "--log-dir",
        default=None,
        help="Also write logs under this directory",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    relay = commands.add_parser("relay", help="Run the signaling relay")
    relay.add_argument("--host", default=DEFAULT_RELAY_HOST)
    relay.add_argument("--port", type=int, default=DEFAULT_RELAY_PORT)
    relay.add_argument("--path", default=DEFAULT_RELAY_PATH, help="Websocket endpoint path")
    relay.add_argument(
        "--forming-timeout",
        type=float,
        default=DEFAULT_FORMING_TIMEOUT,
        help="Seconds a client may wait for a peer (0 disables)",
    )
    relay.add_argument("--certfile", default=None, help="TLS certificate (serves wss://)")
    relay.add_argument("--keyfile", default=None, help="TLS private key")

    call = commands.add_parser("call", help="Run a negotiation client")
    call.add_argument("--relay-url", default=DEFAULT_RELAY_URL)
    call.add_argument(
        "--ice-server",
        action="append",
        dest="ice_servers",
        default=None,
        help="STUN/TURN server URL (repeatable, replaces the defaults)",
    )
    call.add_argument(
        "--auto-call",
        action="store_true",
        help="Start media immediately and place the call as soon as a peer joins",
    )
    call.add_argument("--audio-source", default=None, help="Capture device or audio file")
    call.add_argument("--audio-format", default=None, help="ffmpeg input format (pulse, alsa, ...)")
    call.add_argument("--record-to", default=None, help="Write remote audio to this file")
    call.add_argument(
        "--handshake-timeout",
        type=float,
        default=DEFAULT_HANDSHAKE_TIMEOUT,
        help="Seconds allowed from joining to connected (0 disables)",
    )
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    set_log_level(args.log_level)
    if args.log_dir:
        enable_file_logging(args.log_dir)

    try:
        if args.command == "relay":
            config = RelayConfig(
                host=args.host,
                port=args.port,
                path=args.path,
                forming_timeout=args.forming_timeout,
                certfile=args.certfile,
                keyfile=args.keyfile,
            )
        else:
            config = ClientConfig(
                relay_url=args.relay_url,
                ice_servers=args.ice_servers,
                auto_call=args.auto_call,
                handshake_timeout=args.handshake_timeout,
                audio_source=args.audio_source,
                audio_format=args.audio_format,
                record_to=args.record_to,
            )
    except ConfigurationError as e:
        log_error(f"Invalid configuration: {e}")
        return 2

    try:
        if args.command == "relay":
            run_relay(config)
        else:
            asyncio.run(main_call_task(config))
    except KeyboardInterrupt:
        log_warning("Keyboard interrupt received. Closing connection and exiting.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
