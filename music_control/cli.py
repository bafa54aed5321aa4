"""
Music Control Server CLI - Command-line interface for the relay server.

Entry point:
    music-control-server   - run the pairing/relay WebSocket server
"""

import argparse
import asyncio
import logging
import signal
import string
import sys

from pydantic import ValidationError

from music_control.config import Settings
from music_control.logging_config import configure_logging

logger = logging.getLogger(__name__)

_HOSTNAME_CHARS = frozenset(string.ascii_letters + string.digits + ".-:[]")


def validate_port(value: str) -> int:
    """Validate port number is in valid range."""
    try:
        port = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid port number: {value}")

    if not 1 <= port <= 65535:
        raise argparse.ArgumentTypeError(f"Port must be between 1 and 65535, got: {port}")
    return port


def validate_hostname(value: str) -> str:
    """Accept a hostname, IPv4 or (optionally bracketed) IPv6 address."""
    if not value or len(value) > 253:
        raise argparse.ArgumentTypeError(f"Invalid hostname: {value}")
    bad = set(value) - _HOSTNAME_CHARS
    if bad:
        raise argparse.ArgumentTypeError(f"Invalid characters in hostname {value!r}: {''.join(sorted(bad))}")
    return value


def validate_positive_float(value: str) -> float:
    """Validate a positive number of seconds."""
    try:
        num = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid number: {value}")
    if num <= 0:
        raise argparse.ArgumentTypeError(f"Value must be positive, got: {num}")
    return num


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="music-control-server",
        description="Music Control Server - pair a media player with remote controllers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  music-control-server                        # Listen on 0.0.0.0:8080/ws
  music-control-server --port 9000            # Custom port
  music-control-server --metrics-port 9001    # Expose /health and /metrics

Every option can also be set with a MUSIC_CONTROL_* environment variable.
        """,
    )
    parser.add_argument("--host", type=validate_hostname, help="Bind address (default: 0.0.0.0)")
    parser.add_argument("--port", "-p", type=validate_port, help="WebSocket port (default: 8080)")
    parser.add_argument("--path", dest="ws_path", help="WebSocket path (default: /ws)")
    parser.add_argument(
        "--admission-timeout",
        type=validate_positive_float,
        help="Seconds to wait for the handshake message (default: 30)",
    )
    parser.add_argument(
        "--rate-limit",
        type=int,
        help="Connection attempts allowed per client per minute, 0 to disable (default: 100)",
    )
    parser.add_argument(
        "--metrics-port",
        type=validate_port,
        help="Port for the /health and /metrics endpoint (default: disabled)",
    )
    parser.add_argument(
        "--trust-forwarded-headers",
        action="store_true",
        default=None,
        help="Use X-Forwarded-For for client addresses (behind a reverse proxy)",
    )
    parser.add_argument("--log-level", help="Logging level (default: INFO)")
    return parser


def settings_from_args(args: argparse.Namespace) -> Settings:
    """Environment settings with any explicitly given CLI flags applied on top."""
    overrides = {
        "host": args.host,
        "port": args.port,
        "ws_path": args.ws_path,
        "admission_timeout_seconds": args.admission_timeout,
        "connect_rate_limit_per_minute": args.rate_limit,
        "metrics_port": args.metrics_port,
        "trust_forwarded_headers": args.trust_forwarded_headers,
        "log_level": args.log_level,
    }
    return Settings(**{k: v for k, v in overrides.items() if v is not None})


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = settings_from_args(args)
    except ValidationError as e:
        print(f"Error: invalid configuration\n{e}", file=sys.stderr)
        return 2

    configure_logging(settings.log_level)

    from music_control.server import MusicControlServer

    server = MusicControlServer(settings)

    def signal_handler(sig, frame):
        server.stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        asyncio.run(server.run())
    except KeyboardInterrupt:
        pass
    except OSError as e:
        logger.error(f"Could not start server: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
