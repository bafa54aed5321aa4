"""
Optional monitoring endpoint for the relay.

A tiny HTTP/1.1 responder on its own port, separate from the WebSocket
listener:
- GET /health  - JSON status and counters
- GET /metrics - Prometheus text exposition format
"""

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Callable, Dict, List, Tuple

if TYPE_CHECKING:
    from music_control.server import MusicControlServer

logger = logging.getLogger(__name__)

PROMETHEUS_CONTENT_TYPE = "text/plain; version=0.0.4"

# (metric name, type, help text, key in get_health_stats())
_METRICS: List[Tuple[str, str, str, str]] = [
    ("uptime_seconds", "gauge", "Server uptime in seconds", "uptime_seconds"),
    ("sessions", "gauge", "Tracked pairing sessions", "sessions"),
    ("connected_primaries", "gauge", "Sessions with a connected player app", "primaries"),
    ("connected_observers", "gauge", "Connected remote controllers", "observers"),
    ("connections_total", "counter", "Connections accepted since start", "connections_total"),
    ("connections_active", "gauge", "Sockets currently being served", "connections_active"),
    (
        "connections_rejected_total",
        "counter",
        "Connections refused by the rate limiter",
        "connections_rate_limited",
    ),
    ("messages_routed_total", "counter", "Messages dispatched by the router", "messages_routed"),
    (
        "messages_rejected_total",
        "counter",
        "Malformed or role-disallowed messages",
        "messages_rejected",
    ),
    ("sessions_expired_total", "counter", "Sessions removed by the expiry sweep", "sessions_expired"),
]


def render_health(server: "MusicControlServer") -> str:
    return json.dumps({"status": "ok", **server.get_health_stats()}, indent=2)


def render_metrics(server: "MusicControlServer") -> str:
    stats = server.get_health_stats()
    lines = []
    for name, kind, help_text, key in _METRICS:
        full_name = f"music_control_{name}"
        lines.append(f"# HELP {full_name} {help_text}")
        lines.append(f"# TYPE {full_name} {kind}")
        lines.append(f"{full_name} {stats[key]}")
    return "\n".join(lines) + "\n"


_ROUTES: Dict[str, Tuple[str, Callable[["MusicControlServer"], str]]] = {
    "/health": ("application/json", render_health),
    "/metrics": (PROMETHEUS_CONTENT_TYPE, render_metrics),
}


def _response(status: str, content_type: str, body: str) -> bytes:
    payload = body.encode("utf-8")
    head = (
        f"HTTP/1.1 {status}\r\n"
        f"Content-Type: {content_type}\r\n"
        f"Content-Length: {len(payload)}\r\n"
        "Connection: close\r\n\r\n"
    )
    return head.encode("ascii") + payload


async def handle_http_request(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    server: "MusicControlServer",
) -> None:
    """Answer one request, then close the stream."""
    try:
        request_line = (await reader.readline()).decode("latin-1").split()
        if len(request_line) < 2:
            return
        method, path = request_line[0], request_line[1].split("?", 1)[0]

        # Skip headers
        while (await reader.readline()) not in (b"", b"\r\n", b"\n"):
            pass

        route = _ROUTES.get(path) if method == "GET" else None
        if route is None:
            writer.write(_response("404 Not Found", "text/plain", "Not Found"))
        else:
            content_type, render = route
            writer.write(_response("200 OK", content_type, render(server)))
    except Exception as e:
        logger.error(f"Error handling metrics request: {e}")
    finally:
        try:
            await writer.drain()
            writer.close()
            await writer.wait_closed()
        except (ConnectionError, OSError):
            pass


async def start_metrics_server(
    server: "MusicControlServer",
    port: int,
    host: str = "0.0.0.0",
) -> asyncio.Server:
    """Start serving /health and /metrics for ``server``.

    Pass port 0 to bind an ephemeral port (read it back from
    ``metrics_server.sockets``).
    """

    async def client_handler(reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        await handle_http_request(reader, writer, server)

    metrics_server = await asyncio.start_server(client_handler, host, port)
    logger.info(f"Metrics server: http://{host}:{port}/health, /metrics")
    return metrics_server
