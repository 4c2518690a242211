"""HTTP endpoint for Prometheus scrapes and the relay status document.

GET /metrics   Prometheus text exposition
GET /health    JSON from the status provider; 503 unless its status is "ok"
"""

import json
import threading
from collections.abc import Callable
from typing import Any
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

import structlog
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

log = structlog.get_logger()

StatusProvider = Callable[[], dict[str, Any]]
StartResponse = Callable[[str, list[tuple[str, str]]], Any]
WSGIApp = Callable[[dict[str, Any], StartResponse], list[bytes]]

_server_lock = threading.Lock()
_server: WSGIServer | None = None


class _QuietHandler(WSGIRequestHandler):
    """Request handler without per-request access logs."""

    def log_message(self, format: str, *args: object) -> None:
        pass


def _health_body(status: StatusProvider | None) -> tuple[str, bytes]:
    body = status() if status is not None else {"status": "ok"}
    code = "200 OK" if body.get("status") == "ok" else "503 Service Unavailable"
    return code, json.dumps(body, default=str).encode()


def make_app(status: StatusProvider | None = None) -> WSGIApp:
    """Build the WSGI app; status supplies the /health document."""

    def app(environ: dict[str, Any], start_response: StartResponse) -> list[bytes]:
        path = environ.get("PATH_INFO", "/")
        if path == "/metrics":
            code, content_type, output = "200 OK", CONTENT_TYPE_LATEST, generate_latest(REGISTRY)
        elif path == "/health":
            code, output = _health_body(status)
            content_type = "application/json"
        else:
            code, content_type, output = "404 Not Found", "text/plain", b"Not Found"

        start_response(code, [("Content-Type", content_type)])
        return [output]

    return app


def start_metrics_server(
    port: int = 8000, host: str = "0.0.0.0", status: StatusProvider | None = None
) -> WSGIServer:
    """Serve metrics on a daemon thread. A second call returns the running server."""
    global _server
    with _server_lock:
        if _server is not None:
            log.debug("Metrics server already running", port=_server.server_port)
            return _server

        server = make_server(host, port, make_app(status), handler_class=_QuietHandler)

        def serve() -> None:
            try:
                server.serve_forever()
            except Exception:
                log.exception("Metrics server failed unexpectedly")

        threading.Thread(target=serve, name="metrics-server", daemon=True).start()
        log.info("Metrics server listening", host=host, port=server.server_port)
        _server = server
        return server


def stop_metrics_server() -> None:
    """Shut down the server started by start_metrics_server, if any."""
    global _server
    with _server_lock:
        server, _server = _server, None
    if server is not None:
        server.shutdown()
        server.server_close()
