"""
Guardfin sync server.

A small JSON API over the stdlib http.server. It stores whatever
ciphertext bundle a client posts, keyed by account id, and hands it
back on request. It holds no keys and never looks inside records.

Serves (with or without the ``/api`` prefix):
    GET    /health              -> liveness
    GET    /data/{accountId}    -> stored bundle or empty defaults
    POST   /sync                -> atomically replace the bundle
    DELETE /data/{accountId}    -> wipe (needs {"confirmDelete": "DELETE_ALL_DATA"})

Usage:
    guardfin serve                  # 127.0.0.1:3001
    guardfin serve --port 9000
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any, Optional
from urllib.parse import unquote, urlsplit

from . import __version__
from .config import ServerConfig
from .errors import PayloadTooLargeError, RateLimitedError, ValidationError
from .remote import RateLimiter, RemoteStore

logger = logging.getLogger("guardfin.server")

AVAILABLE_ENDPOINTS = [
    "GET /api/health",
    "GET /api/data/:accountId",
    "POST /api/sync",
    "DELETE /api/data/:accountId",
]

_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


class _BadRequest(Exception):
    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status
        self.message = message


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def make_handler(remote: RemoteStore, config: ServerConfig) -> type[BaseHTTPRequestHandler]:
    """Build a request handler class bound to a store and config."""

    class SyncHandler(BaseHTTPRequestHandler):
        """HTTP handler for the sync API."""

        server_version = f"guardfin/{__version__}"

        def do_GET(self):
            """Handle GET requests."""
            route = self._route()
            if route == ["health"]:
                self._json_response({
                    "status": "healthy",
                    "timestamp": _now(),
                    "version": __version__,
                })
            elif len(route) == 2 and route[0] == "data":
                self._guarded(self._get_data, route[1])
            else:
                self._not_found()

        def do_POST(self):
            """Handle POST requests."""
            if self._route() == ["sync"]:
                self._guarded(self._post_sync)
            else:
                self._not_found()

        def do_DELETE(self):
            """Handle DELETE requests."""
            route = self._route()
            if len(route) == 2 and route[0] == "data":
                self._guarded(self._delete_data, route[1])
            else:
                self._not_found()

        def do_OPTIONS(self):
            """CORS preflight."""
            self.send_response(204)
            self._common_headers()
            self.send_header("Access-Control-Allow-Methods", "GET, POST, DELETE")
            self.send_header("Access-Control-Allow-Headers", "Content-Type, Authorization")
            self.send_header("Content-Length", "0")
            self.end_headers()

        # ---------------------------------------------------------------
        # Endpoints
        # ---------------------------------------------------------------

        def _get_data(self, account_id: str) -> None:
            remote.admit(account_id, self._client_ip())
            bundle = remote.get(account_id)
            self._json_response(bundle.to_wire())

        def _post_sync(self) -> None:
            payload = self._read_json()
            account_id = payload.get("accountId") if isinstance(payload, dict) else None
            remote.admit(account_id, self._client_ip())
            receipt = remote.put(account_id, payload)
            self._json_response({
                "message": "Data synced successfully",
                **receipt.to_wire(),
            })

        def _delete_data(self, account_id: str) -> None:
            body = self._read_json(allow_empty=True)
            remote.admit(account_id, self._client_ip())
            confirmation = body.get("confirmDelete") if isinstance(body, dict) else None
            remote.delete(account_id, confirmation)
            self._json_response({
                "message": "Account data deleted successfully",
                "timestamp": _now(),
            })

        # ---------------------------------------------------------------
        # Plumbing
        # ---------------------------------------------------------------

        def _guarded(self, handler, *args: Any) -> None:
            try:
                handler(*args)
            except _BadRequest as exc:
                self._json_response({"error": exc.message}, status=exc.status)
            except RateLimitedError as exc:
                extra = {}
                if exc.retry_after is not None:
                    extra["Retry-After"] = str(int(exc.retry_after) + 1)
                self._json_response({"error": str(exc)}, status=429, headers=extra)
            except PayloadTooLargeError:
                self._json_response({"error": "Payload too large"}, status=413)
            except ValidationError as exc:
                self._json_response({"error": str(exc)}, status=400)
            except Exception:
                logger.exception("Request failed: %s %s", self.command, self.path)
                self._json_response(
                    {"error": "Internal server error", "timestamp": _now()},
                    status=500,
                )

        def _route(self) -> list[str]:
            path = urlsplit(self.path).path
            parts = [unquote(p) for p in path.split("/") if p]
            if parts and parts[0] == "api":
                parts = parts[1:]
            return parts

        def _read_json(self, allow_empty: bool = False) -> Any:
            try:
                length = int(self.headers.get("Content-Length") or 0)
            except ValueError:
                raise _BadRequest(400, "Invalid Content-Length")
            if length > config.max_sync_size:
                self.close_connection = True
                raise _BadRequest(413, "Payload too large")
            if length == 0:
                if allow_empty:
                    return {}
                raise _BadRequest(400, "Request body required")
            raw = self.rfile.read(length)
            try:
                return json.loads(raw.decode("utf-8"))
            except (UnicodeDecodeError, json.JSONDecodeError):
                raise _BadRequest(400, "Invalid JSON in request body")

        def _client_ip(self) -> str:
            return self.client_address[0] if self.client_address else "unknown"

        def _common_headers(self) -> None:
            for name, value in _SECURITY_HEADERS.items():
                self.send_header(name, value)
            origin = self.headers.get("Origin")
            if origin and origin in config.allowed_origins:
                self.send_header("Access-Control-Allow-Origin", origin)
                self.send_header("Access-Control-Allow-Credentials", "true")
                self.send_header("Vary", "Origin")

        def _json_response(
            self,
            data: dict,
            status: int = 200,
            headers: Optional[dict[str, str]] = None,
        ) -> None:
            body = json.dumps(data, indent=2, default=str).encode("utf-8")
            self.send_response(status)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self._common_headers()
            for name, value in (headers or {}).items():
                self.send_header(name, value)
            self.end_headers()
            self.wfile.write(body)

        def _not_found(self) -> None:
            self._json_response(
                {"error": "Endpoint not found", "availableEndpoints": AVAILABLE_ENDPOINTS},
                status=404,
            )

        def log_message(self, format, *args):
            """Route access logs through logging instead of stderr."""
            logger.info("%s - %s", self._client_ip(), format % args)

    return SyncHandler


def build_remote_store(config: ServerConfig) -> RemoteStore:
    """RemoteStore wired with the configured size and rate limits."""
    return RemoteStore(
        Path(config.data_dir).expanduser(),
        max_bundle_bytes=config.max_sync_size,
        rate_limiter=RateLimiter(
            max_requests=config.rate_limit_requests,
            window_seconds=config.rate_limit_window,
        ),
    )


def start_server(
    config: ServerConfig,
    remote: Optional[RemoteStore] = None,
) -> ThreadingHTTPServer:
    """Create the sync server (not yet serving).

    Args:
        config: Server configuration.
        remote: Store to serve; built from ``config`` when omitted.

    Returns:
        ThreadingHTTPServer: call ``serve_forever()`` or run it in a thread.
    """
    remote = remote or build_remote_store(config)
    server = ThreadingHTTPServer((config.host, config.port), make_handler(remote, config))
    server.daemon_threads = True
    host, port = server.server_address[:2]
    logger.info("Sync server listening on http://%s:%d (data: %s)", host, port, remote.data_dir)
    return server


def setup_logging(log_file: Optional[Path] = None, level: int = logging.INFO) -> None:
    """Configure console and optional file logging for the server."""
    formatter = logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s")
    root = logging.getLogger()
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_file)
        handler.setFormatter(formatter)
        root.addHandler(handler)
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)
    root.setLevel(level)
