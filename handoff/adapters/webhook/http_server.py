"""HTTP transport for the staff and ingestion API.

Serves WebhookReceiver over the standard library's ThreadingHTTPServer.
Request threads hand each call to the asyncio loop that owns the core
services and block until it completes, so the core only ever runs on
one loop.

POST endpoints can be protected with a shared API key, sent either as
``Authorization: Bearer <key>`` or ``X-API-Key: <key>``. ``GET /health``
is always public.

The key is shared by every caller and does not identify one. Staff
requests name their actor and role in the JSON body and that role is
what PolicyGate checks, so only expose the API to trusted clients or
behind a gateway that verifies the actor.
"""

import asyncio
import hmac
import json
import logging
from collections.abc import Mapping
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Coroutine

from handoff.adapters.webhook.receiver import WebhookReceiver

logger = logging.getLogger(__name__)

MAX_BODY_SIZE = 1024 * 1024
REQUEST_TIMEOUT_SECONDS = 30


class BadRequest(Exception):
    """The HTTP request itself is unusable (before any routing)."""

    def __init__(self, status: int, code: str, message: str):
        super().__init__(message)
        self.status = status
        self.code = code


def error_body(code: str, message: str) -> dict[str, Any]:
    return {"status": "error", "code": code, "message": message}


def is_authorized(headers: Mapping[str, str], api_key: str | None, require_auth: bool) -> bool:
    """Check the API key on one request.

    With require_auth set and no key configured, every request is refused.
    """
    if not require_auth:
        return True
    if not api_key:
        return False

    bearer = headers.get("Authorization", "")
    if bearer.startswith("Bearer "):
        return hmac.compare_digest(bearer.removeprefix("Bearer "), api_key)

    header_key = headers.get("X-API-Key", "")
    return bool(header_key) and hmac.compare_digest(header_key, api_key)


def parse_json_object(raw: bytes) -> dict[str, Any]:
    """Decode a request body that must be a JSON object (empty means {}).

    Raises:
        BadRequest: If the body is not JSON or not an object.
    """
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise BadRequest(400, "bad_request", "Invalid JSON body") from e
    if not isinstance(data, dict):
        raise BadRequest(400, "bad_request", "JSON body must be an object")
    return data


def make_request_handler(
    receiver: WebhookReceiver,
    loop: asyncio.AbstractEventLoop,
    api_key: str | None,
    require_auth: bool,
) -> type[BaseHTTPRequestHandler]:
    """Build a handler class bound to one receiver and event loop."""

    class HandoffRequestHandler(BaseHTTPRequestHandler):
        def do_POST(self) -> None:
            if not is_authorized(self.headers, api_key, require_auth):
                self._send_json(401, error_body("unauthorized", "Invalid or missing API key"))
                return

            try:
                data = parse_json_object(self._read_body())
            except BadRequest as e:
                self._send_json(e.status, error_body(e.code, str(e)))
                return

            result = self._call(receiver.dispatch(self.path, data))
            if result is not None:
                self._send_json(*result)

        def do_GET(self) -> None:
            if self.path != "/health":
                self._send_json(404, error_body("not_found", "Not found"))
                return
            health = self._call(receiver.health())
            if health is not None:
                self._send_json(200, health)

        def _read_body(self) -> bytes:
            try:
                length = int(self.headers.get("Content-Length", 0))
            except ValueError as e:
                raise BadRequest(400, "bad_request", "Invalid Content-Length") from e
            if length > MAX_BODY_SIZE:
                raise BadRequest(413, "too_large", "Request body too large")
            return self.rfile.read(length) if length > 0 else b""

        def _call(self, coro: Coroutine[Any, Any, Any]) -> Any:
            """Run a coroutine on the service loop; on failure send a 500 and return None."""
            future = asyncio.run_coroutine_threadsafe(coro, loop)
            try:
                return future.result(timeout=REQUEST_TIMEOUT_SECONDS)
            except Exception as e:
                logger.error(
                    f"Unhandled error serving {self.command} {self.path}: {e}",
                    extra={"path": self.path},
                    exc_info=True,
                )
                self._send_json(500, error_body("internal_error", "Internal server error"))
                return None

        def _send_json(self, status: int, payload: dict[str, Any]) -> None:
            encoded = json.dumps(payload).encode("utf-8")
            self.send_response(status)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(encoded)))
            self.end_headers()
            self.wfile.write(encoded)

        def log_message(self, format: str, *args: Any) -> None:
            # Route http.server's access log through logging instead of stderr
            logger.debug(f"{self.client_address[0]} {format % args}")

    return HandoffRequestHandler


class WebhookHTTPServer:
    """Runs the receiver behind a threaded HTTP server."""

    def __init__(
        self,
        receiver: WebhookReceiver,
        host: str = "0.0.0.0",
        port: int = 8080,
        api_key: str | None = None,
        require_auth: bool = False,
    ):
        """
        Args:
            receiver: Routes requests onto the core ports.
            host: Interface to bind.
            port: Port to bind; 0 asks the OS for a free one.
            api_key: Shared key checked on POST requests.
            require_auth: Refuse POST requests without a valid key.
        """
        if require_auth and not api_key:
            logger.warning("API key auth is required but no key is set; all POSTs will get 401")
        self.receiver = receiver
        self.host = host
        self.port = port
        self.api_key = api_key
        self.require_auth = require_auth
        self.server: ThreadingHTTPServer | None = None
        self._serve_task: asyncio.Task[None] | None = None

    @property
    def bound_port(self) -> int:
        """The port actually listened on (useful when port=0)."""
        if self.server is None:
            return self.port
        return self.server.server_address[1]

    async def start(self) -> None:
        """Bind the socket and start serving on a worker thread."""
        handler = make_request_handler(
            self.receiver,
            asyncio.get_running_loop(),
            self.api_key,
            self.require_auth,
        )
        self.server = ThreadingHTTPServer((self.host, self.port), handler)
        self._serve_task = asyncio.create_task(asyncio.to_thread(self.server.serve_forever))
        logger.info(
            f"HTTP API listening on {self.host}:{self.bound_port}",
            extra={"require_auth": self.require_auth},
        )

    async def stop(self) -> None:
        """Stop serving and release the socket."""
        if self.server is not None:
            await asyncio.to_thread(self.server.shutdown)
            self.server.server_close()
            self.server = None
        if self._serve_task is not None:
            await self._serve_task
            self._serve_task = None
        logger.info("HTTP API stopped")
