"""HTTP API server for the chat direction console and overlay."""

from __future__ import annotations

import json
import queue
import threading
import time
from concurrent.futures import TimeoutError as FutureTimeout
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, urlparse

from core.session import ChatSession
from runtime.version import runtime_info
from shared.chat.messages import ChatMessage
from shared.chat.sources import ChatSourceError
from shared.config.system import ApiConfig, OverlayConfig
from shared.logging.logger import get_logger
from shared.runtime.selection import SelectionNotFound

log = get_logger("services.chat_api")

CONNECT_TIMEOUT_SECONDS = 30.0

# SSE loops wake at least this often to notice server shutdown
_STREAM_WAKE_SECONDS = 1.0


def format_sse(event: Optional[str], data: Any) -> bytes:
    lines = []
    if event:
        lines.append(f"event: {event}")
    lines.append(f"data: {json.dumps(data)}")
    return ("\n".join(lines) + "\n\n").encode("utf-8")


def selection_frame(message: Optional[ChatMessage]) -> bytes:
    return format_sse("selection", {"message": message.to_dict() if message else None})


HEARTBEAT_FRAME = b"event: heartbeat\ndata: {}\n\n"
CONNECTED_FRAME = b": connected\n\n"


class ChatApiServer:
    """
    Threaded HTTP front for a ChatSession.

    Responsibilities:
    - Expose health, chat connect/disconnect, message queries and poll state
    - Manage overlay selection and stream it to overlays over SSE
    - Translate session errors into HTTP status codes

    Each request runs on its own server thread. Session transitions are
    handed to the runtime loop; reads go straight to thread-safe state.
    """

    def __init__(
        self,
        session: ChatSession,
        config: Optional[ApiConfig] = None,
        overlay: Optional[OverlayConfig] = None,
    ) -> None:
        self._session = session
        self._config = config or ApiConfig()
        self._overlay = overlay or OverlayConfig()
        self._thread: Optional[threading.Thread] = None
        self._server: Optional[ThreadingHTTPServer] = None
        self._closing = threading.Event()

    @property
    def address(self) -> Optional[tuple]:
        if not self._server:
            return None
        return self._server.server_address[:2]

    def start(self) -> None:
        if not self._config.enabled:
            log.info("Chat API server disabled via config")
            return
        if self._thread and self._thread.is_alive():
            return

        self._closing.clear()
        handler = self._build_handler()
        self._server = ThreadingHTTPServer(
            (self._config.host, int(self._config.port)),
            handler,
        )
        self._server.daemon_threads = True
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()
        host, port = self.address
        log.info(f"Chat API server running on {host}:{port}")

    def stop(self) -> None:
        if not self._server:
            return
        self._closing.set()
        self._server.shutdown()
        self._server.server_close()
        self._server = None
        self._thread = None
        log.info("Chat API server stopped")

    def _build_handler(self):
        session = self._session
        config = self._config
        heartbeat_seconds = max(float(self._overlay.heartbeat_seconds), 0.01)
        closing = self._closing

        class Handler(BaseHTTPRequestHandler):
            protocol_version = "HTTP/1.1"

            def _send_json(self, status: int, payload: Dict[str, Any]) -> None:
                body = json.dumps(payload).encode("utf-8")
                self.send_response(status)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(body)))
                self._apply_cors()
                self.end_headers()
                self.wfile.write(body)

            def _apply_cors(self) -> None:
                origins = config.allow_origins
                if not origins:
                    return
                origin = self.headers.get("Origin")
                if "*" in origins:
                    self.send_header("Access-Control-Allow-Origin", "*")
                elif origin and origin in origins:
                    self.send_header("Access-Control-Allow-Origin", origin)
                self.send_header("Access-Control-Allow-Headers", "Authorization, Content-Type")
                self.send_header("Access-Control-Allow-Methods", "GET, POST, DELETE, OPTIONS")

            def do_OPTIONS(self) -> None:  # noqa: N802 - stdlib signature
                self.send_response(HTTPStatus.NO_CONTENT)
                self.send_header("Content-Length", "0")
                self._apply_cors()
                self.end_headers()

            def do_GET(self) -> None:  # noqa: N802 - stdlib signature
                parsed = urlparse(self.path)
                path = parsed.path.rstrip("/") or "/"

                if path == "/health":
                    payload = session.status()
                    payload.update(runtime_info())
                    return self._send_json(HTTPStatus.OK, payload)

                if path == "/chat/messages":
                    result = session.query(parse_qs(parsed.query))
                    status = HTTPStatus.OK if result.ok else HTTPStatus.BAD_REQUEST
                    return self._send_json(status, result.to_dict())

                if path == "/chat/poll":
                    poll = session.poll
                    return self._send_json(
                        HTTPStatus.OK,
                        {"poll": poll.to_dict() if poll else None},
                    )

                if path == "/overlay/stream":
                    return self._stream_selection()

                self._send_json(HTTPStatus.NOT_FOUND, {"error": "Unknown endpoint"})

            def do_POST(self) -> None:  # noqa: N802 - stdlib signature
                parsed = urlparse(self.path)
                path = parsed.path.rstrip("/")
                payload = self._read_json_body()

                if path == "/chat/connect":
                    return self._handle_connect(payload)

                if path == "/chat/disconnect":
                    try:
                        session.run_threadsafe(session.disconnect(), CONNECT_TIMEOUT_SECONDS)
                    except FutureTimeout:
                        return self._send_json(
                            HTTPStatus.GATEWAY_TIMEOUT,
                            {"error": "Timed out disconnecting"},
                        )
                    return self._send_json(HTTPStatus.OK, {"ok": True})

                if path == "/overlay/selection":
                    message_id = payload.get("id")
                    if not message_id or not isinstance(message_id, str):
                        return self._send_json(
                            HTTPStatus.BAD_REQUEST,
                            {"error": "id is required"},
                        )
                    try:
                        session.select(message_id)
                    except SelectionNotFound:
                        return self._send_json(
                            HTTPStatus.NOT_FOUND,
                            {"error": "message not found"},
                        )
                    return self._send_json(HTTPStatus.OK, {"ok": True})

                self._send_json(HTTPStatus.NOT_FOUND, {"error": "Unknown endpoint"})

            def do_DELETE(self) -> None:  # noqa: N802 - stdlib signature
                parsed = urlparse(self.path)
                if parsed.path.rstrip("/") == "/overlay/selection":
                    session.clear_selection()
                    return self._send_json(HTTPStatus.OK, {"ok": True})
                self._send_json(HTTPStatus.NOT_FOUND, {"error": "Unknown endpoint"})

            def _read_json_body(self) -> Dict[str, Any]:
                length = int(self.headers.get("Content-Length", 0) or 0)
                if length <= 0:
                    return {}
                raw = self.rfile.read(length)
                try:
                    payload = json.loads(raw.decode("utf-8"))
                except (json.JSONDecodeError, UnicodeDecodeError):
                    return {}
                return payload if isinstance(payload, dict) else {}

            # ----------------------------------------------------------
            # Chat session
            # ----------------------------------------------------------

            def _handle_connect(self, payload: Dict[str, Any]) -> None:
                live_id = payload.get("liveId")
                if not live_id or not isinstance(live_id, str):
                    return self._send_json(
                        HTTPStatus.BAD_REQUEST,
                        {"error": "liveId is required"},
                    )

                try:
                    video_id = session.run_threadsafe(
                        session.connect(live_id),
                        CONNECT_TIMEOUT_SECONDS,
                    )
                except ValueError:
                    return self._send_json(
                        HTTPStatus.BAD_REQUEST,
                        {"error": "Invalid YouTube Live ID or URL"},
                    )
                except ChatSourceError:
                    return self._send_json(
                        HTTPStatus.INTERNAL_SERVER_ERROR,
                        {"error": "Failed to connect to YouTube Live chat"},
                    )
                except FutureTimeout:
                    return self._send_json(
                        HTTPStatus.GATEWAY_TIMEOUT,
                        {"error": "Timed out connecting to YouTube Live chat"},
                    )

                return self._send_json(HTTPStatus.OK, {"ok": True, "liveId": video_id})

            # ----------------------------------------------------------
            # Overlay stream
            # ----------------------------------------------------------

            def _stream_selection(self) -> None:
                self.send_response(HTTPStatus.OK)
                self.send_header("Content-Type", "text/event-stream")
                self.send_header("Cache-Control", "no-cache")
                self.send_header("Connection", "keep-alive")
                self._apply_cors()
                self.end_headers()
                self.close_connection = True

                updates: "queue.Queue[Optional[ChatMessage]]" = queue.Queue()
                unsubscribe = None

                try:
                    self._write(CONNECTED_FRAME)
                    unsubscribe = session.selection.subscribe(updates.put)
                    log.info(f"Overlay stream opened ({self.address_string()})")

                    last_beat = time.monotonic()
                    while not closing.is_set():
                        wait = min(_STREAM_WAKE_SECONDS, heartbeat_seconds)
                        try:
                            message = updates.get(timeout=wait)
                        except queue.Empty:
                            pass
                        else:
                            self._write(selection_frame(message))
                            continue

                        if time.monotonic() - last_beat >= heartbeat_seconds:
                            self._write(HEARTBEAT_FRAME)
                            last_beat = time.monotonic()

                except (BrokenPipeError, ConnectionResetError, ConnectionAbortedError):
                    pass

                finally:
                    if unsubscribe is not None:
                        unsubscribe()
                    log.info(f"Overlay stream closed ({self.address_string()})")

            def _write(self, frame: bytes) -> None:
                self.wfile.write(frame)
                self.wfile.flush()

            def log_message(self, format: str, *args: Any) -> None:
                log.debug(f"{self.address_string()} - {format % args}")

        return Handler


__all__ = ["ChatApiServer", "format_sse", "selection_frame"]
