"""
Local HTTP server for registered files.

Serves only ``GET``/``HEAD`` for paths whose last segment is
``<uuid>.<ext>``. Any other path is answered 404 without touching the
filesystem, so the server cannot be used to browse the serve directory.

Security Note:
    The file id is the only capability. Responses stream the isolated copy
    owned by the FileRegistry, never the original file.
"""

import errno
import logging
import re
import shutil
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import unquote, urlsplit

from hostgate.exposure.registry import FileRegistry

logger = logging.getLogger(__name__)

FILE_NAME_PATTERN = re.compile(r"^([0-9a-f-]{36})\.[^.]+$", re.IGNORECASE)


def extract_file_id(request_path: str) -> str | None:
    """Return the file id from a request path, or None if it doesn't match."""
    path = unquote(urlsplit(request_path).path)
    segments = [s for s in path.split("/") if s]
    if not segments:
        return None
    match = FILE_NAME_PATTERN.match(segments[-1])
    return match.group(1).lower() if match else None


def _header_safe(value: str) -> str:
    return re.sub(r'["\r\n]', "", value)


class LocalExposureServer:
    """
    Threaded loopback HTTP server in front of a FileRegistry.

    Usage:
        server = LocalExposureServer(registry)
        port = server.start()
        ...
        server.stop()

    Args:
        registry: The FileRegistry to serve from
        host: Bind address
        port: Preferred port; 0 lets the OS choose
        max_port_attempts: Ports to try (incrementing) when the preferred
            one is in use
    """

    def __init__(
        self,
        registry: FileRegistry,
        host: str = "127.0.0.1",
        port: int = 8765,
        max_port_attempts: int = 20,
    ) -> None:
        self.registry = registry
        self.host = host
        self.preferred_port = port
        self.max_port_attempts = max_port_attempts
        self._server: ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._started_at: float | None = None
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._server is not None

    @property
    def port(self) -> int | None:
        """The bound port while running."""
        server = self._server
        return server.server_address[1] if server is not None else None

    @property
    def uptime_seconds(self) -> int | None:
        started = self._started_at
        if started is None:
            return None
        return int(time.monotonic() - started)

    def local_url(self, file_id: str, extension: str) -> str:
        """URL of a registered file on this server."""
        return f"http://localhost:{self.port}/files/{file_id}{extension}"

    def start(self) -> int:
        """
        Bind and start serving. Idempotent.

        Returns:
            The bound port

        Raises:
            OSError: If no port could be bound
        """
        with self._lock:
            if self._server is not None:
                logger.debug("Exposure server already running on port %s", self.port)
                return self.port  # type: ignore[return-value]

            handler_class = self._create_handler_class()
            server = self._bind(handler_class)
            self._thread = threading.Thread(
                target=server.serve_forever,
                name="hostgate-exposure-server",
                daemon=True,
            )
            self._server = server
            self._started_at = time.monotonic()
            self._thread.start()
            logger.info("Exposure server listening on http://%s:%d", self.host, self.port)
            return self.port  # type: ignore[return-value]

    def _bind(self, handler_class: type[BaseHTTPRequestHandler]) -> ThreadingHTTPServer:
        port = self.preferred_port
        for attempt in range(self.max_port_attempts):
            try:
                return ThreadingHTTPServer((self.host, port), handler_class)
            except OSError as e:
                last_attempt = attempt == self.max_port_attempts - 1
                if e.errno != errno.EADDRINUSE or port == 0 or last_attempt:
                    raise
                logger.info("Port %d in use, trying %d", port, port + 1)
                port += 1
        raise OSError(errno.EADDRINUSE, "No free port found")

    def stop(self) -> None:
        """Stop serving and release the port."""
        with self._lock:
            server, thread = self._server, self._thread
            self._server = None
            self._thread = None
            self._started_at = None
        if server is None:
            return
        server.shutdown()
        server.server_close()
        if thread is not None:
            thread.join(timeout=5)
        logger.info("Exposure server stopped")

    def _create_handler_class(self) -> type[BaseHTTPRequestHandler]:
        """Create the request handler class with closure over the registry."""
        registry = self.registry

        class FileHandler(BaseHTTPRequestHandler):
            """Serves registered files by id."""

            server_version = "hostgate"

            def log_message(self, format, *args):
                logger.debug("%s - %s", self.address_string(), format % args)

            def _send_cors(self):
                self.send_header("Access-Control-Allow-Origin", "*")
                self.send_header("Access-Control-Allow-Methods", "GET, HEAD, OPTIONS")
                self.send_header("Access-Control-Allow-Headers", "Content-Type")

            def _send_status(self, status: int, body: bytes = b""):
                self.send_response(status)
                self._send_cors()
                if status == 405:
                    self.send_header("Allow", "GET, HEAD, OPTIONS")
                self.send_header("Content-Length", str(len(body)))
                if body:
                    self.send_header("Content-Type", "text/plain; charset=utf-8")
                self.end_headers()
                if body and self.command != "HEAD":
                    self.wfile.write(body)

            def do_OPTIONS(self):
                """CORS preflight."""
                self.send_response(204)
                self._send_cors()
                self.end_headers()

            def do_GET(self):
                self._serve(send_body=True)

            def do_HEAD(self):
                self._serve(send_body=False)

            def _method_not_allowed(self):
                self._send_status(405, b"Method Not Allowed")

            do_POST = do_PUT = do_DELETE = do_PATCH = _method_not_allowed

            def _serve(self, send_body: bool):
                file_id = extract_file_id(self.path)
                if file_id is None:
                    self._send_status(404, b"Not Found")
                    return

                registration = registry.lookup(file_id)
                if registration is None:
                    self._send_status(404, b"Not Found")
                    return

                try:
                    f = registration.served_path.open("rb")
                except FileNotFoundError:
                    self._send_status(404, b"Not Found")
                    return

                with f:
                    self.send_response(200)
                    self._send_cors()
                    self.send_header("Content-Type", registration.content_type)
                    self.send_header("Content-Length", str(registration.size_bytes))
                    self.send_header(
                        "Content-Disposition",
                        f'inline; filename="{_header_safe(registration.filename)}"',
                    )
                    self.send_header("Cache-Control", "public, max-age=3600")
                    self.end_headers()
                    if send_body:
                        try:
                            shutil.copyfileobj(f, self.wfile)
                        except (BrokenPipeError, ConnectionResetError):
                            logger.debug("Client disconnected while serving %s", file_id)
                            return

                logger.info(
                    "Served %s (%s, %d bytes)",
                    file_id,
                    registration.filename,
                    registration.size_bytes,
                )

        return FileHandler
