"""
Ingress tunnel supervisor.

Runs ``cloudflared tunnel --url http://localhost:<port>`` as a child
process and learns the public URL by scanning its stderr. A tunnel that
dies while running is restarted automatically, up to ``max_restarts``
times; after that it stays stopped and keeps the last output for
diagnostics.

State machine:
    STOPPED --start()--> STARTING --url seen--> RUNNING
    STARTING --timeout / early exit--> STOPPED (start() raises)
    RUNNING --unexpected exit--> STARTING (restart) or STOPPED (cap hit)
    any --stop()--> STOPPED

The lock guards state transitions only. Waiting for a URL happens outside
it, so stop() never blocks behind a pending start or restart.
"""

import logging
import re
import shutil
import subprocess
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from hostgate.errors import ExternalProcessFailureError, TunnelUnavailableError
from hostgate.schema import TunnelState

logger = logging.getLogger(__name__)

TUNNEL_URL_PATTERN = re.compile(r"https://[a-z0-9-]+\.trycloudflare\.com", re.IGNORECASE)

# Characters of process output kept for diagnostics
OUTPUT_TAIL_CHARS = 4000
DIAGNOSTIC_CHARS = 500


def extract_public_url(text: str) -> str | None:
    """Find the quick-tunnel URL in a chunk of cloudflared output."""
    match = TUNNEL_URL_PATTERN.search(text)
    return match.group(0) if match else None


@dataclass
class _Attempt:
    """
    One spawned tunnel process and what its reader thread has seen.

    ``settled`` is set once startup has been decided (URL seen, failed or
    cancelled by stop); ``error`` holds the failure, if any.
    """

    process: Any
    port: int
    ready: threading.Event = field(default_factory=threading.Event)
    settled: threading.Event = field(default_factory=threading.Event)
    url: str | None = None
    output: str = ""
    error: ExternalProcessFailureError | None = None

    def append(self, text: str) -> None:
        self.output = (self.output + text)[-OUTPUT_TAIL_CHARS:]


class TunnelSupervisor:
    """
    Owns the tunnel child process.

    Usage:
        tunnel = TunnelSupervisor()
        url = tunnel.start(8765)      # https://<sub>.trycloudflare.com
        ...
        tunnel.stop()

    Args:
        binary: Tunnel executable name or path
        max_restarts: Automatic restarts allowed after unexpected exits
        startup_timeout: Seconds to wait for the public URL
        stop_grace: Seconds between SIGTERM and SIGKILL
        popen: Process factory, ``subprocess.Popen`` by default
        which: Executable lookup, ``shutil.which`` by default
    """

    def __init__(
        self,
        binary: str = "cloudflared",
        max_restarts: int = 3,
        startup_timeout: float = 30.0,
        stop_grace: float = 5.0,
        popen: Callable[..., Any] = subprocess.Popen,
        which: Callable[[str], str | None] = shutil.which,
    ) -> None:
        self.binary = binary
        self.max_restarts = max_restarts
        self.startup_timeout = startup_timeout
        self.stop_grace = stop_grace
        self._popen = popen
        self._which = which

        self._lock = threading.RLock()
        self._attempt: _Attempt | None = None
        self._state = TunnelState.STOPPED
        self._public_url: str | None = None
        self._started_at: float | None = None
        self._restart_count = 0
        self._last_output = ""

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    @property
    def state(self) -> TunnelState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == TunnelState.RUNNING

    @property
    def public_url(self) -> str | None:
        return self._public_url

    @property
    def restart_count(self) -> int:
        return self._restart_count

    @property
    def last_output(self) -> str:
        """Output tail of the most recent process that exited."""
        return self._last_output

    @property
    def uptime_seconds(self) -> int | None:
        started = self._started_at
        if started is None:
            return None
        return int(time.monotonic() - started)

    def is_installed(self) -> bool:
        return self._which(self.binary) is not None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self, local_port: int) -> str:
        """
        Start the tunnel to ``local_port`` and return its public URL.

        A call while running returns the existing URL; a call while another
        start is pending waits for that start instead of spawning again.

        Raises:
            TunnelUnavailableError: If the binary is not installed
            ExternalProcessFailureError: On spawn failure, early exit, timeout
                or a stop() issued during startup
        """
        with self._lock:
            if self._state == TunnelState.RUNNING and self._public_url:
                logger.debug("Tunnel already running at %s", self._public_url)
                return self._public_url

            pending = self._attempt if self._state == TunnelState.STARTING else None
            if pending is None:
                if not self.is_installed():
                    raise TunnelUnavailableError(command=self.binary)
                self._restart_count = 0
                pending = self._spawn(local_port)

        return self._await_startup(pending)

    def stop(self) -> None:
        """Terminate the tunnel process and reset the restart counter."""
        with self._lock:
            attempt = self._attempt
            self._attempt = None
            self._state = TunnelState.STOPPED
            self._public_url = None
            self._started_at = None
            self._restart_count = 0
            if attempt is not None and not attempt.settled.is_set():
                attempt.error = ExternalProcessFailureError(
                    message=f"{self.binary} was stopped before it reported a URL",
                    command=self.binary,
                    output=attempt.output,
                )
                attempt.settled.set()

        if attempt is not None:
            # Wake a start() or restart still waiting on this process
            attempt.ready.set()
            logger.info("Stopping %s", self.binary)
            self._terminate(attempt.process)

    def _spawn(self, port: int) -> _Attempt:
        """Spawn one process and its reader thread. Caller holds the lock."""
        self._state = TunnelState.STARTING
        cmd = [self.binary, "tunnel", "--url", f"http://localhost:{port}"]
        logger.info("Starting %s tunnel to localhost:%d", self.binary, port)

        try:
            process = self._popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
            )
        except OSError as e:
            self._state = TunnelState.STOPPED
            raise ExternalProcessFailureError(
                message=f"Failed to start {self.binary}: {e}",
                command=self.binary,
                output=str(e),
            ) from e

        attempt = _Attempt(process=process, port=port)
        self._attempt = attempt
        reader = threading.Thread(
            target=self._read_output,
            args=(attempt,),
            name="hostgate-tunnel-reader",
            daemon=True,
        )
        reader.start()
        return attempt

    def _await_startup(self, attempt: _Attempt) -> str:
        """Wait for the URL without holding the lock, then settle the attempt."""
        attempt.ready.wait(self.startup_timeout)

        with self._lock:
            if not attempt.settled.is_set():
                self._settle(attempt)

        if attempt.error is not None:
            self._terminate(attempt.process)
            raise attempt.error
        return attempt.url  # type: ignore[return-value]

    def _settle(self, attempt: _Attempt) -> None:
        """Record the outcome of a startup. Caller holds the lock."""
        if attempt.url is not None:
            self._state = TunnelState.RUNNING
            self._public_url = attempt.url
            self._started_at = time.monotonic()
            logger.info("Tunnel ready: %s", attempt.url)
            attempt.settled.set()
            return

        # Startup failed: detach the attempt so its exit does not trigger a restart
        self._attempt = None
        self._state = TunnelState.STOPPED
        self._last_output = attempt.output
        exit_code = attempt.process.poll()
        if exit_code is None:
            attempt.error = ExternalProcessFailureError(
                message=(
                    "Timeout waiting for tunnel URL. "
                    f"{self.binary} output: {attempt.output[:DIAGNOSTIC_CHARS]}"
                ),
                command=self.binary,
                output=attempt.output,
            )
        else:
            attempt.error = ExternalProcessFailureError(
                message=(
                    f"{self.binary} exited unexpectedly with code {exit_code}. "
                    f"Output: {attempt.output[:DIAGNOSTIC_CHARS]}"
                ),
                command=self.binary,
                output=attempt.output,
                exit_code=exit_code,
            )
        attempt.settled.set()

    def _read_output(self, attempt: _Attempt) -> None:
        stream = attempt.process.stderr
        if stream is not None:
            for line in stream:
                attempt.append(line)
                if attempt.url is None:
                    url = extract_public_url(line)
                    if url is not None:
                        attempt.url = url
                        attempt.ready.set()

        exit_code = attempt.process.wait()
        attempt.ready.set()
        # An exit is only a crash once startup has been decided
        attempt.settled.wait()
        self._on_exit(attempt, exit_code)

    def _on_exit(self, attempt: _Attempt, exit_code: int | None) -> None:
        with self._lock:
            if attempt is not self._attempt:
                # Stopped deliberately, or a failed startup already handled it
                return

            logger.warning("%s exited with code %s", self.binary, exit_code)
            self._attempt = None
            self._public_url = None
            self._started_at = None
            self._last_output = attempt.output

            if self._restart_count >= self.max_restarts:
                self._state = TunnelState.STOPPED
                logger.error(
                    "Tunnel stopped after %d restarts. Last output: %s",
                    self._restart_count,
                    attempt.output[-DIAGNOSTIC_CHARS:],
                )
                return

            self._restart_count += 1
            logger.warning(
                "Attempting tunnel restart (%d/%d)", self._restart_count, self.max_restarts
            )
            try:
                pending = self._spawn(attempt.port)
            except ExternalProcessFailureError as e:
                logger.error("Tunnel restart failed: %s", e.message)
                return

        try:
            self._await_startup(pending)
        except ExternalProcessFailureError as e:
            logger.error("Tunnel restart failed: %s", e.message)

    def _terminate(self, process: Any) -> None:
        if process.poll() is not None:
            return
        process.terminate()
        try:
            process.wait(timeout=self.stop_grace)
        except subprocess.TimeoutExpired:
            logger.warning("%s did not exit after SIGTERM, killing", self.binary)
            process.kill()
            process.wait()
