"""
File exposure pipeline.

FileExposure ties together the FileRegistry (isolated copies), the
LocalExposureServer (loopback HTTP) and the TunnelSupervisor (public URL).
The server and tunnel are started lazily on the first serve() call.

A tunnel failure never fails serve(): the result degrades to the local URL
plus a warning.
"""

import logging
from typing import Any

from hostgate.errors import (
    ExternalProcessFailureError,
    ResourceNotFoundError,
    ValidationFailedError,
)
from hostgate.exposure.registry import FileRegistry
from hostgate.exposure.server import LocalExposureServer
from hostgate.exposure.tunnel import TunnelSupervisor
from hostgate.schema import FileServerSettings, TunnelSettings

logger = logging.getLogger(__name__)


class FileExposure:
    """
    Registry, server and tunnel behind one interface.

    Usage:
        exposure = FileExposure(settings.file_server, settings.tunnel)
        exposure.start()
        result = exposure.serve("/home/me/out/plot.png")
        result["url"] or result["local_url"]
        exposure.shutdown()
    """

    def __init__(
        self,
        settings: FileServerSettings | None = None,
        tunnel_settings: TunnelSettings | None = None,
        registry: FileRegistry | None = None,
        server: LocalExposureServer | None = None,
        tunnel: TunnelSupervisor | None = None,
    ) -> None:
        self.settings = settings or FileServerSettings()
        self.tunnel_settings = tunnel_settings or TunnelSettings()
        self.registry = registry or FileRegistry(
            serve_directory=self.settings.serve_directory,
            max_file_size=self.settings.max_file_size,
            default_expiry_minutes=self.settings.default_expiry_minutes,
            allowed_extensions=self.settings.allowed_extensions,
            sweep_interval=self.settings.sweep_interval_seconds,
        )
        self.server = server or LocalExposureServer(
            self.registry,
            host=self.settings.host,
            port=self.settings.port,
            max_port_attempts=self.settings.max_port_attempts,
        )
        self.tunnel = tunnel or TunnelSupervisor(
            binary=self.tunnel_settings.binary,
            max_restarts=self.tunnel_settings.max_restarts,
            startup_timeout=self.tunnel_settings.startup_timeout_seconds,
            stop_grace=self.tunnel_settings.stop_grace_seconds,
        )

    def serve(
        self,
        path: str,
        filename: str | None = None,
        expiry_minutes: float | None = None,
        content_type: str | None = None,
    ) -> dict[str, Any]:
        """
        Register a file and return its URLs.

        Returns:
            Dict with url (public, or None), local_url, file_id,
            expires_at (ISO 8601) and warning (or None)
        """
        if not self.settings.enabled:
            raise ValidationFailedError(
                tool="file.serve", errors=["File server is disabled in settings"]
            )

        registration = self.registry.register(
            path,
            filename=filename,
            content_type=content_type,
            expiry_minutes=expiry_minutes,
        )

        try:
            port = self.server.start()
        except OSError as e:
            self.registry.remove(registration.id)
            raise ExternalProcessFailureError(
                message=f"Could not start file server: {e}",
                command="file server",
                output=str(e),
            ) from e

        suffix = f"/files/{registration.id}{registration.extension}"
        local_url = self.server.local_url(registration.id, registration.extension)
        public_url: str | None = None
        warning: str | None = None

        if self.tunnel_settings.enabled:
            try:
                public_url = self.tunnel.start(port) + suffix
            except ExternalProcessFailureError as e:
                logger.warning("Tunnel error: %s", e.message)
                warning = f"Tunnel unavailable: {e.message}. Use local_url for testing."
        else:
            warning = "Tunnel disabled in settings. Use local_url for testing."

        logger.info("Serving %s at %s", registration.id, public_url or local_url)
        return {
            "url": public_url,
            "local_url": local_url,
            "file_id": registration.id,
            "expires_at": registration.expires_at.isoformat(),
            "warning": warning,
        }

    def status(self) -> dict[str, Any]:
        """Server, tunnel and registry status."""
        stats = self.registry.stats()
        return {
            "server_running": self.server.is_running,
            "server_port": self.server.port,
            "server_uptime_seconds": self.server.uptime_seconds,
            "tunnel_state": self.tunnel.state.value,
            "tunnel_running": self.tunnel.is_running,
            "tunnel_url": self.tunnel.public_url,
            "tunnel_uptime_seconds": self.tunnel.uptime_seconds,
            "tunnel_restart_count": self.tunnel.restart_count,
            "files_served": stats["files_served"],
            "total_size_bytes": stats["total_size_bytes"],
        }

    def cleanup(self, file_id: str | None = None, remove_all: bool = False) -> int:
        """
        Remove one registration or all of them.

        Returns:
            Number of registrations removed

        Raises:
            ValidationFailedError: If neither a file id nor remove_all is given
            ResourceNotFoundError: If ``file_id`` is not registered
        """
        if remove_all:
            count = self.registry.clear_all()
            logger.info("Cleared all %d files", count)
            return count

        if not file_id:
            raise ValidationFailedError(
                tool="file.cleanup", errors=["Must specify either file_id or all: true"]
            )

        if not self.registry.remove(file_id):
            raise ResourceNotFoundError(resource=file_id)
        return 1

    def start(self) -> None:
        """Start background sweeps. The server and tunnel start on demand."""
        self.registry.start()

    def shutdown(self) -> None:
        """Stop the tunnel, the server and the sweeps; delete served copies."""
        logger.info("Shutting down file exposure")
        self.tunnel.stop()
        self.server.stop()
        self.registry.shutdown()
        self.registry.clear_all()
