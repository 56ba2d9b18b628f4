"""
Integration tests for the file exposure pipeline.

A real LocalExposureServer is bound to an ephemeral loopback port and
queried with httpx. The tunnel is disabled or faked.

Tests cover:
- Serving registered files byte-for-byte with the right headers
- 404 for unknown, malformed and expired ids
- Method restrictions and CORS preflight
- Concurrent start binding a single port
- FileExposure serve/status/cleanup and tunnel degradation
"""

import threading
from pathlib import Path
from typing import Generator

import httpx
import pytest

from hostgate.errors import (
    ExternalProcessFailureError,
    ResourceNotFoundError,
    ValidationFailedError,
)
from hostgate.exposure import (
    FileExposure,
    FileRegistry,
    LocalExposureServer,
    TunnelSupervisor,
    extract_file_id,
)
from hostgate.schema import FileServerSettings, TunnelSettings

FILE_ID = "0f8fad5b-d9cb-469f-a165-70867728950e"


@pytest.fixture
def registry(temp_dir: Path, datetime_clock) -> FileRegistry:
    return FileRegistry(temp_dir / "served", clock=datetime_clock)


@pytest.fixture
def server(registry: FileRegistry) -> Generator[LocalExposureServer, None, None]:
    srv = LocalExposureServer(registry, port=0)
    srv.start()
    yield srv
    srv.stop()


@pytest.fixture
def client() -> Generator[httpx.Client, None, None]:
    with httpx.Client(trust_env=False, timeout=5) as c:
        yield c


@pytest.fixture
def image(temp_dir: Path) -> Path:
    path = temp_dir / "plot.png"
    path.write_bytes(b"\x89PNG\r\n\x1a\n" + bytes(range(256)) * 10)
    return path


def base_url(server: LocalExposureServer) -> str:
    return f"http://127.0.0.1:{server.port}"


class TestExtractFileId:
    """Tests for extract_file_id()."""

    @pytest.mark.parametrize(
        ("path", "expected"),
        [
            (f"/files/{FILE_ID}.png", FILE_ID),
            (f"/{FILE_ID}.mp4?download=1", FILE_ID),
            (f"/files/{FILE_ID.upper()}.PNG", FILE_ID),
            ("/files/", None),
            ("/", None),
            (f"/files/{FILE_ID}", None),
            (f"/files/{FILE_ID}.tar.gz", None),
            ("/files/../../etc/passwd", None),
            ("/files/short.png", None),
        ],
    )
    def test_extract(self, path: str, expected: str | None) -> None:
        assert extract_file_id(path) == expected


class TestLocalExposureServer:
    """Tests against a live loopback server."""

    def test_serves_registered_file(
        self,
        server: LocalExposureServer,
        registry: FileRegistry,
        client: httpx.Client,
        image: Path,
    ) -> None:
        reg = registry.register(image, filename="chart.png")

        response = client.get(f"{base_url(server)}/files/{reg.id}.png")

        assert response.status_code == 200
        assert response.content == image.read_bytes()
        assert response.headers["content-type"] == "image/png"
        assert response.headers["content-length"] == str(image.stat().st_size)
        assert response.headers["content-disposition"] == 'inline; filename="chart.png"'
        assert response.headers["cache-control"] == "public, max-age=3600"
        assert response.headers["access-control-allow-origin"] == "*"

    def test_local_url_points_at_server(
        self, server: LocalExposureServer, registry: FileRegistry, client: httpx.Client, image: Path
    ) -> None:
        reg = registry.register(image)

        url = server.local_url(reg.id, reg.extension)
        response = client.get(url.replace("localhost", "127.0.0.1"))

        assert url == f"http://localhost:{server.port}/files/{reg.id}.png"
        assert response.status_code == 200

    def test_head_has_no_body(
        self, server: LocalExposureServer, registry: FileRegistry, client: httpx.Client, image: Path
    ) -> None:
        reg = registry.register(image)

        response = client.head(f"{base_url(server)}/files/{reg.id}.png")

        assert response.status_code == 200
        assert response.content == b""
        assert response.headers["content-length"] == str(image.stat().st_size)

    def test_unknown_id(self, server: LocalExposureServer, client: httpx.Client) -> None:
        response = client.get(f"{base_url(server)}/files/{FILE_ID}.png")

        assert response.status_code == 404

    @pytest.mark.parametrize(
        "path", ["/", "/files/", "/files/served", "/files/../README.md", "/files/x.png"]
    )
    def test_non_matching_paths(
        self, server: LocalExposureServer, client: httpx.Client, path: str
    ) -> None:
        response = client.get(f"{base_url(server)}{path}")

        assert response.status_code == 404

    def test_expired_file(
        self,
        server: LocalExposureServer,
        registry: FileRegistry,
        client: httpx.Client,
        image: Path,
        datetime_clock,
    ) -> None:
        reg = registry.register(image, expiry_minutes=1)
        datetime_clock.advance(minutes=2)

        response = client.get(f"{base_url(server)}/files/{reg.id}.png")

        assert response.status_code == 404
        assert not reg.served_path.exists()

    @pytest.mark.parametrize("method", ["POST", "PUT", "DELETE", "PATCH"])
    def test_write_methods_rejected(
        self, server: LocalExposureServer, client: httpx.Client, method: str
    ) -> None:
        response = client.request(method, f"{base_url(server)}/files/{FILE_ID}.png")

        assert response.status_code == 405
        assert "GET" in response.headers["allow"]

    def test_options_preflight(self, server: LocalExposureServer, client: httpx.Client) -> None:
        response = client.options(f"{base_url(server)}/files/{FILE_ID}.png")

        assert response.status_code == 204
        assert response.headers["access-control-allow-origin"] == "*"
        assert "GET" in response.headers["access-control-allow-methods"]

    def test_start_is_idempotent(self, server: LocalExposureServer) -> None:
        port = server.port

        assert server.start() == port
        assert server.is_running
        assert server.uptime_seconds is not None

    def test_concurrent_start_binds_once(self, registry: FileRegistry) -> None:
        class CountingServer(LocalExposureServer):
            binds = 0

            def _bind(self, handler_class):
                CountingServer.binds += 1
                return super()._bind(handler_class)

        srv = CountingServer(registry, port=0)
        barrier = threading.Barrier(8)
        ports: list[int] = []

        def start() -> None:
            barrier.wait()
            ports.append(srv.start())

        threads = [threading.Thread(target=start) for _ in range(8)]
        try:
            for t in threads:
                t.start()
            for t in threads:
                t.join()

            assert len(ports) == 8
            assert set(ports) == {srv.port}
            assert CountingServer.binds == 1
        finally:
            srv.stop()

    def test_stop_releases(self, registry: FileRegistry) -> None:
        srv = LocalExposureServer(registry, port=0)
        srv.start()
        srv.stop()

        assert not srv.is_running
        assert srv.port is None
        srv.stop()


class TestFileExposure:
    """Tests for the FileExposure facade."""

    @pytest.fixture
    def exposure(self, temp_dir: Path) -> Generator[FileExposure, None, None]:
        exp = FileExposure(
            FileServerSettings(port=0, serve_directory=temp_dir / "served"),
            TunnelSettings(enabled=False),
        )
        exp.start()
        yield exp
        exp.shutdown()

    def test_serve_without_tunnel(
        self, exposure: FileExposure, client: httpx.Client, image: Path
    ) -> None:
        result = exposure.serve(str(image))

        assert result["url"] is None
        assert "Tunnel disabled" in result["warning"]
        assert result["local_url"].endswith(f"/files/{result['file_id']}.png")
        response = client.get(result["local_url"].replace("localhost", "127.0.0.1"))
        assert response.content == image.read_bytes()

    def test_status(self, exposure: FileExposure, image: Path) -> None:
        before = exposure.status()
        exposure.serve(str(image))
        after = exposure.status()

        assert before["server_running"] is False
        assert before["files_served"] == 0
        assert after["server_running"] is True
        assert after["server_port"] is not None
        assert after["tunnel_state"] == "stopped"
        assert after["files_served"] == 1
        assert after["total_size_bytes"] == image.stat().st_size

    def test_cleanup(self, exposure: FileExposure, image: Path) -> None:
        first = exposure.serve(str(image))
        exposure.serve(str(image))

        assert exposure.cleanup(file_id=first["file_id"]) == 1
        with pytest.raises(ResourceNotFoundError):
            exposure.cleanup(file_id=first["file_id"])
        assert exposure.cleanup(remove_all=True) == 1
        with pytest.raises(ValidationFailedError):
            exposure.cleanup()

    def test_disabled(self, temp_dir: Path, image: Path) -> None:
        exposure = FileExposure(
            FileServerSettings(enabled=False, serve_directory=temp_dir / "served"),
            TunnelSettings(enabled=False),
        )

        with pytest.raises(ValidationFailedError, match="disabled"):
            exposure.serve(str(image))

    def test_tunnel_failure_degrades_to_local(self, temp_dir: Path, image: Path) -> None:
        tunnel = TunnelSupervisor(which=lambda b: None)
        exposure = FileExposure(
            FileServerSettings(port=0, serve_directory=temp_dir / "served"),
            TunnelSettings(enabled=True),
            tunnel=tunnel,
        )
        try:
            result = exposure.serve(str(image))
        finally:
            exposure.shutdown()

        assert result["url"] is None
        assert result["warning"].startswith("Tunnel unavailable: cloudflared is not installed")
        assert result["local_url"]

    def test_public_url_from_tunnel(self, temp_dir: Path, image: Path) -> None:
        class StubTunnel(TunnelSupervisor):
            def start(self, local_port: int) -> str:
                self.started_port = local_port
                return "https://stub.trycloudflare.com"

        tunnel = StubTunnel()
        exposure = FileExposure(
            FileServerSettings(port=0, serve_directory=temp_dir / "served"),
            TunnelSettings(enabled=True),
            tunnel=tunnel,
        )
        try:
            result = exposure.serve(str(image))
            port = exposure.server.port
        finally:
            exposure.shutdown()

        assert result["url"] == f"https://stub.trycloudflare.com/files/{result['file_id']}.png"
        assert result["warning"] is None
        assert tunnel.started_port == port

    def test_shutdown_removes_copies(self, temp_dir: Path, image: Path) -> None:
        exposure = FileExposure(
            FileServerSettings(port=0, serve_directory=temp_dir / "served"),
            TunnelSettings(enabled=False),
        )
        result = exposure.serve(str(image))
        exposure.shutdown()

        assert list((temp_dir / "served").iterdir()) == []
        assert image.exists()
        assert exposure.status()["files_served"] == 0
        assert result["file_id"]

    def test_server_failure_unregisters(self, temp_dir: Path, image: Path) -> None:
        class BrokenServer(LocalExposureServer):
            def start(self) -> int:
                raise OSError("address unavailable")

        registry = FileRegistry(temp_dir / "served")
        exposure = FileExposure(
            FileServerSettings(serve_directory=temp_dir / "served"),
            TunnelSettings(enabled=False),
            registry=registry,
            server=BrokenServer(registry),
        )

        with pytest.raises(ExternalProcessFailureError, match="Could not start file server"):
            exposure.serve(str(image))
        assert len(registry) == 0
