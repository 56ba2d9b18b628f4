"""File exposure: isolated copies, loopback server, and ingress tunnel."""

from hostgate.exposure.registry import FileRegistry, guess_content_type
from hostgate.exposure.server import LocalExposureServer, extract_file_id
from hostgate.exposure.service import FileExposure
from hostgate.exposure.tunnel import TunnelSupervisor, extract_public_url

__all__ = [
    "FileExposure",
    "FileRegistry",
    "LocalExposureServer",
    "TunnelSupervisor",
    "extract_file_id",
    "extract_public_url",
    "guess_content_type",
]
