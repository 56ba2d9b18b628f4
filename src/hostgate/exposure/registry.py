"""
File registry for the exposure pipeline.

Files are registered by copying them into an isolated serve directory under
an unguessable id (``<uuid4><ext>``). The registry owns those copies and
deletes them on removal or expiry; the original file is never touched.

Expiry is enforced twice: lazily on every lookup, and eagerly by a
background sweep.
"""

import logging
import mimetypes
import shutil
import threading
import uuid
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Callable

from hostgate.errors import (
    ResourceNotFoundError,
    ResourceTooLargeError,
    ValidationFailedError,
)
from hostgate.periodic import PeriodicTask
from hostgate.schema import FileRegistration
from hostgate.security import ensure_path_allowed

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"
# Served copies always carry an extension so the server's id pattern matches
FALLBACK_EXTENSION = ".bin"


def guess_content_type(name: str) -> str:
    """Infer a MIME type from a file name's extension."""
    content_type, _ = mimetypes.guess_type(name, strict=False)
    return content_type or DEFAULT_CONTENT_TYPE


def _utcnow() -> datetime:
    return datetime.now(UTC)


class FileRegistry:
    """
    Thread-safe index of exposed files.

    Usage:
        registry = FileRegistry(Path("/tmp/hostgate-files"))
        reg = registry.register("/home/me/out/plot.png")
        registry.lookup(reg.id)   # FileRegistration, or None once expired
        registry.remove(reg.id)

    Args:
        serve_directory: Where isolated copies are written
        max_file_size: Size ceiling in bytes
        default_expiry_minutes: Lifetime when register() gets no expiry
        allowed_extensions: Extensions (no dot) that may be registered;
            empty allows any
        sweep_interval: Seconds between background sweeps once started
        clock: Returns the current aware datetime
    """

    def __init__(
        self,
        serve_directory: Path | str,
        max_file_size: int = 100 * 1024 * 1024,
        default_expiry_minutes: float = 60,
        allowed_extensions: list[str] | None = None,
        sweep_interval: float = 300.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.serve_directory = Path(serve_directory).expanduser()
        self.max_file_size = max_file_size
        self.default_expiry_minutes = default_expiry_minutes
        self.allowed_extensions = [e.lower().lstrip(".") for e in allowed_extensions or []]
        self._clock = clock or _utcnow
        self._files: dict[str, FileRegistration] = {}
        self._lock = threading.Lock()
        self._sweeper = PeriodicTask("hostgate-file-sweep", sweep_interval, self.sweep)

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def register(
        self,
        source_path: Path | str,
        filename: str | None = None,
        content_type: str | None = None,
        expiry_minutes: float | None = None,
    ) -> FileRegistration:
        """
        Copy a file into the serve directory and index it.

        Raises:
            PathBlockedError: If the path is on the sensitive-path blocklist
            ResourceNotFoundError: If the file does not exist
            ValidationFailedError: If it is not a regular file, its extension
                is not allowed, or the expiry is not positive
            ResourceTooLargeError: If it exceeds ``max_file_size``
        """
        source = Path(source_path).expanduser()
        ensure_path_allowed(source)

        minutes = self.default_expiry_minutes if expiry_minutes is None else expiry_minutes
        if minutes <= 0:
            raise ValidationFailedError(
                tool="file.serve", errors=["expiry_minutes must be positive"]
            )

        try:
            stat = source.stat()
        except FileNotFoundError as e:
            raise ResourceNotFoundError(resource=str(source)) from e
        except OSError as e:
            raise ValidationFailedError(
                tool="file.serve", errors=[f"Cannot access {source}: {e.strerror or e}"]
            ) from e

        if not source.is_file():
            raise ValidationFailedError(
                tool="file.serve", errors=[f"Path is not a file: {source}"]
            )

        ext = source.suffix.lower()
        if self.allowed_extensions and ext.lstrip(".") not in self.allowed_extensions:
            raise ValidationFailedError(
                tool="file.serve",
                errors=[
                    f"Extension {ext or '(none)'} is not allowed; "
                    f"allowed: {', '.join(self.allowed_extensions)}"
                ],
            )

        if stat.st_size > self.max_file_size:
            raise ResourceTooLargeError(
                resource=str(source), actual_size=stat.st_size, max_size=self.max_file_size
            )

        file_id = str(uuid.uuid4())
        served_path = self.serve_directory / f"{file_id}{ext or FALLBACK_EXTENSION}"
        self.serve_directory.mkdir(parents=True, exist_ok=True)
        try:
            shutil.copyfile(source, served_path)
        except FileNotFoundError as e:
            raise ResourceNotFoundError(resource=str(source)) from e

        # The source may have grown between stat() and the copy
        copied_size = served_path.stat().st_size
        if copied_size > self.max_file_size:
            served_path.unlink(missing_ok=True)
            raise ResourceTooLargeError(
                resource=str(source), actual_size=copied_size, max_size=self.max_file_size
            )

        now = self._clock()
        display_name = filename or source.name
        registration = FileRegistration(
            id=file_id,
            original_path=source,
            served_path=served_path,
            filename=display_name,
            content_type=content_type or guess_content_type(display_name),
            size_bytes=copied_size,
            created_at=now,
            expires_at=now + timedelta(minutes=minutes),
        )

        with self._lock:
            self._files[file_id] = registration

        logger.info(
            "Registered %s -> %s (expires %s)",
            file_id,
            registration.filename,
            registration.expires_at.isoformat(),
        )
        return registration

    # -------------------------------------------------------------------------
    # Lookup and removal
    # -------------------------------------------------------------------------

    def lookup(self, file_id: str) -> FileRegistration | None:
        """Return the live registration for ``file_id``; expired entries are removed."""
        with self._lock:
            registration = self._files.get(file_id)
        if registration is None:
            return None
        if registration.is_expired(self._clock()):
            self.remove(file_id)
            return None
        return registration

    def remove(self, file_id: str) -> bool:
        """
        Delete the served copy and drop the entry.

        Returns:
            True if an entry was removed, False if none existed
        """
        with self._lock:
            registration = self._files.pop(file_id, None)
        if registration is None:
            return False

        try:
            registration.served_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Could not delete %s: %s", registration.served_path, e)

        logger.info("Removed %s", file_id)
        return True

    def sweep(self) -> int:
        """Remove every expired registration. Returns the count removed."""
        now = self._clock()
        with self._lock:
            expired = [fid for fid, reg in self._files.items() if reg.is_expired(now)]
        removed = sum(1 for fid in expired if self.remove(fid))
        if removed:
            logger.info("Cleaned up %d expired files", removed)
        return removed

    def clear_all(self) -> int:
        """Remove every registration. Returns the count removed."""
        with self._lock:
            ids = list(self._files)
        return sum(1 for fid in ids if self.remove(fid))

    def stats(self) -> dict[str, int]:
        """Count and total size of live registrations."""
        with self._lock:
            registrations = list(self._files.values())
        return {
            "files_served": len(registrations),
            "total_size_bytes": sum(r.size_bytes for r in registrations),
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._files)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Create the serve directory and start the background sweep."""
        self.serve_directory.mkdir(parents=True, exist_ok=True)
        self._sweeper.start()
        logger.debug("File registry initialized at %s", self.serve_directory)

    def shutdown(self) -> None:
        """Stop the background sweep. Registrations are left in place."""
        self._sweeper.stop()
