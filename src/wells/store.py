# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""On-disk persistence of report payloads.

Each report payload lives in its own file whose path is derived from the
report identifier by a pluggable ``ReportLocationProvider``. The store only
ever creates, reads and deletes these files; a payload is never modified
after it has been written.

Writes go to a hidden temporary sibling that is renamed into place once
complete, so a failed write (disk full, permission denied) never leaves a
partial report behind for the startup sweep to find.

Example:
    Persisting and removing a report::

        store = ReportStore(Path("/var/cache/wells"))
        path = store.persist("4F1C...", b"crash log")
        for report in store.list_existing():
            print(report.identifier, report.created_at)
        store.remove(path)
"""

from __future__ import annotations

import asyncio
import os
import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterator
from datetime import datetime, timezone
from pathlib import Path
from typing import NamedTuple

from .errors import LocationUnavailableError, StoreFailedError
from .logger import get_logger

DEFAULT_FILE_EXTENSION = "wellsdata"


class StoredReport(NamedTuple):
    """A payload found in the store."""

    location: Path
    created_at: datetime
    identifier: str | None


class ReportLocationProvider(ABC):
    """Maps report identifiers to payload paths and back."""

    @abstractmethod
    def report_path(self, identifier: str) -> Path | None:
        """Return the payload path for ``identifier``, or None if there is none."""

    @abstractmethod
    def identifier_for(self, path: Path) -> str | None:
        """Return the identifier stored at ``path``, or None if unrecognised."""


class IdentifierExtensionLocationProvider(ReportLocationProvider):
    """Stores each report as ``<base_dir>/<identifier>.<extension>``."""

    def __init__(self, base_dir: Path | str, file_extension: str = DEFAULT_FILE_EXTENSION):
        self.base_dir = Path(base_dir)
        self.file_extension = file_extension.lstrip(".")

    def report_path(self, identifier: str) -> Path | None:
        if not identifier or "/" in identifier or identifier.startswith("."):
            return None
        return self.base_dir / f"{identifier}.{self.file_extension}"

    def identifier_for(self, path: Path) -> str | None:
        path = Path(path)
        if path.parent != self.base_dir or path.suffix != f".{self.file_extension}":
            return None
        return path.stem or None


class FilenameIdentifierLocationProvider(ReportLocationProvider):
    """Stores each report as ``<base_dir>/<identifier>`` with no extension."""

    def __init__(self, base_dir: Path | str):
        self.base_dir = Path(base_dir)

    def report_path(self, identifier: str) -> Path | None:
        if not identifier or "/" in identifier or identifier.startswith("."):
            return None
        return self.base_dir / identifier

    def identifier_for(self, path: Path) -> str | None:
        path = Path(path)
        if path.parent != self.base_dir:
            return None
        return path.name or None


class ReportStore:
    """Filesystem store for report payloads.

    Attributes:
        root: Directory holding the payload files. Created on first write.
        location_provider: Strategy deriving a payload path from an identifier.
        logger: Logger instance for diagnostic output.
    """

    def __init__(
        self,
        root: Path | str,
        location_provider: ReportLocationProvider | None = None,
        *,
        logger=None,
    ):
        """Initialize the store.

        Args:
            root: Store root directory.
            location_provider: Optional naming strategy. Defaults to
                ``<root>/<identifier>.wellsdata``.
            logger: Custom logger instance. If None, uses the default logger.
        """
        self.root = Path(root)
        self.location_provider = location_provider or IdentifierExtensionLocationProvider(self.root)
        self.logger = logger or get_logger("Wells.Store")

    def locate(self, identifier: str) -> Path | None:
        """Return where the payload for ``identifier`` lives (or would live)."""
        return self.location_provider.report_path(identifier)

    def identifier_for(self, location: Path) -> str | None:
        """Return the identifier a payload path belongs to."""
        return self.location_provider.identifier_for(Path(location))

    def ensure_root(self) -> None:
        """Create the store root if missing. Safe to call concurrently."""
        self.root.mkdir(parents=True, exist_ok=True)

    def persist(self, identifier: str, payload: bytes) -> Path:
        """Write ``payload`` for ``identifier`` and return its path.

        Raises:
            LocationUnavailableError: The location provider returned nothing.
            StoreFailedError: The payload could not be written completely.
        """
        path = self.locate(identifier)
        if path is None:
            raise LocationUnavailableError(identifier)

        tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
        try:
            self.ensure_root()
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "wb") as fh:
                fh.write(bytes(payload))
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, path)
        except OSError as exc:
            self.logger.error("Failed to write report %s to %s: %s", identifier, path, exc)
            self._discard(tmp_path)
            raise StoreFailedError(identifier, exc) from exc

        self.logger.debug("Persisted report %s (%d bytes) at %s", identifier, len(payload), path)
        return path

    def remove(self, location: Path | str) -> bool:
        """Delete a stored payload. Never raises.

        Returns:
            True if the file was removed, False if it was already gone or
            could not be deleted.
        """
        location = Path(location)
        try:
            location.unlink()
        except FileNotFoundError:
            self.logger.debug("Report already removed: %s", location)
            return False
        except OSError as exc:
            self.logger.warning("Failed to remove report at %s: %s", location, exc)
            return False
        return True

    def exists(self, location: Path | str) -> bool:
        return Path(location).is_file()

    def list_existing(self) -> Iterator[StoredReport]:
        """Yield every stored payload with its creation time.

        This is a one-shot generator over a recursive listing of the root
        taken when iteration starts, so providers may shard payloads into
        subdirectories. Files removed in the meantime are skipped.
        """
        if not self.root.is_dir():
            return
        try:
            entries = sorted(self.root.rglob("*"))
        except OSError as exc:
            self.logger.warning("Unable to list report store %s: %s", self.root, exc)
            return

        for entry in entries:
            # hidden files, temporaries and anything under a hidden directory
            if any(part.startswith(".") for part in entry.relative_to(self.root).parts):
                continue
            identifier = self.identifier_for(entry)
            if identifier is None:
                continue
            try:
                stat = entry.stat()
            except OSError:
                continue
            if not entry.is_file():
                continue
            created = getattr(stat, "st_birthtime", None) or stat.st_mtime
            yield StoredReport(entry, datetime.fromtimestamp(created, timezone.utc), identifier)

    async def persist_async(self, identifier: str, payload: bytes) -> Path:
        """``persist`` run in a worker thread."""
        return await asyncio.to_thread(self.persist, identifier, payload)

    async def remove_async(self, location: Path | str) -> bool:
        """``remove`` run in a worker thread."""
        return await asyncio.to_thread(self.remove, location)

    def _discard(self, tmp_path: Path) -> None:
        try:
            tmp_path.unlink()
        except OSError:
            pass
