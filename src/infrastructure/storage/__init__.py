"""
Source File Storage
===================

Local-disk store for uploaded knowledge source files.

Layout: ``{storage_dir}/{tenant_id}/{source_id}/{sanitized filename}``.
Blocking file IO is pushed to a worker thread.
"""

import asyncio
import re
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from src.config import settings
from src.core import ValidationException
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


def sanitize_filename(name: str, fallback: str = "upload") -> str:
    """Replace every character outside [A-Za-z0-9._-] with an underscore."""
    safe = UNSAFE_FILENAME_CHARS.sub("_", name or "")
    # "." and ".." would escape the source directory
    if not safe.strip("."):
        return fallback
    return safe


class ISourceFileStore(ABC):
    """Interface for persisted source files."""

    @abstractmethod
    async def save_upload(self, tenant_id: str, source_id: str, filename: str, data: bytes) -> str:
        """Persist bytes and return the storage pointer."""

    @abstractmethod
    async def save_text(self, tenant_id: str, source_id: str, filename: str, content: str) -> str:
        """Persist UTF-8 text and return the storage pointer."""

    @abstractmethod
    async def read_file(self, storage_path: str) -> bytes:
        """Read a previously stored file."""

    @abstractmethod
    async def remove_source_dir(self, tenant_id: str, source_id: str) -> None:
        """Delete every file of a source; missing directories are not an error."""


class LocalSourceFileStore(ISourceFileStore):
    """Filesystem implementation rooted at ``settings.kb_storage_dir``."""

    def __init__(self, base_dir: Optional[Path] = None):
        self._base_dir = Path(base_dir or settings.kb_storage_dir)

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def source_dir(self, tenant_id: str, source_id: str) -> Path:
        return self._base_dir / sanitize_filename(tenant_id, "tenant") / sanitize_filename(source_id, "source")

    async def save_upload(self, tenant_id: str, source_id: str, filename: str, data: bytes) -> str:
        directory = self.source_dir(tenant_id, source_id)
        path = directory / sanitize_filename(filename)

        def _write() -> None:
            directory.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        await asyncio.to_thread(_write)
        logger.info(
            "Source file stored",
            extra={"tenant_id": tenant_id, "source_id": source_id, "size_bytes": len(data)}
        )
        return str(path)

    async def save_text(self, tenant_id: str, source_id: str, filename: str, content: str) -> str:
        return await self.save_upload(tenant_id, source_id, filename, (content or "").encode("utf-8"))

    async def read_file(self, storage_path: str) -> bytes:
        path = Path(storage_path)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            raise ValidationException(
                "Stored source file is missing (repair required)",
                {"storage_path": storage_path}
            )

    async def remove_source_dir(self, tenant_id: str, source_id: str) -> None:
        directory = self.source_dir(tenant_id, source_id)
        await asyncio.to_thread(shutil.rmtree, directory, True)


__all__ = ["ISourceFileStore", "LocalSourceFileStore", "sanitize_filename"]
