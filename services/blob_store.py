"""Blob store: opaque put/get/delete of binary content by reference.

Two backends:

- ``InMemoryBlobStore`` for tests and single-instance development.
- ``FileSystemBlobStore`` keeps each payload in a file next to a JSON
  metadata sidecar; blocking file I/O runs in worker threads.

``http(s)://`` references (images stored by URL in older history) are
not owned by either backend; :func:`fetch_reference` downloads them.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, AsyncIterator

import httpx
from pydantic import BaseModel, Field

from errors import NotFoundError, StorageError
from models.base import now

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024
_URL_PREFIXES = ("http://", "https://")


class BlobInfo(BaseModel):
    """Metadata recorded alongside a stored payload."""

    reference: str
    size: int
    content_type: str = "application/octet-stream"
    filename: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: float = Field(default_factory=now)


def _new_reference() -> str:
    return f"blob-{uuid.uuid4().hex}"


# ── Abstract Interface ───────────────────────────────────────


class BlobStore(ABC):
    """Abstract blob store: implement for different backends."""

    @abstractmethod
    async def put(
        self,
        data: bytes,
        *,
        content_type: str = "application/octet-stream",
        filename: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Store *data* and return its reference."""
        ...

    @abstractmethod
    async def get(self, reference: str) -> bytes:
        """Return the full payload.  Raises NotFoundError if absent."""
        ...

    @abstractmethod
    async def stat(self, reference: str) -> BlobInfo:
        ...

    @abstractmethod
    async def delete(self, reference: str) -> None:
        """Remove a payload.  Deleting a missing reference is a no-op."""
        ...

    async def open_stream(
        self, reference: str, chunk_size: int = DEFAULT_CHUNK_SIZE
    ) -> AsyncIterator[bytes]:
        """Yield the payload in chunks.

        Backends that can read incrementally override this; the default
        slices the full payload.
        """
        data = await self.get(reference)
        for start in range(0, len(data), chunk_size):
            yield data[start:start + chunk_size]

    async def get_base64(self, reference: str) -> str:
        return base64.b64encode(await self.get(reference)).decode("ascii")


# ── In-Memory Implementation ────────────────────────────────


class InMemoryBlobStore(BlobStore):
    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}
        self._info: dict[str, BlobInfo] = {}

    async def put(self, data, *, content_type="application/octet-stream", filename="", metadata=None):
        ref = _new_reference()
        self._data[ref] = bytes(data)
        self._info[ref] = BlobInfo(
            reference=ref,
            size=len(data),
            content_type=content_type,
            filename=filename,
            metadata=metadata or {},
        )
        logger.debug("Stored blob %s (%d bytes, %s)", ref, len(data), content_type)
        return ref

    async def get(self, reference: str) -> bytes:
        try:
            return self._data[reference]
        except KeyError:
            raise NotFoundError("file", reference) from None

    async def stat(self, reference: str) -> BlobInfo:
        try:
            return self._info[reference]
        except KeyError:
            raise NotFoundError("file", reference) from None

    async def delete(self, reference: str) -> None:
        self._data.pop(reference, None)
        self._info.pop(reference, None)

    @property
    def size(self) -> int:
        return len(self._data)


# ── File-System Implementation ──────────────────────────────


class FileSystemBlobStore(BlobStore):
    """Payloads under ``<root>/<ref>``, metadata under ``<root>/<ref>.json``."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)

    def _paths(self, reference: str) -> tuple[Path, Path]:
        # References are generated here; anything path-like is rejected.
        if not reference or "/" in reference or "\\" in reference or ".." in reference:
            raise NotFoundError("file", reference)
        return self._root / reference, self._root / f"{reference}.json"

    async def put(self, data, *, content_type="application/octet-stream", filename="", metadata=None):
        ref = _new_reference()
        payload_path, info_path = self._paths(ref)
        info = BlobInfo(
            reference=ref,
            size=len(data),
            content_type=content_type,
            filename=filename,
            metadata=metadata or {},
        )

        def _write() -> None:
            payload_path.write_bytes(data)
            info_path.write_text(info.model_dump_json(), encoding="utf-8")

        try:
            await asyncio.to_thread(_write)
        except OSError as exc:
            raise StorageError(f"Failed to store {filename or 'blob'}: {exc}") from exc
        logger.debug("Stored blob %s at %s (%d bytes)", ref, payload_path, len(data))
        return ref

    async def get(self, reference: str) -> bytes:
        payload_path, _ = self._paths(reference)
        try:
            return await asyncio.to_thread(payload_path.read_bytes)
        except FileNotFoundError:
            raise NotFoundError("file", reference) from None
        except OSError as exc:
            raise StorageError(f"Failed to read {reference}: {exc}") from exc

    async def stat(self, reference: str) -> BlobInfo:
        _, info_path = self._paths(reference)
        try:
            raw = await asyncio.to_thread(info_path.read_text, encoding="utf-8")
        except FileNotFoundError:
            raise NotFoundError("file", reference) from None
        return BlobInfo.model_validate_json(raw)

    async def delete(self, reference: str) -> None:
        payload_path, info_path = self._paths(reference)
        for path in (payload_path, info_path):
            try:
                await asyncio.to_thread(path.unlink)
            except FileNotFoundError:
                pass

    async def open_stream(self, reference: str, chunk_size: int = DEFAULT_CHUNK_SIZE):
        payload_path, _ = self._paths(reference)
        if not payload_path.is_file():
            raise NotFoundError("file", reference)
        handle = await asyncio.to_thread(payload_path.open, "rb")
        try:
            while True:
                chunk = await asyncio.to_thread(handle.read, chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            await asyncio.to_thread(handle.close)


# ── Reference resolution ─────────────────────────────────────


def is_url_reference(reference: str) -> bool:
    return reference.startswith(_URL_PREFIXES)


async def fetch_reference(store: BlobStore, reference: str) -> bytes:
    """Load a payload from the blob store or, for URL references, over HTTP."""
    if not is_url_reference(reference):
        return await store.get(reference)

    try:
        async with httpx.AsyncClient(timeout=60, follow_redirects=True) as client:
            resp = await client.get(reference)
            resp.raise_for_status()
    except httpx.HTTPError as exc:
        raise StorageError(f"Failed to download {reference}: {exc}") from exc
    logger.debug("Downloaded %s (%d bytes)", reference, len(resp.content))
    return resp.content


# ── Module-level Singleton ───────────────────────────────────

_store: BlobStore | None = None


def get_blob_store() -> BlobStore:
    """Get the singleton blob store instance."""
    global _store
    if _store is None:
        from config.settings import get_settings

        settings = get_settings()
        if settings.blob_store_type == "filesystem":
            _store = FileSystemBlobStore(settings.blob_store_dir)
            logger.info("Initialized FileSystemBlobStore at %s", settings.blob_store_dir)
        else:
            _store = InMemoryBlobStore()
            logger.info("Initialized InMemoryBlobStore")
    return _store
