"""Tests for the blob stores and reference resolution."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from errors import NotFoundError, StorageError
from services.blob_store import (
    FileSystemBlobStore,
    InMemoryBlobStore,
    fetch_reference,
    is_url_reference,
)


@pytest.fixture(params=["memory", "filesystem"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryBlobStore()
    return FileSystemBlobStore(tmp_path / "blobs")


@pytest.mark.asyncio
async def test_put_get_stat_delete(store):
    ref = await store.put(b"%PDF-1.4 notes", content_type="application/pdf", filename="notes.pdf")

    assert await store.get(ref) == b"%PDF-1.4 notes"
    info = await store.stat(ref)
    assert info.size == 14
    assert info.content_type == "application/pdf"
    assert info.filename == "notes.pdf"

    await store.delete(ref)
    with pytest.raises(NotFoundError):
        await store.get(ref)
    await store.delete(ref)


@pytest.mark.asyncio
async def test_open_stream_chunks(store):
    payload = bytes(range(256)) * 10
    ref = await store.put(payload)
    chunks = [c async for c in store.open_stream(ref, chunk_size=1000)]
    assert b"".join(chunks) == payload
    assert len(chunks) == 3


@pytest.mark.asyncio
async def test_missing_reference(store):
    with pytest.raises(NotFoundError):
        await store.stat("blob-missing")


@pytest.mark.asyncio
async def test_filesystem_rejects_path_references(tmp_path):
    store = FileSystemBlobStore(tmp_path)
    with pytest.raises(NotFoundError):
        await store.get("../etc/passwd")


def test_is_url_reference():
    assert is_url_reference("https://cdn.example.com/a.png")
    assert is_url_reference("http://x/y")
    assert not is_url_reference("blob-123")


@pytest.mark.asyncio
async def test_fetch_reference_downloads_urls():
    response = MagicMock(content=b"img")
    response.raise_for_status = MagicMock()
    client = MagicMock()
    client.get = AsyncMock(return_value=response)
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=False)

    with patch("services.blob_store.httpx.AsyncClient", return_value=client):
        data = await fetch_reference(InMemoryBlobStore(), "https://cdn.example.com/a.png")

    assert data == b"img"
    client.get.assert_awaited_once_with("https://cdn.example.com/a.png")


@pytest.mark.asyncio
async def test_fetch_reference_maps_http_errors():
    client = MagicMock()
    client.get = AsyncMock(side_effect=httpx.ConnectError("down"))
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=False)

    with patch("services.blob_store.httpx.AsyncClient", return_value=client):
        with pytest.raises(StorageError):
            await fetch_reference(InMemoryBlobStore(), "https://cdn.example.com/a.png")
