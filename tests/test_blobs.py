# tests/test_blobs.py
import asyncio

import pytest

from scanhub.core.config import StorageConfig
from scanhub.core.exceptions import NotFoundException
from scanhub.storage.blobs import FilesystemBlobStore, InMemoryBlobStore
from scanhub.storage.documents import InMemoryDocumentStore
from scanhub.storage.repositories import FileRepository, UserRepository
from scanhub.services.content_store import ContentAddressStore
from scanhub.services.ledger import SubmissionLedger


@pytest.fixture
async def fs_store(tmp_path):
    store = FilesystemBlobStore(str(tmp_path))
    await store.connect(["samples"])
    return store


async def test_filesystem_roundtrip(fs_store, tmp_path):
    assert not await fs_store.exists("samples", "k")

    await fs_store.put("samples", "k", b"\x00data")

    assert await fs_store.exists("samples", "k")
    assert await fs_store.get("samples", "k") == b"\x00data"
    assert (tmp_path / "samples" / "k").read_bytes() == b"\x00data"


async def test_filesystem_overwrite(fs_store):
    await fs_store.put("samples", "k", b"one")
    await fs_store.put("samples", "k", b"two")
    assert await fs_store.get("samples", "k") == b"two"


async def test_filesystem_missing_blob(fs_store):
    with pytest.raises(NotFoundException):
        await fs_store.get("samples", "absent")


async def test_filesystem_rejects_path_keys(fs_store):
    with pytest.raises(ValueError):
        await fs_store.put("samples", "../escape", b"x")


async def test_memory_store_keeps_content_type():
    store = InMemoryBlobStore()
    await store.put("avatars", "alice", b"png", "image/png")

    assert store.content_type("avatars", "alice") == "image/png"
    assert store.put_count[("avatars", "alice")] == 1


async def test_filesystem_concurrent_writes_of_one_key(fs_store, tmp_path):
    await asyncio.gather(*[fs_store.put("samples", "same", b"identical") for _ in range(16)])

    assert await fs_store.get("samples", "same") == b"identical"
    assert [p.name for p in (tmp_path / "samples").iterdir()] == ["same"]


async def test_filesystem_concurrent_identical_submissions(tmp_path):
    blobs = FilesystemBlobStore(str(tmp_path))
    await blobs.connect(["samples"])
    documents = InMemoryDocumentStore()
    files = FileRepository(documents, max_retries=50, backoff_base=0.001)
    ledger = SubmissionLedger(files, UserRepository(documents))
    store = ContentAddressStore(files, blobs, ledger, StorageConfig(max_file_size=1024))

    for round_no in range(10):
        data = f"sample {round_no}".encode()
        results = await asyncio.gather(*[store.submit(data, "s.bin") for _ in range(4)])

        assert sum(1 for r in results if r.is_new) == 1
        assert len((await files.require(results[0].sha256)).submissions) == 4


async def test_filesystem_delete(fs_store):
    await fs_store.put("samples", "k", b"x")

    await fs_store.delete("samples", "k")
    await fs_store.delete("samples", "k")

    assert not await fs_store.exists("samples", "k")


async def test_memory_store_delete():
    store = InMemoryBlobStore()
    await store.put("samples", "k", b"x")

    await store.delete("samples", "k")

    assert not await store.exists("samples", "k")
    with pytest.raises(NotFoundException):
        await store.get("samples", "k")
