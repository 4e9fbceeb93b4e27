# tests/test_content_store.py
import asyncio
import io

import pytest
import pyzipper

from scanhub.core.exceptions import (
    FileTooLargeError,
    InvalidHashError,
    NotFoundException,
    ValidationException,
)
from scanhub.domain.entities import FileStatus

from .conftest import sha256_of


async def test_first_submission_creates_queued_record(services):
    result = await services.content_store.submit(b"hello", "hello.exe", "web", "de")

    assert result.is_new is True
    assert result.sha256 == sha256_of(b"hello")
    assert result.file.status == FileStatus.QUEUED
    assert result.file.size == 5
    assert len(result.file.submissions) == 1
    assert result.file.submissions[0].filename == "hello.exe"
    assert result.file.submissions[0].country == "DE"
    assert result.file.first_submission == result.file.last_submission

    stored = await services.files.get(result.sha256)
    assert stored.to_dict() == result.file.to_dict()
    assert await services.blobs.get("samples", result.sha256) == b"hello"


async def test_repeat_submission_appends_without_reupload(services):
    first = await services.content_store.submit(b"same bytes", "a.bin")
    second = await services.content_store.submit(b"same bytes", "b.bin", "api")

    assert second.is_new is False
    assert second.sha256 == first.sha256
    assert [s.filename for s in second.file.submissions] == ["a.bin", "b.bin"]
    assert second.file.last_submission >= first.file.last_submission
    assert services.blobs.put_count[("samples", first.sha256)] == 1


async def test_hash_is_lower_case_hex(services):
    result = await services.content_store.submit(b"\x00\xff" * 10, "x")
    assert result.sha256 == result.sha256.lower()
    assert len(result.sha256) == 64


async def test_oversize_file_rejected_before_any_io(services):
    data = b"x" * (services.config.storage.max_file_size + 1)

    with pytest.raises(FileTooLargeError):
        await services.content_store.submit(data, "big.bin")

    assert not await services.files.exists(sha256_of(data))
    assert services.blobs.put_count == {}


async def test_file_at_size_limit_accepted(services):
    data = b"y" * services.config.storage.max_file_size
    result = await services.content_store.submit(data, "limit.bin")
    assert result.is_new


async def test_unknown_source_rejected(services):
    with pytest.raises(ValidationException):
        await services.content_store.submit(b"data", "f", source="ftp")


async def test_missing_blob_is_uploaded_again(services):
    first = await services.content_store.submit(b"orphan", "o.bin")
    await services.blobs.delete("samples", first.sha256)

    second = await services.content_store.submit(b"orphan", "o.bin")

    assert second.is_new is False
    assert await services.blobs.exists("samples", first.sha256)
    assert services.blobs.put_count[("samples", first.sha256)] == 2


async def test_blob_without_record_is_recovered(services):
    sha256 = sha256_of(b"lost record")
    await services.blobs.put("samples", sha256, b"lost record")

    result = await services.content_store.submit(b"lost record", "r.bin")

    assert result.is_new is True
    assert len(result.file.submissions) == 1


async def test_concurrent_identical_submissions_create_one_record(services):
    results = await asyncio.gather(*[
        services.content_store.submit(b"race", f"r{i}.bin") for i in range(5)
    ])

    assert sum(1 for r in results if r.is_new) == 1
    stored = await services.files.require(sha256_of(b"race"))
    assert len(stored.submissions) == 5


async def test_ingest_from_storage(services):
    sha256 = sha256_of(b"pushed")
    await services.blobs.put("samples", sha256, b"pushed")

    result = await services.content_store.ingest_from_storage(sha256.upper(), "fr")

    assert result.is_new
    assert result.file.size == 6
    submission = result.file.submissions[0]
    assert submission.filename == sha256
    assert submission.source == "api"

    again = await services.content_store.ingest_from_storage(sha256)
    assert again.is_new is False
    assert len(again.file.submissions) == 2


async def test_ingest_requires_blob(services):
    with pytest.raises(NotFoundException):
        await services.content_store.ingest_from_storage(sha256_of(b"nowhere"))


async def test_ingest_rejects_mismatched_content(services):
    sha256 = sha256_of(b"expected")
    await services.blobs.put("samples", sha256, b"something else")

    with pytest.raises(ValidationException) as excinfo:
        await services.content_store.ingest_from_storage(sha256)
    assert excinfo.value.code == "HASH_MISMATCH"


async def test_download(services):
    result = await services.content_store.submit(b"payload", "p.bin")

    assert await services.content_store.download(result.sha256) == b"payload"

    with pytest.raises(NotFoundException):
        await services.content_store.download(sha256_of(b"unknown"))
    with pytest.raises(InvalidHashError):
        await services.content_store.download("not-a-hash")


def open_archive(data: bytes) -> pyzipper.AESZipFile:
    return pyzipper.AESZipFile(io.BytesIO(data))


async def test_download_archive_is_password_protected(services):
    result = await services.content_store.submit(b"payload", "p.bin")

    data = await services.content_store.download_archive(result.sha256.upper())

    with open_archive(data) as archive:
        assert archive.namelist() == [result.sha256]
        with pytest.raises(RuntimeError):
            archive.read(result.sha256)
        with pytest.raises(RuntimeError):
            archive.read(result.sha256, pwd=b"wrong")
        assert archive.read(result.sha256, pwd=b"infected") == b"payload"

    with pytest.raises(NotFoundException):
        await services.content_store.download_archive(sha256_of(b"unknown"))


async def test_delete_file(services):
    result = await services.content_store.submit(b"doomed", "d.bin")

    await services.content_store.delete_file(result.sha256)

    assert await services.files.get(result.sha256) is None
    assert not await services.blobs.exists("samples", result.sha256)
    with pytest.raises(NotFoundException):
        await services.content_store.delete_file(result.sha256)

    again = await services.content_store.submit(b"doomed", "d.bin")
    assert again.is_new is True


async def test_delete_all_files(services):
    for data in (b"a", b"b", b"c"):
        await services.content_store.submit(data, "x")

    assert await services.content_store.delete_all_files() == 3

    assert [f async for f in services.files.iter_all()] == []
    assert not await services.blobs.exists("samples", sha256_of(b"a"))
    assert await services.content_store.delete_all_files() == 0
