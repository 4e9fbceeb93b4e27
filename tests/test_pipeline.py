# tests/test_pipeline.py
import pytest

from scanhub.core.exceptions import MessageDeliveryError, ScanDispatchError
from scanhub.domain.entities import ActivityType, FileStatus

from .conftest import sha256_of


async def test_every_submission_dispatches_once(services, make_user, published):
    await make_user("alice")

    first = await services.pipeline.submit(b"sample", "s.exe", "alice")
    second = await services.pipeline.submit(b"sample", "s.exe", "alice")

    assert first.is_new and not second.is_new
    assert published() == [first.sha256, first.sha256]
    assert first.request.metadata.message_id != second.request.metadata.message_id


async def test_submit_activity_only_on_first_sighting(services, make_user):
    await make_user("alice")
    await make_user("bob")

    await services.pipeline.submit(b"sample", "s.exe", "alice")
    await services.pipeline.submit(b"sample", "s.exe", "bob")
    await services.pipeline.submit(b"sample", "s.exe", "alice")

    alice = await services.users.require("alice")
    bob = await services.users.require("bob")
    assert [a.type for a in alice.activities] == [ActivityType.SUBMIT]
    assert bob.activities == []


async def test_user_submissions_are_unique(services, make_user):
    await make_user("alice")

    await services.pipeline.submit(b"one", "1", "alice")
    await services.pipeline.submit(b"one", "1", "alice")
    await services.pipeline.submit(b"two", "2", "alice")

    alice = await services.users.require("alice")
    assert [s.sha256 for s in alice.submissions] == [sha256_of(b"one"), sha256_of(b"two")]
    assert alice.submissions_count == 2


async def test_dispatch_failure_keeps_upload_and_flags_file(services, make_user, published, monkeypatch):
    await make_user("alice")

    async def broken_publish(message, routing_key):
        raise MessageDeliveryError("broker down", message_id=message.metadata.message_id)

    monkeypatch.setattr(services.broker, "publish", broken_publish)

    with pytest.raises(ScanDispatchError) as excinfo:
        await services.pipeline.submit(b"stuck", "stuck.bin", "alice")
    assert excinfo.value.details["dispatch_pending"] is True

    sha256 = sha256_of(b"stuck")
    file = await services.files.require(sha256)
    assert file.dispatch_pending is True
    assert len(file.submissions) == 1
    assert await services.blobs.exists("samples", sha256)

    monkeypatch.undo()
    await services.workflow.rescan(sha256)

    file = await services.files.require(sha256)
    assert file.dispatch_pending is False
    assert published() == [sha256]


async def test_successful_resubmission_clears_dispatch_pending(services, make_user, monkeypatch):
    await make_user("alice")

    async def broken_publish(message, routing_key):
        raise MessageDeliveryError("broker down")

    monkeypatch.setattr(services.broker, "publish", broken_publish)
    with pytest.raises(ScanDispatchError):
        await services.pipeline.submit(b"retry me", "r.bin", "alice")
    monkeypatch.undo()

    outcome = await services.pipeline.submit(b"retry me", "r.bin", "alice")

    assert outcome.file.dispatch_pending is False
    assert (await services.files.require(outcome.sha256)).dispatch_pending is False


async def test_ingest_dispatches(services, published):
    sha256 = sha256_of(b"direct")
    await services.blobs.put("samples", sha256, b"direct")

    outcome = await services.pipeline.ingest(sha256)

    assert outcome.is_new
    assert published() == [sha256]


async def test_abc_scenario(services, make_user, published):
    await make_user("alice")
    await make_user("bob")
    h = sha256_of(b"ABC")

    first = await services.pipeline.submit(b"ABC", "abc.txt", "alice")
    assert first.sha256 == h
    assert first.file.status == FileStatus.QUEUED
    assert len(first.file.submissions) == 1
    assert published() == [h]

    second = await services.pipeline.submit(b"ABC", "abc.txt", "bob")
    assert second.sha256 == h
    assert second.is_new is False
    assert len(second.file.submissions) == 2
    assert services.blobs.put_count[("samples", h)] == 1
    assert published() == [h, h]

    await services.social.like("alice", h)
    await services.social.unlike("alice", h)

    alice = await services.users.require("alice")
    assert alice.likes == []
    assert alice.likes_count == 0
