# tests/test_api.py
import io

import httpx
import pytest
import pyzipper

from scanhub.api.main import create_app
from scanhub.core.exceptions import MessageDeliveryError
from scanhub.core.security import create_token

from .conftest import sha256_of


@pytest.fixture
async def client(services):
    transport = httpx.ASGITransport(app=create_app(services))
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def auth(services, make_user):
    async def _auth(username: str, admin: bool = False) -> dict:
        await make_user(username, admin=admin)
        token = create_token(username, config=services.config.api)
        return {"Authorization": f"Bearer {token}"}

    return _auth


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.headers["X-Request-ID"]


async def test_submit_requires_auth(client):
    response = await client.post("/v1/files/", files={"file": ("a.bin", b"data")})
    assert response.status_code == 401


async def test_submit_and_resubmit(client, auth, published):
    headers = await auth("alice")
    headers["X-GeoIP-Country"] = "nl"

    first = await client.post("/v1/files/", files={"file": ("abc.txt", b"ABC")}, headers=headers)
    assert first.status_code == 201
    body = first.json()
    assert body["sha256"] == sha256_of(b"ABC")
    assert body["is_new"] is True
    assert body["message_id"]

    second = await client.post("/v1/files/", files={"file": ("abc.txt", b"ABC")}, headers=headers)
    assert second.status_code == 200
    assert second.json()["is_new"] is False
    assert published() == [body["sha256"], body["sha256"]]

    record = (await client.get(f"/v1/files/{body['sha256']}/")).json()
    assert len(record["submissions"]) == 2
    assert record["submissions"][0]["country"] == "NL"

    status = (await client.get(f"/v1/files/{body['sha256'].upper()}/status/")).json()
    assert status == {"sha256": body["sha256"], "status": 0, "status_name": "queued"}


async def test_oversize_upload(client, auth, services):
    headers = await auth("alice")
    data = b"z" * (services.config.storage.max_file_size + 1)

    response = await client.post("/v1/files/", files={"file": ("big", data)}, headers=headers)

    assert response.status_code == 413
    assert response.json()["error"] == "FILE_TOO_LARGE"


async def test_unknown_and_malformed_files(client):
    assert (await client.get(f"/v1/files/{sha256_of(b'x')}/")).status_code == 404
    response = await client.get("/v1/files/not-a-hash/status/")
    assert response.status_code == 400
    assert response.json()["verbose_msg"]


async def test_like_through_actions(client, auth):
    headers = await auth("alice")
    sha256 = (await client.post(
        "/v1/files/", files={"file": ("f", b"liked")}, headers=headers
    )).json()["sha256"]

    response = await client.post(f"/v1/files/{sha256}/actions/", json={"type": "like"}, headers=headers)
    assert response.status_code == 200
    assert (await client.get("/v1/users/alice/")).json()["likes"] == [sha256]

    response = await client.post(f"/v1/files/{sha256}/actions/", json={"type": "dance"}, headers=headers)
    assert response.status_code == 400

    response = await client.post(f"/v1/files/{sha256}/unlike/", headers=headers)
    assert response.status_code == 200
    assert (await client.get("/v1/users/alice/")).json()["likes"] == []


async def test_follow_and_public_profile(client, auth):
    headers = await auth("alice")
    await auth("bob")

    response = await client.post("/v1/users/bob/actions/", json={"type": "follow"}, headers=headers)
    assert response.status_code == 200

    bob = (await client.get("/v1/users/bob/")).json()
    assert bob["followers"] == ["alice"]
    assert "password" not in bob and "email" not in bob

    response = await client.post("/v1/users/alice/actions/", json={"type": "follow"}, headers=headers)
    assert response.status_code == 400

    timeline = (await client.get("/v1/users/alice/activities/")).json()["activities"]
    assert [a["type"] for a in timeline] == ["follow"]


async def test_comments(client, auth):
    alice = await auth("alice")
    bob = await auth("bob")
    sha256 = (await client.post(
        "/v1/files/", files={"file": ("f", b"discussed")}, headers=alice
    )).json()["sha256"]

    response = await client.post(f"/v1/files/{sha256}/comments/", json={"body": "hi"}, headers=alice)
    assert response.status_code == 201
    comment_id = response.json()["id"]

    listed = (await client.get(f"/v1/files/{sha256}/comments/")).json()["comments"]
    assert [c["id"] for c in listed] == [comment_id]

    response = await client.delete(f"/v1/files/{sha256}/comments/{comment_id}/", headers=bob)
    assert response.status_code == 403

    response = await client.delete(f"/v1/files/{sha256}/comments/{comment_id}/", headers=alice)
    assert response.status_code == 200
    assert (await client.get(f"/v1/files/{sha256}/comments/")).json()["comments"] == []


async def test_ingest_is_admin_only(client, auth, services):
    sha256 = sha256_of(b"bulk")
    await services.blobs.put("samples", sha256, b"bulk")

    user = await auth("alice")
    assert (await client.post(f"/v1/files/{sha256}/ingest/", headers=user)).status_code == 403

    admin = await auth("root", admin=True)
    response = await client.post(f"/v1/files/{sha256}/ingest/", headers=admin)
    assert response.status_code == 201
    assert response.json()["is_new"] is True


async def test_download(client, auth):
    headers = await auth("alice")
    sha256 = (await client.post(
        "/v1/files/", files={"file": ("f", b"payload")}, headers=headers
    )).json()["sha256"]

    response = await client.get(f"/v1/files/{sha256}/download/", headers=headers)
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/zip"
    assert f'filename="{sha256}.zip"' in response.headers["content-disposition"]
    with pyzipper.AESZipFile(io.BytesIO(response.content)) as archive:
        assert archive.read(sha256, pwd=b"infected") == b"payload"


async def test_register_and_confirm(client, services):
    response = await client.post(
        "/v1/users/",
        json={"username": "carol", "password": "password123", "email": "carol@example.com"},
    )
    assert response.status_code == 201
    assert response.json()["username"] == "carol"

    duplicate = await client.post(
        "/v1/users/",
        json={"username": "Carol", "password": "password123", "email": "c2@example.com"},
    )
    assert duplicate.status_code == 409

    await services.tasks.drain()
    link = services.notifier.outbox[0].link
    assert link.startswith("http://test/v1/auth/confirm/?token=")
    response = await client.get(link.replace("http://test", ""))
    assert response.status_code == 200

    response = await client.post("/token", data={"username": "carol", "password": "password123"})
    assert response.status_code == 200
    assert response.json()["token_type"] == "bearer"


async def test_avatar_upload(client, auth):
    headers = await auth("alice")
    await auth("bob")

    response = await client.put(
        "/v1/users/alice/avatar/", files={"file": ("a.png", b"\x89PNG", "image/png")}, headers=headers
    )
    assert response.status_code == 200
    assert (await client.get("/v1/users/alice/avatar/")).content == b"\x89PNG"

    response = await client.put(
        "/v1/users/bob/avatar/", files={"file": ("a.png", b"\x89PNG", "image/png")}, headers=headers
    )
    assert response.status_code == 403


async def test_dispatch_failure_is_server_error(client, auth, services, monkeypatch):
    headers = await auth("alice")

    async def broken_publish(message, routing_key):
        raise MessageDeliveryError("broker down")

    monkeypatch.setattr(services.broker, "publish", broken_publish)

    response = await client.post("/v1/files/", files={"file": ("f", b"stuck")}, headers=headers)

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "SCAN_DISPATCH_ERROR"
    assert body["details"]["dispatch_pending"] is True
    assert (await services.files.require(sha256_of(b"stuck"))).dispatch_pending is True


async def test_user_lists(client, auth, services):
    headers = await auth("alice")
    await auth("bob")
    sha256 = (await client.post(
        "/v1/files/", files={"file": ("l.bin", b"listed")}, headers=headers
    )).json()["sha256"]
    await client.post(f"/v1/files/{sha256}/like/", headers=headers)
    await client.post("/v1/users/bob/actions/", json={"type": "follow"}, headers=headers)

    likes = (await client.get("/v1/users/alice/likes/")).json()["likes"]
    assert [f["sha256"] for f in likes] == [sha256]
    submissions = (await client.get("/v1/users/alice/submissions/")).json()["submissions"]
    assert submissions[0]["liked"] is True
    following = (await client.get("/v1/users/alice/following/")).json()["following"]
    assert [u["username"] for u in following] == ["bob"]
    followers = (await client.get("/v1/users/bob/followers/")).json()["followers"]
    assert [(u["username"], u["followed"]) for u in followers] == [("alice", False)]

    assert (await client.get("/v1/users/nobody/likes/")).status_code == 404


async def login_as(client, services, username: str) -> dict:
    await client.post(
        "/v1/users/",
        json={"username": username, "password": "password123", "email": f"{username}@example.com"},
    )
    await services.tasks.drain()
    link = [e.link for e in services.notifier.outbox if e.username == username][-1]
    await client.get(link.replace("http://test", ""))
    response = await client.post("/token", data={"username": username, "password": "password123"})
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


async def test_update_password_and_email(client, services):
    headers = await login_as(client, services, "carol")
    other = await login_as(client, services, "dave")

    response = await client.post(
        "/v1/users/carol/password/",
        json={"oldpassword": "wrong-password", "newpassword": "new-password-1"},
        headers=headers,
    )
    assert response.status_code == 401
    response = await client.post(
        "/v1/users/carol/password/",
        json={"oldpassword": "password123", "newpassword": "new-password-1"},
        headers=other,
    )
    assert response.status_code == 403
    response = await client.post(
        "/v1/users/carol/password/",
        json={"oldpassword": "password123", "newpassword": "new-password-1"},
        headers=headers,
    )
    assert response.status_code == 200

    response = await client.post(
        "/v1/users/carol/email/",
        json={"password": "new-password-1", "email": "dave@example.com"},
        headers=headers,
    )
    assert response.status_code == 409
    response = await client.post(
        "/v1/users/carol/email/",
        json={"password": "new-password-1", "email": "carol@new.example.com"},
        headers=headers,
    )
    assert response.status_code == 200
    carol = await services.users.require("carol")
    assert carol.email == "carol@new.example.com"
    assert carol.confirmed is False


async def test_delete_file_is_admin_only(client, auth, services):
    user = await auth("alice")
    admin = await auth("root", admin=True)
    sha256 = (await client.post(
        "/v1/files/", files={"file": ("d.bin", b"delete me")}, headers=user
    )).json()["sha256"]

    assert (await client.delete(f"/v1/files/{sha256}/", headers=user)).status_code == 403
    assert (await client.delete(f"/v1/files/{sha256}/", headers=admin)).status_code == 200
    assert (await client.get(f"/v1/files/{sha256}/")).status_code == 404
    assert (await client.delete(f"/v1/files/{sha256}/", headers=admin)).status_code == 404


async def test_bulk_delete_runs_in_background(client, auth, services):
    user = await auth("alice")
    admin = await auth("root", admin=True)
    for data in (b"one", b"two"):
        await client.post("/v1/files/", files={"file": ("f", data)}, headers=user)

    assert (await client.delete("/v1/files/", headers=user)).status_code == 403
    response = await client.delete("/v1/files/", headers=admin)
    assert response.status_code == 202

    await services.tasks.drain()
    assert [f async for f in services.files.iter_all()] == []
    assert not await services.blobs.exists("samples", sha256_of(b"one"))
