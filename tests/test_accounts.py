# tests/test_accounts.py
from urllib.parse import parse_qs, urlparse

import pytest

from scanhub.core.exceptions import (
    AuthenticationError,
    DuplicateUserError,
    FileTooLargeError,
    NotFoundException,
    SchemaValidationError,
    ValidationException,
)
from scanhub.core.security import RESET_PASSWORD, create_token, decode_token


def token_from(link: str) -> str:
    return parse_qs(urlparse(link).query)["token"][0]


async def sent(services):
    await services.tasks.drain()
    return services.notifier.outbox


async def test_register_sends_confirmation(services):
    user = await services.accounts.register("Alice", "password123", "Alice@Example.com")

    assert user.key == "alice"
    assert user.email == "alice@example.com"
    assert user.confirmed is False
    assert user.password != "password123"

    outbox = await sent(services)
    assert len(outbox) == 1
    email = outbox[0]
    assert email.template == "confirm"
    assert email.recipient == "alice@example.com"
    assert email.link.startswith("http://ui.test/v1/auth/confirm/?token=")
    assert email.link in email.text and email.link in email.html


async def test_register_rejects_duplicates(services):
    await services.accounts.register("alice", "password123", "alice@example.com")

    with pytest.raises(DuplicateUserError) as excinfo:
        await services.accounts.register("ALICE", "password123", "other@example.com")
    assert excinfo.value.field == "username"

    with pytest.raises(DuplicateUserError) as excinfo:
        await services.accounts.register("bob", "password123", "ALICE@example.com")
    assert excinfo.value.field == "email"


@pytest.mark.parametrize("username,password,email", [
    ("bad name", "password123", "a@example.com"),
    ("alice", "short", "a@example.com"),
    ("alice", "password123", "not-an-email"),
])
async def test_register_validates_fields(services, username, password, email):
    with pytest.raises(SchemaValidationError):
        await services.accounts.register(username, password, email)


async def test_confirm_then_login(services):
    await services.accounts.register("alice", "password123", "alice@example.com")

    with pytest.raises(AuthenticationError) as excinfo:
        await services.accounts.login("alice", "password123")
    assert excinfo.value.code == "ACCOUNT_NOT_CONFIRMED"

    token = token_from((await sent(services))[0].link)
    user = await services.accounts.confirm(token)
    assert user.confirmed is True

    with pytest.raises(ValidationException) as excinfo:
        await services.accounts.confirm(token)
    assert excinfo.value.code == "ALREADY_CONFIRMED"

    access = await services.accounts.login("Alice", "password123")
    assert decode_token(access, config=services.config.api) == "alice"

    with pytest.raises(AuthenticationError) as excinfo:
        await services.accounts.login("alice", "wrong-password")
    assert excinfo.value.code == "BAD_CREDENTIALS"


async def test_confirm_rejects_other_token_types(services):
    await services.accounts.register("alice", "password123", "alice@example.com")
    access = create_token("alice", config=services.config.api)

    with pytest.raises(AuthenticationError) as excinfo:
        await services.accounts.confirm(access)
    assert excinfo.value.code == "INVALID_TOKEN_TYPE"


async def test_resend_confirmation(services):
    await services.accounts.register("alice", "password123", "alice@example.com")
    await services.accounts.resend_confirmation("alice@example.com", "http://api.test/")

    outbox = await sent(services)
    assert len(outbox) == 2
    assert outbox[1].link.startswith("http://api.test/v1/auth/confirm/?token=")

    with pytest.raises(NotFoundException):
        await services.accounts.resend_confirmation("nobody@example.com")


async def test_password_reset(services):
    await services.accounts.register("alice", "password123", "alice@example.com")
    await services.accounts.confirm(token_from((await sent(services))[0].link))

    await services.accounts.request_password_reset("alice@example.com")
    email = (await sent(services))[-1]
    assert email.template == "reset"
    assert email.link.startswith("http://ui.test/reset-password?token=")

    await services.accounts.reset_password(token_from(email.link), "new-password-1")

    assert await services.accounts.login("alice", "new-password-1")
    with pytest.raises(AuthenticationError):
        await services.accounts.login("alice", "password123")


async def test_reset_requires_reset_token(services):
    await services.accounts.register("alice", "password123", "alice@example.com")
    confirm_token = token_from((await sent(services))[0].link)

    with pytest.raises(AuthenticationError):
        await services.accounts.reset_password(confirm_token, "new-password-1")

    reset_token = create_token("alice", RESET_PASSWORD, config=services.config.api)
    with pytest.raises(SchemaValidationError):
        await services.accounts.reset_password(reset_token, "short")


async def test_ensure_admin(services):
    admin = await services.accounts.ensure_admin("root", "root@example.com", "admin-password")
    assert admin.admin and admin.confirmed

    again = await services.accounts.ensure_admin("root", "root@example.com", "admin-password")
    assert again.key == admin.key
    assert await services.accounts.login("root", "admin-password")


async def test_no_admin_without_password(services):
    assert await services.accounts.ensure_admin() is None


async def test_avatar(services, make_user):
    await make_user("alice")

    with pytest.raises(NotFoundException):
        await services.accounts.get_avatar("alice")

    user = await services.accounts.update_avatar("alice", b"\x89PNG", "image/png")
    assert user.has_avatar
    assert await services.accounts.get_avatar("alice") == b"\x89PNG"

    limit = services.config.storage.max_avatar_size
    with pytest.raises(FileTooLargeError):
        await services.accounts.update_avatar("alice", b"x" * (limit + 1))
    with pytest.raises(ValidationException):
        await services.accounts.update_avatar("alice", b"")


async def confirmed(services, username="alice", password="password123"):
    await services.accounts.register(username, password, f"{username}@example.com")
    link = [e.link for e in await sent(services) if e.recipient == f"{username}@example.com"][-1]
    return await services.accounts.confirm(token_from(link))


async def test_update_password(services):
    await confirmed(services)

    with pytest.raises(AuthenticationError) as excinfo:
        await services.accounts.update_password("alice", "wrong-password", "new-password-1")
    assert excinfo.value.code == "BAD_CREDENTIALS"
    with pytest.raises(SchemaValidationError):
        await services.accounts.update_password("alice", "password123", "short")

    await services.accounts.update_password("alice", "password123", "new-password-1")

    assert await services.accounts.login("alice", "new-password-1")
    with pytest.raises(AuthenticationError):
        await services.accounts.login("alice", "password123")


async def test_update_email_requires_reconfirmation(services):
    await confirmed(services)

    with pytest.raises(AuthenticationError):
        await services.accounts.update_email("alice", "wrong-password", "new@example.com")

    user = await services.accounts.update_email("alice", "password123", "New@Example.com")
    assert user.email == "new@example.com"
    assert user.confirmed is False

    email = (await sent(services))[-1]
    assert email.template == "confirm"
    assert email.recipient == "new@example.com"

    with pytest.raises(AuthenticationError) as excinfo:
        await services.accounts.login("alice", "password123")
    assert excinfo.value.code == "ACCOUNT_NOT_CONFIRMED"

    await services.accounts.confirm(token_from(email.link))
    assert await services.accounts.login("alice", "password123")


async def test_update_email_to_same_address_is_noop(services):
    await confirmed(services)
    before = len(await sent(services))

    user = await services.accounts.update_email("alice", "password123", "alice@example.com")

    assert user.confirmed is True
    assert len(await sent(services)) == before


async def test_update_email_rejects_taken_address(services):
    await confirmed(services, "alice")
    await confirmed(services, "bob")

    with pytest.raises(DuplicateUserError) as excinfo:
        await services.accounts.update_email("alice", "password123", "bob@example.com")
    assert excinfo.value.field == "email"
    assert (await services.users.require("alice")).email == "alice@example.com"
