"""
Accounts
========
Registration, email confirmation, password reset, login and avatars.
"""

from typing import Optional

from ..core.config import get_config, APIConfig, StorageConfig
from ..core.exceptions import (
    AuthenticationError,
    DuplicateUserError,
    FileTooLargeError,
    NotFoundException,
    ValidationException,
    VersionConflictError,
)
from ..core.logging_config import get_component_logger
from ..core.security import (
    CONFIRM_EMAIL,
    RESET_PASSWORD,
    create_token,
    decode_token,
    get_password_hash,
    verify_password,
)
from ..domain.entities import UserRecord, canonical_username, utcnow
from ..domain.schemas import validate_payload
from ..storage.blobs import BlobStore
from ..storage.repositories import UserRepository

from .notifications import CONFIRM, RESET, BackgroundTaskRunner, EmailNotifier

logger = get_component_logger("accounts")


class AccountService:
    def __init__(
        self,
        users: UserRepository,
        blobs: BlobStore,
        notifier: EmailNotifier,
        tasks: BackgroundTaskRunner,
        api_config: Optional[APIConfig] = None,
        storage_config: Optional[StorageConfig] = None,
    ):
        self.users = users
        self.blobs = blobs
        self.notifier = notifier
        self.tasks = tasks
        self.api_config = api_config or get_config().api
        self.storage_config = storage_config or get_config().storage

    def _send_later(self, user: UserRecord, link: str, template: str) -> None:
        self.tasks.spawn(
            self.notifier.send(user.username, link, user.email, template),
            name=f"email:{template}:{user.key}",
        )

    def _confirm_link(self, username: str, base_url: Optional[str]) -> str:
        token = create_token(username, CONFIRM_EMAIL, config=self.api_config)
        base = (base_url or self.api_config.ui_address).rstrip("/")
        return f"{base}/v1/auth/confirm/?token={token}"

    async def register(
        self,
        username: str,
        password: str,
        email: str,
        base_url: Optional[str] = None,
    ) -> UserRecord:
        """
        Create an unconfirmed account and send the confirmation email.

        Raises:
            SchemaValidationError: If a field is malformed
            DuplicateUserError: If the username or email is taken
        """
        validate_payload("register", {"username": username, "password": password, "email": email})
        email = email.strip().lower()

        if await self.users.exists(username):
            raise DuplicateUserError("username", username)
        if await self.users.find_by_email(email) is not None:
            raise DuplicateUserError("email", email)

        now = utcnow()
        user = UserRecord(
            username=username,
            password=get_password_hash(password),
            email=email,
            member_since=now,
            last_seen=now,
        )
        try:
            await self.users.create(username, user)
        except VersionConflictError:
            raise DuplicateUserError("username", username)

        logger.info("User registered", data={"username": user.key})
        self._send_later(user, self._confirm_link(user.key, base_url), CONFIRM)
        return user

    async def confirm(self, token: str) -> UserRecord:
        """
        Mark an account confirmed.

        Raises:
            AuthenticationError: If the token is invalid or of another type
            NotFoundException: If the user no longer exists
            ValidationException: If the account is already confirmed
        """
        username = decode_token(token, CONFIRM_EMAIL, config=self.api_config)

        def mark(user: UserRecord) -> None:
            if user.confirmed:
                raise ValidationException(
                    "Account already confirmed",
                    field="token",
                    code="ALREADY_CONFIRMED",
                )
            user.confirmed = True

        user = await self.users.mutate(username, mark)
        logger.info("Account confirmed", data={"username": user.key})
        return user

    async def _require_email(self, email: str) -> UserRecord:
        validate_payload("email", {"email": email})
        user = await self.users.find_by_email(email)
        if user is None:
            raise NotFoundException("user", email, message="Email does not exist")
        return user

    async def resend_confirmation(self, email: str, base_url: Optional[str] = None) -> None:
        """
        Raises:
            NotFoundException: If no account uses ``email``
        """
        user = await self._require_email(email)
        self._send_later(user, self._confirm_link(user.key, base_url), CONFIRM)

    async def request_password_reset(self, email: str) -> None:
        """
        Raises:
            NotFoundException: If no account uses ``email``
        """
        user = await self._require_email(email)
        token = create_token(user.key, RESET_PASSWORD, config=self.api_config)
        link = f"{self.api_config.ui_address.rstrip('/')}/reset-password?token={token}"
        self._send_later(user, link, RESET)
        logger.info("Password reset requested", data={"username": user.key})

    async def reset_password(self, token: str, new_password: str) -> UserRecord:
        """
        Raises:
            AuthenticationError: If the token is invalid or of another type
            SchemaValidationError: If the new password is malformed
        """
        username = decode_token(token, RESET_PASSWORD, config=self.api_config)
        validate_payload("password", {"password": new_password})
        hashed = get_password_hash(new_password)

        def set_password(user: UserRecord) -> None:
            user.password = hashed

        user = await self.users.mutate(username, set_password)
        logger.info("Password reset", data={"username": user.key})
        return user

    async def login(self, username: str, password: str) -> str:
        """
        Check credentials and issue an access token.

        Raises:
            AuthenticationError: On unknown user, bad password or an
                unconfirmed account
        """
        validate_payload("login", {"username": username, "password": password})
        user = await self.users.get(username)
        if user is None or not verify_password(password, user.password):
            raise AuthenticationError("Username or password does not match", code="BAD_CREDENTIALS")
        if not user.confirmed:
            raise AuthenticationError(
                "Account not confirmed, please confirm your email",
                code="ACCOUNT_NOT_CONFIRMED",
            )

        now = utcnow()

        def touch(u: UserRecord) -> None:
            u.last_seen = now

        await self.users.mutate(username, touch)
        logger.info("User logged in", data={"username": user.key})
        return create_token(user.key, config=self.api_config)

    async def _check_password(self, username: str, password: str) -> UserRecord:
        user = await self.users.require(username)
        if not verify_password(password, user.password):
            raise AuthenticationError("Password does not match", code="BAD_CREDENTIALS")
        return user

    async def update_password(self, username: str, old_password: str, new_password: str) -> UserRecord:
        """
        Replace the password of an account after checking the current one.

        Raises:
            SchemaValidationError: If the new password is malformed
            AuthenticationError: If ``old_password`` is wrong
            NotFoundException: If the user does not exist
        """
        validate_payload("password_update", {"oldpassword": old_password, "newpassword": new_password})
        await self._check_password(username, old_password)
        hashed = get_password_hash(new_password)

        def set_password(user: UserRecord) -> None:
            user.password = hashed

        user = await self.users.mutate(username, set_password)
        logger.info("Password updated", data={"username": user.key})
        return user

    async def update_email(
        self,
        username: str,
        password: str,
        email: str,
        base_url: Optional[str] = None,
    ) -> UserRecord:
        """
        Move an account to a new email address. The account becomes
        unconfirmed and a confirmation email goes to the new address.

        Raises:
            SchemaValidationError: If the email is malformed
            AuthenticationError: If ``password`` is wrong
            DuplicateUserError: If another account uses ``email``
        """
        validate_payload("email_update", {"password": password, "email": email})
        email = email.strip().lower()
        user = await self._check_password(username, password)
        if user.email == email:
            return user

        owner = await self.users.find_by_email(email)
        if owner is not None and owner.key != user.key:
            raise DuplicateUserError("email", email)

        def set_email(u: UserRecord) -> bool:
            if u.email == email:
                return False
            u.email = email
            u.confirmed = False
            return True

        user = await self.users.mutate(username, set_email)
        logger.info("Email updated", data={"username": user.key})
        self._send_later(user, self._confirm_link(user.key, base_url), CONFIRM)
        return user

    async def get_user(self, username: str) -> UserRecord:
        """
        Raises:
            NotFoundException: If the user does not exist
        """
        return await self.users.require(username)

    async def ensure_admin(
        self,
        username: Optional[str] = None,
        email: Optional[str] = None,
        password: Optional[str] = None,
    ) -> Optional[UserRecord]:
        """Create the confirmed admin account if a password is configured."""
        username = username or self.api_config.admin_username
        email = (email or self.api_config.admin_email).lower()
        password = password or self.api_config.admin_password
        if not password:
            return None

        existing = await self.users.get(username)
        if existing is not None:
            return existing

        now = utcnow()
        admin = UserRecord(
            username=username,
            password=get_password_hash(password),
            email=email,
            confirmed=True,
            admin=True,
            member_since=now,
            last_seen=now,
        )
        try:
            await self.users.create(username, admin)
            logger.info("Admin account created", data={"username": admin.key})
        except VersionConflictError:
            admin = await self.users.require(username)
        return admin

    async def update_avatar(self, username: str, data: bytes, content_type: str = "image/png") -> UserRecord:
        """
        Raises:
            FileTooLargeError: If the image exceeds the avatar size limit
            NotFoundException: If the user does not exist
        """
        limit = self.storage_config.max_avatar_size
        if len(data) > limit:
            raise FileTooLargeError(len(data), limit, "avatar")
        if not data:
            raise ValidationException("Empty avatar", field="file")

        await self.users.require(username)
        key = canonical_username(username)
        await self.blobs.put(self.storage_config.avatars_bucket, key, data, content_type)

        def flag(user: UserRecord) -> bool:
            if user.has_avatar:
                return False
            user.has_avatar = True
            return True

        return await self.users.mutate(username, flag)

    async def get_avatar(self, username: str) -> bytes:
        """
        Raises:
            NotFoundException: If the user or their avatar does not exist
        """
        user = await self.users.require(username)
        if not user.has_avatar:
            raise NotFoundException("avatar", user.key)
        return await self.blobs.get(self.storage_config.avatars_bucket, user.key)
