"""
Social Graph Mutator
====================
Follows and likes.

A follow touches two documents: the actor's ``following`` and the target's
``followers``. They are written one after the other, each as its own
conditional update, without a transaction spanning both. Every step is
idempotent, so repeating an interrupted call brings both sides back in
agreement.
"""

from ..core.exceptions import SelfActionError
from ..core.logging_config import get_component_logger
from ..domain.actions import (
    Action,
    FollowAction,
    LikeAction,
    RescanAction,
    UnfollowAction,
    UnlikeAction,
)
from ..domain.entities import (
    ActivityType,
    UserRecord,
    add_unique,
    canonical_username,
    normalize_sha256,
    remove_value,
)
from ..storage.repositories import FileRepository, UserRepository

from .activity import ActivityFanout
from .workflow import StatusWorkflow

logger = get_component_logger("social")


class SocialGraphMutator:
    """Applies follow, unfollow, like and unlike actions."""

    def __init__(
        self,
        users: UserRepository,
        files: FileRepository,
        activity: ActivityFanout,
        workflow: StatusWorkflow,
    ):
        self.users = users
        self.files = files
        self.activity = activity
        self.workflow = workflow

    async def follow(self, actor: str, target: str) -> UserRecord:
        """
        Make ``actor`` follow ``target``.

        Returns:
            UserRecord: The actor after the update

        Raises:
            SelfActionError: If actor and target are the same user
            NotFoundException: If either user does not exist
            ConcurrencyConflictError: If retries are exhausted
        """
        actor, target = canonical_username(actor), canonical_username(target)
        if actor == target:
            raise SelfActionError(actor, "follow")

        await self.users.require(target)

        def add_following(user: UserRecord) -> bool:
            if not add_unique(user.following, target):
                return False
            ActivityFanout.append(user, ActivityType.FOLLOW, {"user": target})
            return True

        def add_follower(user: UserRecord) -> bool:
            return add_unique(user.followers, actor)

        user = await self.users.mutate(actor, add_following)
        await self.users.mutate(target, add_follower)

        logger.info("Follow", data={"actor": actor, "target": target})
        return user

    async def unfollow(self, actor: str, target: str) -> UserRecord:
        """
        Make ``actor`` stop following ``target``. No activity is recorded.

        Raises:
            SelfActionError: If actor and target are the same user
            NotFoundException: If either user does not exist
            ConcurrencyConflictError: If retries are exhausted
        """
        actor, target = canonical_username(actor), canonical_username(target)
        if actor == target:
            raise SelfActionError(actor, "unfollow")

        await self.users.require(target)

        user = await self.users.mutate(actor, lambda u: remove_value(u.following, target))
        await self.users.mutate(target, lambda u: remove_value(u.followers, actor))

        logger.info("Unfollow", data={"actor": actor, "target": target})
        return user

    async def like(self, actor: str, sha256: str) -> UserRecord:
        """
        Add a file to the actor's likes. Liking twice records one activity.

        Raises:
            InvalidHashError: If ``sha256`` is not a SHA-256 digest
            NotFoundException: If the file or the actor does not exist
        """
        sha256 = normalize_sha256(sha256)
        await self.files.require(sha256)

        def add_like(user: UserRecord) -> bool:
            if not add_unique(user.likes, sha256):
                return False
            ActivityFanout.append(user, ActivityType.LIKE, {"sha256": sha256})
            return True

        user = await self.users.mutate(actor, add_like)
        logger.info("Like", data={"actor": user.key, "sha256": sha256})
        return user

    async def unlike(self, actor: str, sha256: str) -> UserRecord:
        """
        Remove a file from the actor's likes. No activity is recorded and
        the file itself is not consulted, so a deleted file can still be
        unliked.

        Raises:
            InvalidHashError: If ``sha256`` is not a SHA-256 digest
            NotFoundException: If the actor does not exist
        """
        sha256 = normalize_sha256(sha256)
        user = await self.users.mutate(actor, lambda u: remove_value(u.likes, sha256))
        logger.info("Unlike", data={"actor": user.key, "sha256": sha256})
        return user

    async def apply(self, actor: str, action: Action) -> None:
        """Execute a decoded action on behalf of ``actor``."""
        if isinstance(action, FollowAction):
            await self.follow(actor, action.target)
        elif isinstance(action, UnfollowAction):
            await self.unfollow(actor, action.target)
        elif isinstance(action, LikeAction):
            await self.like(actor, action.sha256)
        elif isinstance(action, UnlikeAction):
            await self.unlike(actor, action.sha256)
        elif isinstance(action, RescanAction):
            await self.workflow.rescan(action.sha256)
        else:
            raise TypeError(f"Unsupported action: {action!r}")
