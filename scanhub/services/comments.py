"""
Comment Subsystem
=================
Comments live on the FileRecord; a copy is kept on the author's
UserRecord for the profile page.

The file side is authoritative. The author copy is written second and a
failure there is logged and left alone. Deleting a comment removes it from
the file only, unless mirror cleanup is switched on in the social settings.
"""

from typing import List, Optional

from ..core.config import get_config, SocialConfig
from ..core.exceptions import (
    NotCommentAuthorError,
    NotFoundException,
    ScanHubException,
    ValidationException,
)
from ..core.idgen import new_ulid
from ..core.logging_config import get_component_logger
from ..domain.entities import (
    ActivityType,
    Comment,
    FileRecord,
    UserComment,
    UserRecord,
    canonical_username,
    normalize_sha256,
    utcnow,
)
from ..storage.repositories import FileRepository, UserRepository

from .activity import ActivityFanout

logger = get_component_logger("comments")


class CommentSubsystem:
    def __init__(
        self,
        files: FileRepository,
        users: UserRepository,
        config: Optional[SocialConfig] = None,
    ):
        self.files = files
        self.users = users
        self.config = config or get_config().social

    def _clean_body(self, body: str) -> str:
        body = (body or "").strip()
        if not body or len(body) > self.config.max_comment_length:
            raise ValidationException(
                f"Comment must be between 1 and {self.config.max_comment_length} characters",
                field="body",
                expected=f"1..{self.config.max_comment_length} characters",
            )
        return body

    async def post_comment(self, actor: str, sha256: str, body: str) -> Comment:
        """
        Add a comment to a file.

        Returns:
            Comment: The stored comment

        Raises:
            ValidationException: If the body is empty or too long
            InvalidHashError: If ``sha256`` is not a SHA-256 digest
            NotFoundException: If the file does not exist
        """
        body = self._clean_body(body)
        sha256 = normalize_sha256(sha256)
        actor = canonical_username(actor)

        comment = Comment(
            id=new_ulid(),
            sha256=sha256,
            username=actor,
            body=body,
            timestamp=utcnow(),
        )

        def add_comment(file: FileRecord) -> None:
            file.comments.append(comment)

        await self.files.mutate(sha256, add_comment)
        logger.info("Comment posted", data={"sha256": sha256, "comment_id": comment.id})

        def mirror(user: UserRecord) -> bool:
            if any(c.id == comment.id for c in user.comments):
                return False
            user.comments.append(UserComment(
                id=comment.id,
                sha256=sha256,
                body=body,
                timestamp=comment.timestamp,
            ))
            ActivityFanout.append(user, ActivityType.COMMENT, {"sha256": sha256, "body": body})
            return True

        try:
            await self.users.mutate(actor, mirror)
        except ScanHubException as e:
            logger.error(
                f"Failed to mirror comment on author: {e.message}",
                data={"username": actor, "comment_id": comment.id},
            )

        return comment

    async def delete_comment(self, actor: str, sha256: str, comment_id: str) -> None:
        """
        Delete a comment. Only its author may do so.

        Raises:
            NotFoundException: If the file or the comment does not exist
            NotCommentAuthorError: If ``actor`` did not write the comment
        """
        sha256 = normalize_sha256(sha256)
        actor = canonical_username(actor)

        def remove(file: FileRecord) -> bool:
            comment = file.find_comment(comment_id)
            if comment is None:
                raise NotFoundException("comment", comment_id)
            if canonical_username(comment.username) != actor:
                raise NotCommentAuthorError(comment_id, actor)
            file.comments = [c for c in file.comments if c.id != comment_id]
            return True

        await self.files.mutate(sha256, remove)
        logger.info("Comment deleted", data={"sha256": sha256, "comment_id": comment_id})

        if not self.config.cleanup_comment_mirror:
            return

        def unmirror(user: UserRecord) -> bool:
            remaining = [c for c in user.comments if c.id != comment_id]
            if len(remaining) == len(user.comments):
                return False
            user.comments = remaining
            return True

        try:
            await self.users.mutate(actor, unmirror)
        except ScanHubException as e:
            logger.error(
                f"Failed to remove mirrored comment: {e.message}",
                data={"username": actor, "comment_id": comment_id},
            )

    async def list_comments(
        self,
        sha256: str,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> List[Comment]:
        """
        Comments of a file in posting order.

        Raises:
            NotFoundException: If the file does not exist
        """
        file = await self.files.require(normalize_sha256(sha256))
        end = None if limit is None else offset + limit
        return file.comments[offset:end]
