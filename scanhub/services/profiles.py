"""
Profile Reader
==============
List views over a user's likes, submissions, following and followers.

The id lists on a UserRecord are resolved against their target documents.
Targets that no longer exist (a deleted file, a removed account) are
skipped rather than reported.
"""

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, TypeVar

from ..core.logging_config import get_component_logger
from ..domain.entities import FileRecord, UserRecord
from ..storage.repositories import DocumentRepository, FileRepository, UserRepository

logger = get_component_logger("profiles")

T = TypeVar("T")


async def _resolve(repository: DocumentRepository[T], keys: Sequence[str]) -> List[T]:
    found = await asyncio.gather(*(repository.get(key) for key in keys))
    entities = [entity for entity in found if entity is not None]
    if len(entities) != len(keys):
        logger.debug("Skipped stale references", data={"missing": len(keys) - len(entities)})
    return entities


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _first_filename(file: FileRecord) -> Optional[str]:
    return file.submissions[0].filename if file.submissions else None


class ProfileReader:
    def __init__(self, users: UserRepository, files: FileRepository):
        self.users = users
        self.files = files

    async def likes(self, username: str) -> List[Dict[str, Any]]:
        """
        Files liked by ``username``.

        Raises:
            NotFoundException: If the user does not exist
        """
        user = await self.users.require(username)
        files = await _resolve(self.files, user.likes)
        return [
            {
                "sha256": f.sha256,
                "filename": _first_filename(f),
                "size": f.size,
                "status": int(f.status),
            }
            for f in files
        ]

    async def submissions(self, username: str) -> List[Dict[str, Any]]:
        """
        Files submitted by ``username``, with the time of their first
        submission by that user and whether they also liked it.

        Raises:
            NotFoundException: If the user does not exist
        """
        user = await self.users.require(username)
        files = await _resolve(self.files, [s.sha256 for s in user.submissions])
        submitted = {s.sha256: s.timestamp for s in user.submissions}
        return [
            {
                "sha256": f.sha256,
                "timestamp": _iso(submitted[f.sha256]),
                "filename": _first_filename(f),
                "liked": f.sha256 in user.likes,
            }
            for f in files
        ]

    async def following(self, username: str) -> List[Dict[str, Any]]:
        """
        Raises:
            NotFoundException: If the user does not exist
        """
        user = await self.users.require(username)
        targets = await _resolve(self.users, user.following)
        return [self._summary(target) for target in targets]

    async def followers(self, username: str) -> List[Dict[str, Any]]:
        """
        Followers of ``username``. ``followed`` tells whether the user
        follows them back.

        Raises:
            NotFoundException: If the user does not exist
        """
        user = await self.users.require(username)
        followers = await _resolve(self.users, user.followers)
        return [
            dict(self._summary(follower), followed=follower.key in user.following)
            for follower in followers
        ]

    @staticmethod
    def _summary(user: UserRecord) -> Dict[str, Any]:
        return {"username": user.key, "member_since": _iso(user.member_since)}
