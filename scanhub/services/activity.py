"""
Activity Fanout
===============
Records user actions on the acting user's timeline.
"""

from typing import Dict, List, Optional

from ..core.logging_config import get_component_logger
from ..domain.entities import Activity, ActivityType, UserRecord, utcnow
from ..storage.repositories import UserRepository

logger = get_component_logger("activity")


class ActivityFanout:
    """
    Appends Activity entries to UserRecords.

    Activities are only ever appended, never edited or removed.
    """

    def __init__(self, users: UserRepository):
        self.users = users

    @staticmethod
    def append(user: UserRecord, activity_type: ActivityType, content: Dict[str, str]) -> Activity:
        """
        Append an activity to an in-memory UserRecord.

        Used inside another mutation so the state change and its activity
        are persisted by the same write.
        """
        activity = Activity(timestamp=utcnow(), type=activity_type, content=dict(content))
        user.activities.append(activity)
        return activity

    async def record(
        self,
        username: str,
        activity_type: ActivityType,
        content: Dict[str, str],
    ) -> UserRecord:
        """
        Append an activity as its own conditional write.

        Raises:
            NotFoundException: If the user does not exist
            ConcurrencyConflictError: If retries are exhausted
        """
        def add(user: UserRecord) -> None:
            self.append(user, activity_type, content)

        user = await self.users.mutate(username, add)
        logger.debug(
            "Activity recorded",
            data={"username": user.key, "type": activity_type.value},
        )
        return user

    async def timeline(
        self,
        username: str,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> List[Activity]:
        """
        One user's activities, newest first.

        Raises:
            NotFoundException: If the user does not exist
        """
        user = await self.users.require(username)
        activities = list(reversed(user.activities))
        end = None if limit is None else offset + limit
        return activities[offset:end]
