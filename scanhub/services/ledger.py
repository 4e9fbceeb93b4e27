"""
Submission Ledger
=================
Append-only history of submission events per file, and the per-user list
of submitted hashes.
"""

from datetime import datetime
from typing import List, Optional

from ..core.exceptions import ValidationException
from ..core.logging_config import get_component_logger
from ..domain.entities import (
    FileRecord,
    Submission,
    SubmissionSource,
    UserRecord,
    UserSubmission,
    utcnow,
)
from ..storage.repositories import FileRepository, UserRepository

logger = get_component_logger("ledger")

MAX_FILENAME_LENGTH = 255


class SubmissionLedger:
    """Keeps submission events ordered and linked to their submitters."""

    def __init__(self, files: FileRepository, users: UserRepository):
        self.files = files
        self.users = users

    @staticmethod
    def new_submission(
        filename: str,
        source: str = SubmissionSource.WEB.value,
        country: str = "",
        timestamp: Optional[datetime] = None,
    ) -> Submission:
        """
        Build a Submission stamped now.

        Raises:
            ValidationException: If the source is unknown
        """
        try:
            source = SubmissionSource(source).value
        except ValueError:
            raise ValidationException(
                f"Unknown submission source: {source}",
                field="source",
                value=source,
                expected="web or api",
            )

        return Submission(
            timestamp=timestamp or utcnow(),
            filename=(filename or "")[:MAX_FILENAME_LENGTH],
            source=source,
            country=(country or "").strip().upper()[:2],
        )

    @staticmethod
    def append(file: FileRecord, submission: Submission) -> None:
        """Append a submission and advance the last-seen timestamp."""
        file.submissions.append(submission)
        if file.last_submission is None or submission.timestamp > file.last_submission:
            file.last_submission = submission.timestamp
        if file.first_submission is None:
            file.first_submission = submission.timestamp

    async def attach_to_user(
        self,
        username: str,
        sha256: str,
        timestamp: Optional[datetime] = None,
    ) -> UserRecord:
        """
        Record ``sha256`` in the user's submissions, once.

        Raises:
            NotFoundException: If the user does not exist
        """
        timestamp = timestamp or utcnow()

        def attach(user: UserRecord) -> bool:
            if user.has_submitted(sha256):
                return False
            user.submissions.append(UserSubmission(sha256=sha256, timestamp=timestamp))
            return True

        user = await self.users.mutate(username, attach)
        logger.debug("Submission attached", data={"username": user.key, "sha256": sha256})
        return user

    async def history(self, sha256: str) -> List[Submission]:
        """
        Ordered submissions of a file.

        Raises:
            NotFoundException: If the file does not exist
        """
        file = await self.files.require(sha256)
        return list(file.submissions)
