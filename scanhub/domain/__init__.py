"""
ScanHub Domain Module
=====================
Aggregates, value objects, typed actions and payload schemas.
"""

from .entities import (
    FileStatus,
    SubmissionSource,
    ActivityType,
    Submission,
    Comment,
    FileRecord,
    Activity,
    UserSubmission,
    UserComment,
    UserRecord,
    normalize_sha256,
    canonical_username,
    utcnow,
)
from .actions import (
    FollowAction,
    UnfollowAction,
    LikeAction,
    UnlikeAction,
    RescanAction,
    parse_user_action,
    parse_file_action,
)
from .schemas import validate_payload

__all__ = [
    "FileStatus",
    "SubmissionSource",
    "ActivityType",
    "Submission",
    "Comment",
    "FileRecord",
    "Activity",
    "UserSubmission",
    "UserComment",
    "UserRecord",
    "normalize_sha256",
    "canonical_username",
    "utcnow",
    "FollowAction",
    "UnfollowAction",
    "LikeAction",
    "UnlikeAction",
    "RescanAction",
    "parse_user_action",
    "parse_file_action",
    "validate_payload",
]
