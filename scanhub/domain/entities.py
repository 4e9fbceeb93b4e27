"""
Domain Entities
===============
File and user aggregates plus the value objects stored inside them.

FileRecord and UserRecord are independent documents. They reference each
other only by identifier (content hash, username, comment id), never by
object, so a missing target shows up as a stale identifier.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Optional, Dict, Any, List

from ..core.exceptions import InvalidHashError

SHA256_RE = re.compile(r"^[a-f0-9]{64}$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def normalize_sha256(value: str) -> str:
    """
    Lower-case and validate a SHA-256 hex digest.

    Raises:
        InvalidHashError: If the value is not 64 hexadecimal characters
    """
    sha256 = (value or "").strip().lower()
    if not SHA256_RE.match(sha256):
        raise InvalidHashError(value)
    return sha256


def canonical_username(value: str) -> str:
    """Usernames are case-insensitive; the lower-case form is the key."""
    return (value or "").strip().lower()


def add_unique(items: List[Any], value: Any) -> bool:
    """Append ``value`` unless present. Returns True when the list changed."""
    if value in items:
        return False
    items.append(value)
    return True


def remove_value(items: List[Any], value: Any) -> bool:
    """Remove every occurrence of ``value``. Returns True when the list changed."""
    if value not in items:
        return False
    items[:] = [item for item in items if item != value]
    return True


class FileStatus(IntEnum):
    """Analysis status of a file. Advanced by the scan workers only."""

    QUEUED = 0
    PROCESSING = 1
    FINISHED = 2


class SubmissionSource(str, Enum):
    WEB = "web"
    API = "api"


class ActivityType(str, Enum):
    SUBMIT = "submit"
    LIKE = "like"
    COMMENT = "comment"
    FOLLOW = "follow"


@dataclass(frozen=True)
class Submission:
    """One event of a file being presented to the system."""

    timestamp: datetime
    filename: str
    source: str
    country: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": _ts(self.timestamp),
            "filename": self.filename,
            "source": self.source,
            "country": self.country,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Submission":
        return cls(
            timestamp=_parse_ts(data["date"]),
            filename=data.get("filename", ""),
            source=data.get("source", SubmissionSource.WEB.value),
            country=data.get("country", ""),
        )


@dataclass(frozen=True)
class Comment:
    """A comment on a file, as stored on the file document."""

    id: str
    sha256: str
    username: str
    body: str
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sha256": self.sha256,
            "username": self.username,
            "body": self.body,
            "timestamp": _ts(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Comment":
        return cls(
            id=data["id"],
            sha256=data.get("sha256", ""),
            username=data["username"],
            body=data.get("body", ""),
            timestamp=_parse_ts(data["timestamp"]),
        )


@dataclass
class FileRecord:
    """
    Aggregate for one distinct content hash.

    ``submissions`` is append-only. ``analysis`` holds scan results written
    by external workers and is opaque here.
    """

    sha256: str
    size: int
    status: FileStatus = FileStatus.QUEUED
    first_submission: Optional[datetime] = None
    last_submission: Optional[datetime] = None
    last_scanned: Optional[datetime] = None
    submissions: List[Submission] = field(default_factory=list)
    comments: List[Comment] = field(default_factory=list)
    analysis: Dict[str, Any] = field(default_factory=dict)
    dispatch_pending: bool = False

    @classmethod
    def create(cls, sha256: str, size: int, submission: Submission) -> "FileRecord":
        return cls(
            sha256=sha256,
            size=size,
            status=FileStatus.QUEUED,
            first_submission=submission.timestamp,
            last_submission=submission.timestamp,
            submissions=[submission],
        )

    @property
    def comments_count(self) -> int:
        return len(self.comments)

    def find_comment(self, comment_id: str) -> Optional[Comment]:
        for comment in self.comments:
            if comment.id == comment_id:
                return comment
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sha256": self.sha256,
            "size": self.size,
            "status": int(self.status),
            "first_submission": _ts(self.first_submission),
            "last_submission": _ts(self.last_submission),
            "last_scanned": _ts(self.last_scanned),
            "submissions": [s.to_dict() for s in self.submissions],
            "comments": [c.to_dict() for c in self.comments],
            "comments_count": self.comments_count,
            "analysis": self.analysis,
            "dispatch_pending": self.dispatch_pending,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FileRecord":
        return cls(
            sha256=data["sha256"],
            size=data.get("size", 0),
            status=FileStatus(data.get("status", FileStatus.QUEUED)),
            first_submission=_parse_ts(data.get("first_submission")),
            last_submission=_parse_ts(data.get("last_submission")),
            last_scanned=_parse_ts(data.get("last_scanned")),
            submissions=[Submission.from_dict(s) for s in data.get("submissions", [])],
            comments=[Comment.from_dict(c) for c in data.get("comments", [])],
            analysis=data.get("analysis") or {},
            dispatch_pending=data.get("dispatch_pending", False),
        )


@dataclass(frozen=True)
class Activity:
    """Immutable timeline entry recording a user action."""

    timestamp: datetime
    type: ActivityType
    content: Dict[str, str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": _ts(self.timestamp),
            "type": self.type.value,
            "content": dict(self.content),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Activity":
        return cls(
            timestamp=_parse_ts(data["timestamp"]),
            type=ActivityType(data["type"]),
            content=dict(data.get("content") or {}),
        )


@dataclass(frozen=True)
class UserSubmission:
    sha256: str
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {"sha256": self.sha256, "timestamp": _ts(self.timestamp)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserSubmission":
        return cls(sha256=data["sha256"], timestamp=_parse_ts(data["timestamp"]))


@dataclass(frozen=True)
class UserComment:
    """Denormalized copy of a comment kept on the author's document."""

    id: str
    sha256: str
    body: str
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sha256": self.sha256,
            "body": self.body,
            "timestamp": _ts(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserComment":
        return cls(
            id=data["id"],
            sha256=data["sha256"],
            body=data.get("body", ""),
            timestamp=_parse_ts(data["timestamp"]),
        )


@dataclass
class UserRecord:
    """
    Aggregate for one user account.

    The ``*_count`` values are computed from the collections, so they always
    match the cardinality of the sets they describe.
    """

    username: str
    password: str
    email: str
    confirmed: bool = False
    admin: bool = False
    has_avatar: bool = False
    member_since: Optional[datetime] = None
    last_seen: Optional[datetime] = None
    activities: List[Activity] = field(default_factory=list)
    submissions: List[UserSubmission] = field(default_factory=list)
    likes: List[str] = field(default_factory=list)
    following: List[str] = field(default_factory=list)
    followers: List[str] = field(default_factory=list)
    comments: List[UserComment] = field(default_factory=list)

    @property
    def key(self) -> str:
        return canonical_username(self.username)

    @property
    def following_count(self) -> int:
        return len(self.following)

    @property
    def followers_count(self) -> int:
        return len(self.followers)

    @property
    def likes_count(self) -> int:
        return len(self.likes)

    @property
    def submissions_count(self) -> int:
        return len(self.submissions)

    @property
    def comments_count(self) -> int:
        return len(self.comments)

    def has_submitted(self, sha256: str) -> bool:
        return any(s.sha256 == sha256 for s in self.submissions)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "username": self.username,
            "password": self.password,
            "email": self.email,
            "confirmed": self.confirmed,
            "admin": self.admin,
            "has_avatar": self.has_avatar,
            "member_since": _ts(self.member_since),
            "last_seen": _ts(self.last_seen),
            "activities": [a.to_dict() for a in self.activities],
            "submissions": [s.to_dict() for s in self.submissions],
            "submissions_count": self.submissions_count,
            "likes": list(self.likes),
            "likes_count": self.likes_count,
            "following": list(self.following),
            "following_count": self.following_count,
            "followers": list(self.followers),
            "followers_count": self.followers_count,
            "comments": [c.to_dict() for c in self.comments],
            "comments_count": self.comments_count,
        }

    def to_public_dict(self) -> Dict[str, Any]:
        """Profile view without credentials, email or the activity log."""
        data = self.to_dict()
        for private in ("password", "email", "activities"):
            data.pop(private)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserRecord":
        return cls(
            username=data["username"],
            password=data.get("password", ""),
            email=data.get("email", ""),
            confirmed=data.get("confirmed", False),
            admin=data.get("admin", False),
            has_avatar=data.get("has_avatar", False),
            member_since=_parse_ts(data.get("member_since")),
            last_seen=_parse_ts(data.get("last_seen")),
            activities=[Activity.from_dict(a) for a in data.get("activities", [])],
            submissions=[UserSubmission.from_dict(s) for s in data.get("submissions", [])],
            likes=list(data.get("likes", [])),
            following=list(data.get("following", [])),
            followers=list(data.get("followers", [])),
            comments=[UserComment.from_dict(c) for c in data.get("comments", [])],
        )
