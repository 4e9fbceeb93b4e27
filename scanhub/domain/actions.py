"""
Typed Actions
=============
Action request bodies decoded once at the API boundary.

A body such as ``{"type": "like"}`` becomes a ``LikeAction``; unknown tags
fail schema validation before any state is touched.
"""

from dataclasses import dataclass
from typing import Any, Dict, Union

from .schemas import validate_payload


@dataclass(frozen=True)
class FollowAction:
    target: str


@dataclass(frozen=True)
class UnfollowAction:
    target: str


@dataclass(frozen=True)
class LikeAction:
    sha256: str


@dataclass(frozen=True)
class UnlikeAction:
    sha256: str


@dataclass(frozen=True)
class RescanAction:
    sha256: str


UserAction = Union[FollowAction, UnfollowAction]
FileAction = Union[LikeAction, UnlikeAction, RescanAction]
Action = Union[FollowAction, UnfollowAction, LikeAction, UnlikeAction, RescanAction]

_USER_ACTIONS = {
    "follow": FollowAction,
    "unfollow": UnfollowAction,
}

_FILE_ACTIONS = {
    "like": LikeAction,
    "unlike": UnlikeAction,
    "rescan": RescanAction,
}


def parse_user_action(target: str, payload: Dict[str, Any]) -> UserAction:
    """Decode an action aimed at the user ``target``."""
    validate_payload("user_action", payload)
    return _USER_ACTIONS[payload["type"]](target=target)


def parse_file_action(sha256: str, payload: Dict[str, Any]) -> FileAction:
    """Decode an action aimed at the file ``sha256``."""
    validate_payload("file_action", payload)
    return _FILE_ACTIONS[payload["type"]](sha256=sha256)
