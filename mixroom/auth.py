"""Identity comes from the upstream auth layer as request headers.

This service never authenticates anyone; it only reads ``X-User-Id`` and
``X-User-Role`` and gates mutations on them.
"""

from dataclasses import dataclass

from flask import request

from .errors import AuthError, ForbiddenError
from .models.records import Track

ROLES = {"ADMIN", "ENGINEER", "CLIENT"}
STAFF_ROLES = {"ADMIN", "ENGINEER"}


@dataclass(frozen=True)
class User:
    id: str
    role: str


def current_user() -> User:
    user_id = (request.headers.get("X-User-Id") or "").strip()
    role = (request.headers.get("X-User-Role") or "").strip().upper()
    if not user_id or role not in ROLES:
        raise AuthError("Unauthorized")
    return User(user_id, role)


def require_track_access(user: User, track: Track) -> None:
    """Staff may change any track; clients only tracks of their own projects."""
    if user.role in STAFF_ROLES or track.owner_id == user.id:
        return
    raise ForbiddenError("Access denied")
