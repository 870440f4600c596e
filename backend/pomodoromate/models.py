"""SQLModel data models.

This module defines the application's database tables using SQLModel:
users, study rooms and the participants that link the two. Rules that
belong to a single record (capacity checks, activation) live on the
model classes themselves.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import NamedTuple, Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field

from . import errors


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Status(str, Enum):
    """Lifecycle status of a participant record."""
    ACTIVE = "ACTIVE"
    DELETED = "DELETED"


class UserInfo(NamedTuple):
    """Display fields copied from a user onto their participant records."""
    nickname: str
    profile_image: Optional[str] = None


class User(SQLModel, table=True):
    """A registered or guest user.

    Fields:
    - `nickname`: display name shown to other room members
    - `is_guest`: True for anonymous accounts created by guest login
    - `refresh_token_hash`: hash of the last refresh token issued, or
      `None` once the user logs out
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    nickname: str = Field(index=True)
    profile_image: Optional[str] = None
    is_guest: bool = False
    refresh_token_hash: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)

    def info(self) -> UserInfo:
        return UserInfo(nickname=self.nickname, profile_image=self.profile_image)


class StudyRoom(SQLModel, table=True):
    """A capacity-bounded study session container."""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    intro: Optional[str] = None
    max_participant_count: int
    is_complete: bool = Field(default=False, index=True)
    creator_id: int = Field(foreign_key='user.id')
    created_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None

    def validate_incomplete(self):
        if self.is_complete:
            raise errors.StudyRoomAlreadyComplete()

    def validate_max_participant_exceeded(self, participant_count: int):
        """Raise if one more active participant would exceed the maximum."""
        if participant_count >= self.max_participant_count:
            raise errors.MaxParticipantExceeded()

    def complete(self):
        self.validate_incomplete()
        self.is_complete = True
        self.completed_at = utc_now()


class Participant(SQLModel, table=True):
    """Membership of a user in a study room.

    There is at most one row per (user, room); leaving only flips
    `status` to DELETED so a later re-join reuses the same id.
    """
    __table_args__ = (
        UniqueConstraint('user_id', 'study_room_id', name='uq_participant_user_room'),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key='user.id', index=True)
    study_room_id: int = Field(foreign_key='studyroom.id', index=True)
    status: Status = Field(default=Status.ACTIVE, index=True)
    session_id: Optional[str] = Field(default=None, unique=True, index=True)
    nickname: str
    profile_image: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def of(cls, user_id: int, study_room_id: int, user_info: UserInfo) -> 'Participant':
        return cls(
            user_id=user_id,
            study_room_id=study_room_id,
            nickname=user_info.nickname,
            profile_image=user_info.profile_image,
        )

    def is_active(self) -> bool:
        return self.status == Status.ACTIVE

    def activate(self):
        self.status = Status.ACTIVE

    def deactivate(self):
        self.status = Status.DELETED
        self.session_id = None
