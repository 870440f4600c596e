"""Pydantic request/response schemas used by the API.

Schemas keep API input/output shapes stable and provide validation for
controller handlers and tests. JSON keys are camelCase for the web
client; Python attributes stay snake_case.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .config import settings


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class LoginOut(CamelModel):
    """Authentication response containing an access token."""
    access_token: str = Field(alias='accessToken')


class UserOut(CamelModel):
    id: int
    nickname: str
    profile_image: Optional[str] = Field(default=None, alias='profileImage')
    is_guest: bool = Field(alias='isGuest')


class ParticipateIn(CamelModel):
    """Join request; `isForce` allows leaving the current room first."""
    is_force: bool = Field(default=False, alias='isForce')


class ParticipateOut(CamelModel):
    participant_id: int = Field(alias='participantId')


class StudyRoomCreateIn(CamelModel):
    """Payload for creating a study room."""
    name: str = Field(min_length=1, max_length=50)
    intro: Optional[str] = Field(default=None, max_length=200)
    max_participant_count: int = Field(alias='maxParticipantCount', ge=1, le=settings.MAX_ROOM_CAPACITY)
    is_force: bool = Field(default=False, alias='isForce')


class StudyRoomCreateOut(CamelModel):
    study_room_id: int = Field(alias='studyRoomId')
    participant_id: int = Field(alias='participantId')


class StudyRoomSummaryOut(CamelModel):
    id: int
    name: str
    intro: Optional[str] = None
    max_participant_count: int = Field(alias='maxParticipantCount')
    participant_count: int = Field(alias='participantCount')
    created_at: datetime = Field(alias='createdAt')


class ParticipantOut(CamelModel):
    id: int
    user_id: int = Field(alias='userId')
    nickname: str
    profile_image: Optional[str] = Field(default=None, alias='profileImage')


class StudyRoomDetailOut(CamelModel):
    id: int
    name: str
    intro: Optional[str] = None
    max_participant_count: int = Field(alias='maxParticipantCount')
    is_complete: bool = Field(alias='isComplete')
    creator_id: int = Field(alias='creatorId')
    participants: List[ParticipantOut]


class StudyRoomCompleteOut(CamelModel):
    id: int
    is_complete: bool = Field(alias='isComplete')


class SessionIn(CamelModel):
    """Realtime session id to bind to the caller's membership."""
    session_id: str = Field(alias='sessionId', min_length=1, max_length=100)
