"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
study rooms, participants). Repositories return SQLModel objects and
only flush; committing is left to the service that owns the
transaction so a multi-step workflow succeeds or fails as a whole.
"""

from typing import List, Optional
from sqlmodel import Session, select
from sqlalchemy import func
from . import models


class UserRepository:
    """CRUD operations for `User` objects."""
    def __init__(self, session: Session):
        self.session = session

    def save(self, user: models.User) -> models.User:
        """Persist a user and return the managed instance with its id."""
        self.session.add(user)
        self.session.flush()
        self.session.refresh(user)
        return user

    def get(self, user_id: int) -> Optional[models.User]:
        """Get a `User` by primary key."""
        return self.session.get(models.User, user_id)


class StudyRoomRepository:
    """Queries over `StudyRoom` rows."""
    def __init__(self, session: Session):
        self.session = session

    def save(self, study_room: models.StudyRoom) -> models.StudyRoom:
        self.session.add(study_room)
        self.session.flush()
        self.session.refresh(study_room)
        return study_room

    def get(self, study_room_id: int) -> Optional[models.StudyRoom]:
        return self.session.get(models.StudyRoom, study_room_id)

    def get_for_update(self, study_room_id: int) -> Optional[models.StudyRoom]:
        """Fetch a room while holding an exclusive row lock on it.

        `populate_existing` makes sure an instance already in the
        identity map is refreshed from the locked row.
        """
        stmt = (
            select(models.StudyRoom)
            .where(models.StudyRoom.id == study_room_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.session.exec(stmt).first()

    def find_participating_room_by(self, user_id: int) -> Optional[models.StudyRoom]:
        """Return the incomplete room the user is currently active in, if any."""
        stmt = (
            select(models.StudyRoom)
            .join(models.Participant, models.Participant.study_room_id == models.StudyRoom.id)
            .where(
                models.Participant.user_id == user_id,
                models.Participant.status == models.Status.ACTIVE,
                models.StudyRoom.is_complete == False,  # noqa: E712
            )
        )
        return self.session.exec(stmt).first()

    def list_incomplete(self) -> List[models.StudyRoom]:
        """Return open rooms, newest first."""
        stmt = (
            select(models.StudyRoom)
            .where(models.StudyRoom.is_complete == False)  # noqa: E712
            .order_by(models.StudyRoom.created_at.desc(), models.StudyRoom.id.desc())
        )
        return self.session.exec(stmt).all()


class ParticipantRepository:
    """Filtered lookups over `Participant` rows."""
    def __init__(self, session: Session):
        self.session = session

    def save(self, participant: models.Participant) -> models.Participant:
        self.session.add(participant)
        self.session.flush()
        self.session.refresh(participant)
        return participant

    def count_active_by(self, study_room_id: int) -> int:
        """Count ACTIVE participants in a room."""
        stmt = select(func.count()).select_from(models.Participant).where(
            models.Participant.study_room_id == study_room_id,
            models.Participant.status == models.Status.ACTIVE,
        )
        return self.session.exec(stmt).one()

    def find_all_active_by(self, study_room_id: int) -> List[models.Participant]:
        """List ACTIVE participants in a room in join order."""
        stmt = select(models.Participant).where(
            models.Participant.study_room_id == study_room_id,
            models.Participant.status == models.Status.ACTIVE,
        ).order_by(models.Participant.id)
        return self.session.exec(stmt).all()

    def find_by(self, user_id: int, study_room_id: int) -> Optional[models.Participant]:
        """Return the (user, room) participant regardless of status."""
        stmt = select(models.Participant).where(
            models.Participant.study_room_id == study_room_id,
            models.Participant.user_id == user_id,
        )
        return self.session.exec(stmt).first()

    def find_by_session_id(self, session_id: str) -> Optional[models.Participant]:
        stmt = select(models.Participant).where(models.Participant.session_id == session_id)
        return self.session.exec(stmt).first()
