"""Business logic services used by HTTP controllers.

This module holds the service classes that coordinate repositories and
domain rules: guest authentication, joining and leaving study rooms, and
room lifecycle. Each public service method is one transaction; methods
called from inside another service's transaction join it instead of
committing on their own.
"""

import logging
import uuid
from contextlib import contextmanager
from typing import List, NamedTuple, Optional, Tuple

from passlib.context import CryptContext
from sqlmodel import Session

from . import errors, models, repositories
from .auth import REFRESH, jwt_util
from .database import immediate_transactions

logger = logging.getLogger('pomodoromate.services')

TOKEN_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
_TX_FLAG = 'pomodoromate.transaction'


@contextmanager
def transactional(session: Session):
    """Commit on success, roll back on any error.

    Nested use joins the outermost transaction, so a service may call
    another service and still get all-or-nothing behaviour. The
    outermost call opens a fresh transaction that takes the SQLite write
    lock immediately.
    """
    if session.info.get(_TX_FLAG):
        yield
        return
    if session.in_transaction():
        # close the read-only transaction left by an earlier lookup
        session.commit()
    session.info[_TX_FLAG] = True
    try:
        with immediate_transactions():
            session.connection()
            yield
            session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.info.pop(_TX_FLAG, None)


class TokenPair(NamedTuple):
    access_token: str
    refresh_token: str


class AuthService:
    """Guest login, refresh-token rotation and logout."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def login(self) -> TokenPair:
        """Create an anonymous guest user and issue its first tokens."""
        with transactional(self.session):
            user = self.user_repo.save(
                models.User(nickname=f'Guest-{uuid.uuid4().hex[:6]}', is_guest=True)
            )
            tokens = self._issue(user)
        logger.info('guest login user_id=%s', user.id)
        return tokens

    def reissue(self, refresh_token: Optional[str]) -> TokenPair:
        """Exchange a valid refresh token for a new token pair.

        The presented token must be the one most recently issued to the
        user; it is replaced, so each refresh token works only once.
        """
        if not refresh_token:
            raise errors.Unauthorized('refresh token missing')
        user_id = jwt_util.decode(refresh_token, REFRESH)
        with transactional(self.session):
            user = self.user_repo.get(user_id)
            if not user or not user.refresh_token_hash:
                raise errors.Unauthorized('refresh token revoked')
            if not TOKEN_CTX.verify(refresh_token, user.refresh_token_hash):
                raise errors.Unauthorized('refresh token revoked')
            return self._issue(user)

    def logout(self, user: models.User):
        with transactional(self.session):
            user.refresh_token_hash = None
            self.session.add(user)
        logger.info('logout user_id=%s', user.id)

    def _issue(self, user: models.User) -> TokenPair:
        access_token = jwt_util.encode_access_token(user.id)
        refresh_token = jwt_util.encode_refresh_token(user.id)
        user.refresh_token_hash = TOKEN_CTX.hash(refresh_token)
        self.session.add(user)
        return TokenPair(access_token, refresh_token)


class LeaveStudyService:
    """Soft-delete a user's membership in a room."""
    def __init__(self, session: Session):
        self.session = session
        self.participant_repo = repositories.ParticipantRepository(session)

    def leave_study(self, user_id: int, study_room_id: int) -> models.Participant:
        with transactional(self.session):
            participant = self.participant_repo.find_by(user_id, study_room_id)
            if not participant or not participant.is_active():
                raise errors.ParticipantNotFound()
            self._leave(participant)
        return participant

    def leave_by_session(self, session_id: str, user_id: Optional[int] = None) -> models.Participant:
        """Leave whichever room is bound to a realtime session id.

        When `user_id` is given the session must belong to that user.
        """
        with transactional(self.session):
            participant = self.participant_repo.find_by_session_id(session_id)
            if not participant or not participant.is_active():
                raise errors.ParticipantNotFound()
            if user_id is not None and participant.user_id != user_id:
                raise errors.ParticipantNotFound()
            self._leave(participant)
        return participant

    def _leave(self, participant: models.Participant):
        participant.deactivate()
        self.session.add(participant)
        self.session.flush()
        logger.info(
            'left study room user_id=%s study_room_id=%s participant_id=%s',
            participant.user_id, participant.study_room_id, participant.id,
        )


class ParticipateService:
    """Join a user to a study room under the capacity rules.

    The target room row is locked before active participants are
    counted, so two joins racing for the last seat are serialised and
    only one of them passes the capacity check.
    """
    def __init__(self, session: Session, leave_service: Optional[LeaveStudyService] = None):
        self.session = session
        self.user_repo = repositories.UserRepository(session)
        self.study_room_repo = repositories.StudyRoomRepository(session)
        self.participant_repo = repositories.ParticipantRepository(session)
        self.leave_service = leave_service or LeaveStudyService(session)

    def participate(self, user_id: int, study_room_id: int, is_force: bool = False) -> int:
        """Join `study_room_id` and return the participant id.

        With `is_force` the user first leaves the room they are currently
        active in; the leave and the join commit together.
        """
        with transactional(self.session):
            user = self._get_user(user_id)
            self._check_participating_room(user_id, is_force)
            return self._join(user, study_room_id)

    def participate_for_creator(self, user_id: int, study_room_id: int) -> int:
        """Join a room the user just created; the current-room check is skipped."""
        with transactional(self.session):
            user = self._get_user(user_id)
            return self._join(user, study_room_id)

    def check_participating_room(self, user_id: int, is_force: bool):
        with transactional(self.session):
            self._check_participating_room(user_id, is_force)

    def _get_user(self, user_id: int) -> models.User:
        user = self.user_repo.get(user_id)
        if not user:
            raise errors.Unauthorized()
        return user

    def _check_participating_room(self, user_id: int, is_force: bool):
        participating_room = self.study_room_repo.find_participating_room_by(user_id)
        if participating_room is None:
            return
        if not is_force:
            raise errors.ParticipatingRoomExists()
        self.leave_service.leave_study(user_id, participating_room.id)

    def _join(self, user: models.User, study_room_id: int) -> int:
        study_room = self.study_room_repo.get_for_update(study_room_id)
        if not study_room:
            raise errors.StudyRoomNotFound()
        study_room.validate_incomplete()
        participant_count = self.participant_repo.count_active_by(study_room_id)
        study_room.validate_max_participant_exceeded(participant_count)
        participant_id = self._create_or_update_participant(user, study_room)
        logger.info(
            'joined study room user_id=%s study_room_id=%s participant_id=%s',
            user.id, study_room.id, participant_id,
        )
        return participant_id

    def _create_or_update_participant(self, user: models.User, study_room: models.StudyRoom) -> int:
        existing = self.participant_repo.find_by(user.id, study_room.id)
        if existing:
            existing.activate()
            self.session.add(existing)
            self.session.flush()
            return existing.id
        participant = models.Participant.of(user.id, study_room.id, user.info())
        return self.participant_repo.save(participant).id


class StudyRoomService:
    """Create, list, inspect and complete study rooms."""
    def __init__(self, session: Session):
        self.session = session
        self.study_room_repo = repositories.StudyRoomRepository(session)
        self.participant_repo = repositories.ParticipantRepository(session)
        self.participate_service = ParticipateService(session)

    def create(self, user_id: int, name: str, max_participant_count: int,
               intro: Optional[str] = None, is_force: bool = False) -> Tuple[models.StudyRoom, int]:
        """Create a room and seat its creator as the first participant.

        The creator is subject to the same one-room rule as any joiner,
        so `is_force` decides whether their current room is left.
        """
        with transactional(self.session):
            self.participate_service.check_participating_room(user_id, is_force)
            study_room = self.study_room_repo.save(models.StudyRoom(
                name=name,
                intro=intro,
                max_participant_count=max_participant_count,
                creator_id=user_id,
            ))
            participant_id = self.participate_service.participate_for_creator(user_id, study_room.id)
        logger.info('created study room study_room_id=%s creator_id=%s', study_room.id, user_id)
        return study_room, participant_id

    def list_open(self) -> List[Tuple[models.StudyRoom, int]]:
        """Return incomplete rooms with their active participant counts."""
        return [
            (room, self.participant_repo.count_active_by(room.id))
            for room in self.study_room_repo.list_incomplete()
        ]

    def detail(self, study_room_id: int) -> Tuple[models.StudyRoom, List[models.Participant]]:
        study_room = self.study_room_repo.get(study_room_id)
        if not study_room:
            raise errors.StudyRoomNotFound()
        return study_room, self.participant_repo.find_all_active_by(study_room_id)

    def complete(self, user_id: int, study_room_id: int) -> models.StudyRoom:
        """Mark a room complete; only one of its active members may do so."""
        with transactional(self.session):
            study_room = self.study_room_repo.get_for_update(study_room_id)
            if not study_room:
                raise errors.StudyRoomNotFound()
            participant = self.participant_repo.find_by(user_id, study_room_id)
            if not participant or not participant.is_active():
                raise errors.ParticipantNotFound()
            study_room.complete()
            self.session.add(study_room)
        logger.info('completed study room study_room_id=%s user_id=%s', study_room_id, user_id)
        return study_room

    def register_session(self, user_id: int, study_room_id: int, session_id: str) -> models.Participant:
        """Bind a realtime session id to the caller's active membership.

        A session id identifies one live connection. It may move between
        the caller's own memberships, but a session id held by another
        user is rejected with `SessionIdInUse`.
        """
        with transactional(self.session):
            participant = self.participant_repo.find_by(user_id, study_room_id)
            if not participant or not participant.is_active():
                raise errors.ParticipantNotFound()
            holder = self.participant_repo.find_by_session_id(session_id)
            if holder is not None and holder.user_id != user_id:
                raise errors.SessionIdInUse()
            if holder is not None and holder.id != participant.id:
                holder.session_id = None
                self.session.add(holder)
                self.session.flush()
            participant.session_id = session_id
            self.session.add(participant)
        return participant
