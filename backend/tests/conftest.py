import os
import shutil
import tempfile
from pathlib import Path

_DB_DIR = Path(tempfile.mkdtemp(prefix="pomodoromate-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR / 'test.db'}"

import pytest
from sqlmodel import Session

from pomodoromate import models, services
from pomodoromate.database import create_db_and_tables, engine


@pytest.fixture(scope="session", autouse=True)
def database():
    """Create tables in a throwaway SQLite file for the whole run."""
    create_db_and_tables()
    yield
    engine.dispose()
    shutil.rmtree(_DB_DIR, ignore_errors=True)


@pytest.fixture
def make_user():
    """Insert a user and return its id."""
    def _make(nickname="tester"):
        with Session(engine) as session:
            user = models.User(nickname=nickname, is_guest=True)
            session.add(user)
            session.commit()
            return user.id
    return _make


@pytest.fixture
def make_room(make_user):
    """Create a room and return `(room_id, creator_id)`.

    With `seat_creator` the creator joins as the first participant,
    otherwise the room starts empty.
    """
    def _make(max_participant_count=4, seat_creator=True, creator_id=None):
        creator_id = creator_id or make_user("creator")
        with Session(engine) as session:
            if seat_creator:
                room, _ = services.StudyRoomService(session).create(
                    creator_id, name="focus", max_participant_count=max_participant_count
                )
                return room.id, creator_id
            room = models.StudyRoom(
                name="focus", max_participant_count=max_participant_count, creator_id=creator_id
            )
            session.add(room)
            session.commit()
            return room.id, creator_id
    return _make
