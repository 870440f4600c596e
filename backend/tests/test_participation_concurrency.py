import threading

from sqlmodel import Session

from pomodoromate import errors, repositories, services
from pomodoromate.database import engine


def _race_for_last_seat(room_id, user_ids):
    barrier = threading.Barrier(len(user_ids))
    outcomes = {}

    def join(user_id):
        barrier.wait()
        with Session(engine) as session:
            try:
                outcomes[user_id] = services.ParticipateService(session).participate(user_id, room_id)
            except errors.PomodoroError as exc:
                outcomes[user_id] = exc

    threads = [threading.Thread(target=join, args=(uid,)) for uid in user_ids]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return outcomes


def test_two_joins_for_last_seat_only_one_wins(make_user, make_room):
    room_id, _ = make_room(max_participant_count=2)
    racers = [make_user("left"), make_user("right")]

    outcomes = _race_for_last_seat(room_id, racers)

    assert len(outcomes) == 2
    winners = [v for v in outcomes.values() if isinstance(v, int)]
    losers = [v for v in outcomes.values() if isinstance(v, Exception)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert isinstance(losers[0], errors.MaxParticipantExceeded)
    with Session(engine) as session:
        assert repositories.ParticipantRepository(session).count_active_by(room_id) == 2


def test_many_joins_never_exceed_capacity(make_user, make_room):
    room_id, _ = make_room(max_participant_count=3)
    racers = [make_user(f"racer-{i}") for i in range(6)]

    outcomes = _race_for_last_seat(room_id, racers)

    winners = [v for v in outcomes.values() if isinstance(v, int)]
    assert len(winners) == 2
    assert all(
        isinstance(v, errors.MaxParticipantExceeded)
        for v in outcomes.values() if not isinstance(v, int)
    )
    with Session(engine) as session:
        assert repositories.ParticipantRepository(session).count_active_by(room_id) == 3


def test_open_lookup_does_not_block_join(make_user, make_room):
    room_id, _ = make_room(max_participant_count=3)
    joiner = make_user("joiner")
    with Session(engine) as reader:
        repo = repositories.ParticipantRepository(reader)
        assert repo.count_active_by(room_id) == 1
        with Session(engine) as writer:
            services.ParticipateService(writer).participate(joiner, room_id)
        assert reader.in_transaction()
    with Session(engine) as session:
        assert repositories.ParticipantRepository(session).count_active_by(room_id) == 2


def test_join_after_lookup_in_same_session(make_user, make_room):
    room_id, _ = make_room(max_participant_count=3)
    joiner = make_user("same-session")
    with Session(engine) as session:
        assert repositories.UserRepository(session).get(joiner) is not None
        assert session.in_transaction()
        services.ParticipateService(session).participate(joiner, room_id)
    with Session(engine) as session:
        assert repositories.ParticipantRepository(session).count_active_by(room_id) == 2
