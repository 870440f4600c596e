"""Typed domain errors.

Services raise these; the handler registered in `main` turns them into
JSON responses with the matching HTTP status. Every error is terminal
for the request that triggered it and the surrounding transaction is
rolled back.
"""


class PomodoroError(Exception):
    """Base class for all expected request failures."""
    status_code = 400
    code = 'BAD_REQUEST'
    message = 'bad request'

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)
        self.message = message or self.message

    def to_response(self) -> dict:
        return {'detail': self.message, 'code': self.code}


class Unauthorized(PomodoroError):
    status_code = 401
    code = 'UNAUTHORIZED'
    message = 'unauthorized'


class StudyRoomNotFound(PomodoroError):
    status_code = 404
    code = 'STUDY_ROOM_NOT_FOUND'
    message = 'study room not found'


class ParticipantNotFound(PomodoroError):
    status_code = 404
    code = 'PARTICIPANT_NOT_FOUND'
    message = 'participant not found'


class ParticipatingRoomExists(PomodoroError):
    status_code = 409
    code = 'PARTICIPATING_ROOM_EXISTS'
    message = 'already participating in another study room'


class StudyRoomAlreadyComplete(PomodoroError):
    status_code = 409
    code = 'STUDY_ROOM_ALREADY_COMPLETE'
    message = 'study room is already complete'


class MaxParticipantExceeded(PomodoroError):
    status_code = 409
    code = 'MAX_PARTICIPANT_EXCEEDED'
    message = 'study room is full'


class SessionIdInUse(PomodoroError):
    status_code = 409
    code = 'SESSION_ID_IN_USE'
    message = 'session id is bound to another user'

