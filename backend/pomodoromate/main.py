"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the Pomodoro Mate backend.
Controllers are intentionally thin: they accept requests, delegate to
services, and return JSON responses. Domain errors raised by services
are turned into responses by a single exception handler.

Endpoints implemented:
- POST /auth/guest
- POST /auth/token
- POST /auth/logout
- GET /users/me
- POST /studyrooms
- GET /studyrooms
- GET /studyrooms/{study_room_id}
- POST /studyrooms/{study_room_id}/participants
- DELETE /studyrooms/{study_room_id}/participants/me
- PUT /studyrooms/{study_room_id}/participants/me/session
- POST /studyrooms/{study_room_id}/complete
- DELETE /sessions/{session_id}
"""

import json
import logging
import time
import uuid
from typing import List, Optional

from fastapi import Cookie, Depends, FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlmodel import Session

from . import errors, models, services
from .auth import REFRESH_COOKIE_NAME, clear_refresh_cookie, get_current_user, set_refresh_cookie
from .config import settings
from .database import create_db_and_tables, get_session
from .schemas import (
    LoginOut,
    ParticipantOut,
    ParticipateIn,
    ParticipateOut,
    SessionIn,
    StudyRoomCreateIn,
    StudyRoomCompleteOut,
    StudyRoomCreateOut,
    StudyRoomDetailOut,
    StudyRoomSummaryOut,
    UserOut,
)

app = FastAPI(title="Pomodoro Mate API")
logger = logging.getLogger("pomodoromate.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)

if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    log_fields = {
        "request_id": req_id,
        "path": request.url.path,
        "method": request.method,
        "client": request.client.host if request.client else "unknown",
    }
    try:
        response = await call_next(request)
    except Exception:
        log_fields["duration_ms"] = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception("request_failed %s", json.dumps(log_fields, ensure_ascii=True))
        raise
    response.headers["X-Request-ID"] = req_id
    log_fields["status_code"] = response.status_code
    log_fields["duration_ms"] = round((time.perf_counter() - started) * 1000.0, 2)
    logger.info("request_done %s", json.dumps(log_fields, ensure_ascii=True))
    return response


@app.exception_handler(errors.PomodoroError)
async def pomodoro_error_handler(request: Request, exc: errors.PomodoroError):
    level = logging.WARNING if exc.status_code == 401 else logging.INFO
    logger.log(level, "request_rejected code=%s path=%s", exc.code, request.url.path)
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


@app.post('/auth/guest', status_code=201, response_model=LoginOut)
def guest_login(response: Response, db: Session = Depends(get_session)):
    """Log in anonymously.

    A fresh guest user is created. The access token is returned in the
    body and the refresh token is set as an HTTP-only cookie.
    """
    tokens = services.AuthService(db).login()
    set_refresh_cookie(response, tokens.refresh_token)
    return LoginOut(access_token=tokens.access_token)


@app.post('/auth/token', status_code=201, response_model=LoginOut)
def reissue_token(
    response: Response,
    refresh_token: Optional[str] = Cookie(default=None, alias=REFRESH_COOKIE_NAME),
    db: Session = Depends(get_session),
):
    """Trade the refresh-token cookie for a new access token (rotating the cookie)."""
    tokens = services.AuthService(db).reissue(refresh_token)
    set_refresh_cookie(response, tokens.refresh_token)
    return LoginOut(access_token=tokens.access_token)


@app.post('/auth/logout', status_code=204)
def logout(response: Response, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    services.AuthService(db).logout(user)
    clear_refresh_cookie(response)


@app.get('/users/me', response_model=UserOut)
def me(user: models.User = Depends(get_current_user)):
    return UserOut(id=user.id, nickname=user.nickname, profile_image=user.profile_image, is_guest=user.is_guest)


@app.post('/studyrooms', status_code=201, response_model=StudyRoomCreateOut)
def create_study_room(payload: StudyRoomCreateIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Create a study room; the caller becomes its first participant."""
    study_room, participant_id = services.StudyRoomService(db).create(
        user.id,
        name=payload.name,
        intro=payload.intro,
        max_participant_count=payload.max_participant_count,
        is_force=payload.is_force,
    )
    return StudyRoomCreateOut(study_room_id=study_room.id, participant_id=participant_id)


@app.get('/studyrooms', response_model=List[StudyRoomSummaryOut])
def list_study_rooms(db: Session = Depends(get_session)):
    """List rooms that are still open, newest first."""
    return [
        StudyRoomSummaryOut(
            id=room.id,
            name=room.name,
            intro=room.intro,
            max_participant_count=room.max_participant_count,
            participant_count=count,
            created_at=room.created_at,
        )
        for room, count in services.StudyRoomService(db).list_open()
    ]


@app.get('/studyrooms/{study_room_id}', response_model=StudyRoomDetailOut)
def study_room_detail(study_room_id: int, db: Session = Depends(get_session)):
    room, participants = services.StudyRoomService(db).detail(study_room_id)
    return StudyRoomDetailOut(
        id=room.id,
        name=room.name,
        intro=room.intro,
        max_participant_count=room.max_participant_count,
        is_complete=room.is_complete,
        creator_id=room.creator_id,
        participants=[
            ParticipantOut(id=p.id, user_id=p.user_id, nickname=p.nickname, profile_image=p.profile_image)
            for p in participants
        ],
    )


@app.post('/studyrooms/{study_room_id}/participants', status_code=201, response_model=ParticipateOut)
def participate(
    study_room_id: int,
    payload: Optional[ParticipateIn] = None,
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    """Join a study room.

    Fails with 409 when the room is full or complete, or when the caller
    is already in another room and `isForce` is not set.
    """
    is_force = payload.is_force if payload else False
    participant_id = services.ParticipateService(db).participate(user.id, study_room_id, is_force=is_force)
    return ParticipateOut(participant_id=participant_id)


@app.delete('/studyrooms/{study_room_id}/participants/me', status_code=204)
def leave_study_room(study_room_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    services.LeaveStudyService(db).leave_study(user.id, study_room_id)


@app.put('/studyrooms/{study_room_id}/participants/me/session', response_model=ParticipantOut)
def register_session(
    study_room_id: int,
    payload: SessionIn,
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    """Bind the realtime connection id used to detect disconnects."""
    p = services.StudyRoomService(db).register_session(user.id, study_room_id, payload.session_id)
    return ParticipantOut(id=p.id, user_id=p.user_id, nickname=p.nickname, profile_image=p.profile_image)


@app.post('/studyrooms/{study_room_id}/complete', response_model=StudyRoomCompleteOut)
def complete_study_room(study_room_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    room = services.StudyRoomService(db).complete(user.id, study_room_id)
    return StudyRoomCompleteOut(id=room.id, is_complete=room.is_complete)


@app.delete('/sessions/{session_id}', status_code=204)
def drop_session(session_id: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Leave the room bound to one of the caller's realtime sessions."""
    services.LeaveStudyService(db).leave_by_session(session_id, user_id=user.id)


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}
