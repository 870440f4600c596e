"""Authentication helpers and FastAPI security dependency.

This module provides `JwtUtil`, which signs and verifies access and
refresh tokens, the cookie helpers used to hand out refresh tokens, and
a FastAPI dependency `get_current_user` that validates the bearer token
and returns the corresponding `User` from the request's session.

Token verification raises `errors.Unauthorized`, which the application
error handler turns into a 401 response.
"""

import uuid
from datetime import datetime, timedelta, timezone

import jwt
from fastapi import Depends, Response, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from . import errors, models, repositories
from .config import settings
from .database import get_session

ACCESS = 'access'
REFRESH = 'refresh'
REFRESH_COOKIE_NAME = 'refreshToken'

bearer_scheme = HTTPBearer()


class JwtUtil:
    """Sign and verify the two kinds of tokens the API issues."""

    def __init__(self, secret: str, algorithm: str = 'HS256',
                 access_ttl: timedelta = timedelta(minutes=30),
                 refresh_ttl: timedelta = timedelta(days=14)):
        self.secret = secret
        self.algorithm = algorithm
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl

    def encode_access_token(self, user_id: int) -> str:
        return self._encode(user_id, ACCESS, self.access_ttl)

    def encode_refresh_token(self, user_id: int) -> str:
        return self._encode(user_id, REFRESH, self.refresh_ttl)

    def _encode(self, user_id: int, token_type: str, ttl: timedelta) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            'user_id': user_id,
            'type': token_type,
            'jti': uuid.uuid4().hex,
            'iat': int(now.timestamp()),
            'exp': int((now + ttl).timestamp()),
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def decode(self, token: str, token_type: str = ACCESS) -> int:
        """Verify `token` and return the user id it was issued for.

        Raises `errors.Unauthorized` when the token is expired, malformed,
        signed with another key or of the wrong type.
        """
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            raise errors.Unauthorized('token expired')
        except jwt.InvalidTokenError:
            raise errors.Unauthorized('invalid token')
        if payload.get('type') != token_type:
            raise errors.Unauthorized('invalid token type')
        user_id = payload.get('user_id')
        if not isinstance(user_id, int):
            raise errors.Unauthorized('invalid token payload')
        return user_id


jwt_util = JwtUtil(
    settings.JWT_SECRET,
    algorithm=settings.JWT_ALGORITHM,
    access_ttl=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
    refresh_ttl=timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
)


def set_refresh_cookie(response: Response, refresh_token: str):
    """Attach the refresh token as an HTTP-only cookie."""
    response.set_cookie(
        key=REFRESH_COOKIE_NAME,
        value=refresh_token,
        max_age=int(jwt_util.refresh_ttl.total_seconds()),
        path='/',
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite='lax',
    )


def clear_refresh_cookie(response: Response):
    response.delete_cookie(
        key=REFRESH_COOKIE_NAME,
        path='/',
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite='lax',
    )


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Security(bearer_scheme),
    db: Session = Depends(get_session),
) -> models.User:
    """FastAPI dependency that returns the authenticated user.

    The function extracts the bearer token from the request, decodes it
    and looks the user up in the request's session so services see the
    same instance.
    """
    user_id = jwt_util.decode(credentials.credentials, ACCESS)
    user = repositories.UserRepository(db).get(user_id)
    if not user:
        raise errors.Unauthorized('user not found')
    return user
