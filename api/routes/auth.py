"""
Sign-in endpoints.

POST /api/v1/auth/login   → exchange email + password for a bearer token
POST /api/v1/auth/logout  → end the current session
GET  /api/v1/auth/me      → the signed-in user

/login and /logout are reachable without a token.
"""

import logging
import sqlite3

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.security import HTTPAuthorizationCredentials

from api.auth import (
    authenticate,
    bearer_scheme,
    create_session,
    delete_session,
    get_current_user,
)
from api.database import get_db
from api.models import ErrorResponse, LoginRequest, TokenResponse, UserOut

logger = logging.getLogger("referral_intake.auth")

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post(
    "/login",
    response_model=TokenResponse,
    responses={401: {"model": ErrorResponse, "description": "Invalid email or password"}},
    summary="Sign in",
)
def login(
    body: LoginRequest,
    request: Request,
    conn: sqlite3.Connection = Depends(get_db),
) -> TokenResponse:
    user = authenticate(conn, body.email, body.password)
    if user is None:
        logger.warning("failed login for %s", body.email.strip().lower())
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )
    ttl = request.app.state.config.session_ttl_hours
    token, expires_at = create_session(conn, user["id"], ttl_hours=ttl)
    logger.info("login %s", user["email"])
    return TokenResponse(access_token=token, expires_at=expires_at)


@router.post(
    "/logout",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Sign out",
)
def logout(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    conn: sqlite3.Connection = Depends(get_db),
) -> Response:
    """Forget the presented token.  Repeating the call is harmless."""
    if credentials is not None and credentials.credentials:
        delete_session(conn, credentials.credentials)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/me", response_model=UserOut, summary="Current user")
def me(user: dict = Depends(get_current_user)) -> dict:
    return user
