from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Response
from starlette import status

from budgetpro.core.config import Settings
from budgetpro.db.dal import Database
from budgetpro.models.auth import Credentials, SessionOut
from budgetpro.routers.deps import get_app_settings, get_db, optional_user, session_token
from budgetpro.services import auth as auth_service

router = APIRouter(prefix="/api/auth", tags=["auth"])


# Helpers ----------------------------------------------------------


def _set_session_cookie(response: Response, settings: Settings, token: str) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=settings.session_ttl_hours * 3600,
        httponly=True,
        samesite="lax",
    )


# Routes -----------------------------------------------------------
@router.post(
    "/register",
    response_model=SessionOut,
    status_code=201,
    summary="Create an account and open a session",
)
async def register(
    payload: Credentials,
    response: Response,
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    try:
        user_id = auth_service.register_user(db, payload.username, payload.password)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    token = auth_service.open_session(db, user_id, settings.session_ttl_hours)
    _set_session_cookie(response, settings, token)
    return SessionOut(authenticated=True, username=payload.username)


@router.post("/login", response_model=SessionOut, summary="Open a session")
async def login(
    payload: Credentials,
    response: Response,
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    user_id = auth_service.authenticate(db, payload.username, payload.password)
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="invalid username or password",
        )
    token = auth_service.open_session(db, user_id, settings.session_ttl_hours)
    _set_session_cookie(response, settings, token)
    return SessionOut(authenticated=True, username=payload.username)


@router.post("/logout", response_model=SessionOut, summary="Close the current session")
async def logout(
    response: Response,
    token: Optional[str] = Depends(session_token),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    auth_service.close_session(db, token)
    response.delete_cookie(settings.session_cookie_name)
    return SessionOut(authenticated=False)


@router.get("/check", response_model=SessionOut, summary="Report the session state")
async def check(user: Optional[Dict[str, Any]] = Depends(optional_user)):
    if user is None:
        return SessionOut(authenticated=False)
    return SessionOut(authenticated=True, username=user["username"])
