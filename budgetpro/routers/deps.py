"""Shared FastAPI dependencies.

Settings come from ``app.state.settings`` so an app built with a settings
override (tests, temp DBs) never falls back to the process-wide defaults.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, Request
from starlette import status

from budgetpro.core.config import Settings, get_settings
from budgetpro.db.dal import Database


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def get_db(settings: Settings = Depends(get_app_settings)) -> Database:
    return Database(settings.db_path)


def session_token(
    request: Request, settings: Settings = Depends(get_app_settings)
) -> Optional[str]:
    return request.cookies.get(settings.session_cookie_name)


def optional_user(
    token: Optional[str] = Depends(session_token),
    db: Database = Depends(get_db),
) -> Optional[Dict[str, Any]]:
    if not token:
        return None
    return db.get_session_user(token)


def require_user(
    user: Optional[Dict[str, Any]] = Depends(optional_user),
) -> Dict[str, Any]:
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="login required"
        )
    return user
