from __future__ import annotations
from pydantic import BaseModel, Field, field_validator
from typing import Optional
from .constants import PASSWORD_MIN_LENGTH, USERNAME_MAX_LENGTH, USERNAME_MIN_LENGTH


class Credentials(BaseModel):
    username: str = Field(
        ..., min_length=USERNAME_MIN_LENGTH, max_length=USERNAME_MAX_LENGTH
    )
    password: str = Field(..., min_length=PASSWORD_MIN_LENGTH)

    @field_validator("username", mode="before")
    @classmethod
    def strip_username(cls, v):  # type: ignore[override]
        if isinstance(v, str):
            v = v.strip()
        return v

    @field_validator("username")
    @classmethod
    def printable_username(cls, v: str) -> str:
        if not v.replace("_", "").replace("-", "").replace(".", "").isalnum():
            raise ValueError(
                "username may only contain letters, digits, '.', '-' and '_'"
            )
        return v


class SessionOut(BaseModel):
    authenticated: bool
    username: Optional[str] = None
