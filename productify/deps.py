"""FastAPI dependencies shared by the routers."""

from __future__ import annotations

from datetime import date as dt_date

from fastapi import Header, HTTPException, Path

from productify.settings import get_settings


async def require_user_email(
    x_user_email: str | None = Header(default=None, alias="X-User-Email"),
    x_backend_token: str | None = Header(default=None, alias="X-Backend-Token"),
) -> str:
    settings = get_settings()
    if not x_backend_token or x_backend_token != settings.backend_session_secret:
        raise HTTPException(status_code=401, detail="Invalid backend token")
    if not x_user_email:
        raise HTTPException(status_code=401, detail="Missing user email")
    email = x_user_email.strip().lower()
    if settings.allowed_emails and email not in settings.allowed_emails:
        raise HTTPException(status_code=403, detail="User not allowed")
    return email


def parse_day(value: str) -> dt_date:
    try:
        return dt_date.fromisoformat(str(value))
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid date format")


async def path_day(day: str = Path(...)) -> dt_date:
    return parse_day(day)


def current_day() -> dt_date:
    return get_settings().today()
