"""Water and workout habit rows, read by the stats cache."""

from __future__ import annotations

from datetime import date

from sqlalchemy.ext.asyncio import AsyncSession

from productify import repositories
from productify.db import transaction
from productify.errors import ValidationError
from productify.settings import get_settings

WATER = "water"
WORKOUT = "workout"
WATER_TARGET_KEY = "water_target"
DEFAULT_WATER_STEP = 0.5


async def _water_target(session: AsyncSession, user_email: str) -> float:
    raw = await repositories.get_setting(session, user_email, WATER_TARGET_KEY)
    if raw:
        try:
            return float(raw)
        except ValueError:
            pass
    return float(get_settings().default_water_target)


async def _ensure_day(session: AsyncSession, user_email: str, day_iso: str) -> dict[str, dict]:
    await repositories.ensure_habit(session, user_email, day_iso, WATER, await _water_target(session, user_email))
    await repositories.ensure_habit(session, user_email, day_iso, WORKOUT, 1)
    return await repositories.list_habits(session, user_email, day_iso)


async def get_day(user_email: str, day: date) -> dict[str, dict]:
    async with transaction() as session:
        return await _ensure_day(session, user_email, day.isoformat())


async def add_water(user_email: str, day: date, amount: float | None = None) -> dict:
    step = DEFAULT_WATER_STEP if amount is None else float(amount)
    if step <= 0:
        raise ValidationError("amount must be positive")
    day_iso = day.isoformat()
    async with transaction() as session:
        water = (await _ensure_day(session, user_email, day_iso))[WATER]
        value = min(float(water["current_value"] or 0) + step, float(water["target_value"]))
        await repositories.set_habit_value(session, user_email, day_iso, WATER, value)
        return (await repositories.list_habits(session, user_email, day_iso))[WATER]


async def toggle_workout(user_email: str, day: date) -> dict:
    day_iso = day.isoformat()
    async with transaction() as session:
        workout = (await _ensure_day(session, user_email, day_iso))[WORKOUT]
        value = 0 if float(workout["current_value"] or 0) else 1
        await repositories.set_habit_value(session, user_email, day_iso, WORKOUT, value)
        return (await repositories.list_habits(session, user_email, day_iso))[WORKOUT]


async def get_water_target(user_email: str) -> float:
    async with transaction() as session:
        return await _water_target(session, user_email)


async def set_water_target(user_email: str, target: float) -> float:
    if target is None or float(target) <= 0:
        raise ValidationError("Water target must be positive")
    async with transaction() as session:
        await repositories.set_setting(session, user_email, WATER_TARGET_KEY, str(float(target)))
    return float(target)
