"""Derived per-day stats cache. Safe to drop and rebuild from source rows."""

from __future__ import annotations

import logging
from datetime import date, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from productify import repositories
from productify.db import transaction
from productify.errors import ValidationError
from productify.services.session_state import COMPLETED

logger = logging.getLogger(__name__)

LEETCODE_CATEGORY = "leetcode"


def _as_number(value):
    if value is None:
        return 0
    number = float(value)
    return int(number) if number.is_integer() else number


async def _compute_day(session: AsyncSession, user_email: str, day: date) -> dict:
    day_iso = day.isoformat()
    sessions = await repositories.list_sessions_for_date(session, user_email, day_iso)
    leetcode_target = 0
    leetcode_completed = 0
    for row in sessions:
        for item in row["items"]:
            if item["category"] == LEETCODE_CATEGORY:
                leetcode_target += int(item["target_count"])
                leetcode_completed += int(item["completed_count"])
    habits = await repositories.list_habits(session, user_email, day_iso)
    stats = {
        "sessions_completed": sum(1 for row in sessions if row["status"] == COMPLETED),
        "sessions_total": len(sessions),
        "leetcode_completed": leetcode_completed,
        "leetcode_target": leetcode_target,
        # Counts every entry ever created for the day, resolved or not.
        "punishment_items": await repositories.count_backlog_for_origin(session, user_email, day_iso),
        "water_liters": _as_number((habits.get("water") or {}).get("current_value")),
        "workout_done": int(_as_number((habits.get("workout") or {}).get("current_value"))),
    }
    await repositories.upsert_stats(session, user_email, day_iso, stats)
    return {"date": day_iso, **stats}


async def compute_stats(user_email: str, day: date) -> dict:
    async with transaction() as session:
        return await _compute_day(session, user_email, day)


def iter_days(start: date, end: date):
    for offset in range((end - start).days + 1):
        yield start + timedelta(days=offset)


async def compute_range(user_email: str, start: date, end: date) -> list[dict]:
    if end < start:
        raise ValidationError("End date must be after start date")
    async with transaction() as session:
        results = [await _compute_day(session, user_email, day) for day in iter_days(start, end)]
    logger.info("Recomputed stats for %s over %d days", user_email, len(results))
    return results
