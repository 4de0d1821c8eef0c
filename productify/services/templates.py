"""Weekly recurring template: day-code matching, payload validation, storage.

Day codes follow the schedule generator's convention: ``0`` is Sunday through
``6`` Saturday, plus the group codes in :class:`DayGroup`.
"""

from __future__ import annotations

import logging
from datetime import date
from enum import IntEnum

from sqlalchemy.ext.asyncio import AsyncSession

from productify import repositories
from productify.db import transaction
from productify.errors import ValidationError

logger = logging.getLogger(__name__)

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]

DEFAULT_TYPE = "normal"
DEFAULT_TEMPLATE_TYPE = "fixed"
DEFAULT_CATEGORY = "other"
DEFAULT_ICON = "📚"
DEFAULT_COLOR = "#10b981"
SESSION_TYPES = {"fixed", "productive", "habit", "break", "normal", "punishment"}


class DayGroup(IntEnum):
    EVERY_DAY = 7
    WEEKDAYS = 8
    WEEKENDS = 9


_GROUP_ALIASES = {
    "everyday": DayGroup.EVERY_DAY,
    "daily": DayGroup.EVERY_DAY,
    "weekdays": DayGroup.WEEKDAYS,
    "weekday": DayGroup.WEEKDAYS,
    "weekends": DayGroup.WEEKENDS,
    "weekend": DayGroup.WEEKENDS,
}


def weekday_index(day: date) -> int:
    return (day.weekday() + 1) % 7


def matches_day(day_code: int, weekday: int) -> bool:
    if 0 <= day_code <= 6:
        return day_code == weekday
    if day_code == DayGroup.EVERY_DAY:
        return True
    if day_code == DayGroup.WEEKDAYS:
        return 1 <= weekday <= 5
    if day_code == DayGroup.WEEKENDS:
        return weekday in (0, 6)
    raise ValidationError(f"Unknown day code: {day_code}")


def codes_for_weekday(weekday: int) -> list[int]:
    candidates = [weekday, *(int(group) for group in DayGroup)]
    return [code for code in candidates if matches_day(code, weekday)]


def parse_day_code(value) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if 0 <= value <= max(DayGroup) else None
    key = "".join(ch for ch in str(value or "").lower() if ch.isalpha())
    if not key:
        return None
    for index, name in enumerate(DAY_NAMES):
        if name.lower() == key:
            return index
    group = _GROUP_ALIASES.get(key)
    return int(group) if group is not None else None


def _pick(raw: dict, *keys):
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return None


def parse_target_count(value) -> int:
    if value is None or value == "":
        return 1
    if isinstance(value, bool):
        raise ValidationError("targetCount must be a positive integer")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError("targetCount must be a positive integer")
    if number != value and str(number) != str(value).strip():
        raise ValidationError("targetCount must be a positive integer")
    if number < 1:
        raise ValidationError("targetCount must be a positive integer")
    return number


def clean_items(raw_items, session_category: str) -> list[dict]:
    if not isinstance(raw_items, list):
        return []
    items = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            continue
        title = str(raw.get("title") or "").strip()
        if not title:
            continue
        items.append(
            {
                "title": title,
                "category": str(raw.get("category") or session_category or DEFAULT_CATEGORY),
                "target_count": parse_target_count(_pick(raw, "targetCount", "target_count")),
                "backlog_entry_id": _pick(raw, "backlogEntryId", "backlog_entry_id"),
            }
        )
    return items


def clean_session(raw, default_type: str = DEFAULT_TYPE) -> dict | None:
    """Apply the shared defaults to one candidate session; ``None`` drops it."""
    if not isinstance(raw, dict):
        return None
    name = str(raw.get("name") or "").strip()
    if not name:
        return None
    category = str(raw.get("category") or DEFAULT_CATEGORY)
    session_type = str(raw.get("type") or default_type)
    if session_type not in SESSION_TYPES:
        session_type = default_type
    return {
        "name": name,
        "start_time": repositories.normalize_time_value(_pick(raw, "startTime", "start_time")),
        "end_time": repositories.normalize_time_value(_pick(raw, "endTime", "end_time")),
        "type": session_type,
        "category": category,
        "icon": str(raw.get("icon") or DEFAULT_ICON),
        "color": str(raw.get("color") or DEFAULT_COLOR),
        "items": clean_items(raw.get("items"), category),
    }


async def candidates_for(session: AsyncSession, user_email: str, day: date) -> list[dict]:
    weekday = weekday_index(day)
    rows = await repositories.list_template_rows(session, user_email, codes_for_weekday(weekday))
    candidates = []
    for row in rows:
        cleaned = clean_session(row)
        if cleaned is not None:
            candidates.append(cleaned)
    return candidates


async def list_template(user_email: str) -> list[dict]:
    async with transaction() as session:
        return await repositories.list_template_rows(session, user_email)


async def replace_template(user_email: str, payload: dict) -> list[dict]:
    if not isinstance(payload, dict):
        raise ValidationError("Template payload must map day names to session lists")
    rows = []
    for day_name, day_sessions in payload.items():
        day_code = parse_day_code(day_name)
        if day_code is None:
            logger.debug("Skipping unknown template day %r", day_name)
            continue
        for raw in day_sessions or []:
            cleaned = clean_session(raw, default_type=DEFAULT_TEMPLATE_TYPE)
            if cleaned is None:
                continue
            cleaned["day_code"] = day_code
            cleaned["items"] = [
                {"title": item["title"], "category": item["category"], "targetCount": item["target_count"]}
                for item in cleaned["items"]
            ]
            rows.append(cleaned)
    async with transaction() as session:
        await repositories.replace_template_rows(session, user_email, rows)
        stored = await repositories.list_template_rows(session, user_email)
    logger.info("Replaced weekly template for %s with %d entries", user_email, len(stored))
    return stored
