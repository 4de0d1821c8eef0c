"""Expands the weekly template plus pending backlog into one day's sessions.

A date is always replaced wholesale: the old sessions and items for
``(user, date)`` are deleted and the new set inserted inside one transaction.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from datetime import date

from productify import repositories
from productify.db import transaction
from productify.errors import ValidationError
from productify.services import templates

logger = logging.getLogger(__name__)

PUNISHMENT_SESSION_NAME = "Punishment Backlog"
BACKLOG_SUFFIX = " (BACKLOG)"
_TIME_RE = re.compile(r"^\d{2}:\d{2}$")


def backlog_item_title(title: str) -> str:
    return f"{title}{BACKLOG_SUFFIX}"


def strip_backlog_suffix(title: str) -> str:
    return re.sub(r"\s*\(BACKLOG\)\s*$", "", title or "")


def start_time_sort_key(start_time: str) -> tuple[int, str]:
    value = str(start_time or "")
    if _TIME_RE.match(value):
        return (0, value)
    return (1, "")


def dominant_category(entries: list[dict]) -> str:
    counts = Counter(entry.get("category") or templates.DEFAULT_CATEGORY for entry in entries)
    if not counts:
        return templates.DEFAULT_CATEGORY
    return counts.most_common(1)[0][0]


def punishment_session(entries: list[dict]) -> dict:
    return {
        "name": PUNISHMENT_SESSION_NAME,
        "startTime": repositories.FLEXIBLE,
        "endTime": repositories.FLEXIBLE,
        "type": "punishment",
        "category": dominant_category(entries),
        "icon": "🔥",
        "color": "#ef4444",
        "items": [
            {
                "title": backlog_item_title(entry["title"]),
                "category": entry.get("category"),
                "targetCount": entry["missed_count"],
                "backlogEntryId": entry["id"],
            }
            for entry in entries
        ],
    }


def _parse_date(value) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (TypeError, ValueError):
        raise ValidationError("date must be an ISO calendar date")


async def materialize(user_email: str, day, override_sessions: list[dict] | None = None) -> list[dict]:
    day = _parse_date(day)
    day_iso = day.isoformat()
    async with transaction() as session:
        await repositories.lock_user(session, user_email)
        if override_sessions:
            candidates = [templates.clean_session(raw) for raw in override_sessions]
        else:
            candidates = await templates.candidates_for(session, user_email, day)

        pending = await repositories.list_backlog(
            session, user_email, unresolved_only=True, assigned_to=day_iso
        )
        if pending:
            candidates.append(templates.clean_session(punishment_session(pending)))

        candidates = [candidate for candidate in candidates if candidate is not None]
        candidates.sort(key=lambda candidate: start_time_sort_key(candidate["start_time"]))

        old_ids = await repositories.list_session_ids_for_date(session, user_email, day_iso)
        await repositories.clear_active_timer_for(session, user_email, old_ids)
        await repositories.delete_sessions(session, user_email, old_ids)

        created = []
        for position, candidate in enumerate(candidates):
            created.append(await repositories.insert_session(session, user_email, day_iso, position, candidate))

    logger.info(
        "Materialized %s for %s: %d sessions (%d replaced, %d backlog entries)",
        day_iso,
        user_email,
        len(created),
        len(old_ids),
        len(pending),
    )
    return created


async def list_sessions(user_email: str, day) -> list[dict]:
    day_iso = _parse_date(day).isoformat()
    async with transaction() as session:
        return await repositories.list_sessions_for_date(session, user_email, day_iso)


async def month_summary(user_email: str, year: int, month: int) -> dict[str, dict]:
    if not 1 <= int(month) <= 12:
        raise ValidationError("month must be between 1 and 12")
    prefix = f"{int(year):04d}-{int(month):02d}-"
    async with transaction() as session:
        return await repositories.month_counts(session, user_email, prefix)
