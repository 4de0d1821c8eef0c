"""Backlog ledger: turns unfinished past items into carried-forward entries."""

from __future__ import annotations

import logging
from datetime import date, timedelta

from productify import repositories
from productify.db import transaction
from productify.errors import NotFound, ValidationError
from productify.services import session_state
from productify.services.materializer import backlog_item_title, strip_backlog_suffix

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 50


async def process(user_email: str, today: date) -> list[dict]:
    """Create entries for every unfinished item dated before ``today``.

    Re-running is safe: an unresolved entry for the same title and origin date
    is never duplicated, and sessions already marked missed are not rescanned.
    Returns only the entries created by this call.
    """
    today_iso = today.isoformat()
    assigned_to = (today + timedelta(days=1)).isoformat()
    created = []
    async with transaction() as session:
        await repositories.lock_user(session, user_email)
        incomplete = await repositories.list_incomplete_past_items(session, user_email, today_iso)
        for item in incomplete:
            missed = int(item["target_count"]) - int(item["completed_count"] or 0)
            if missed <= 0:
                continue
            entry = await repositories.insert_backlog_entry_if_absent(
                session,
                user_email,
                {
                    "title": item["title"],
                    "category": item["category"],
                    "missed_count": missed,
                    "original_date": item["session_date"],
                    "source_session": item["session_name"],
                    "assigned_to_date": assigned_to,
                },
            )
            if entry is None:
                logger.debug("Backlog entry for %r on %s already open", item["title"], item["session_date"])
                continue
            created.append(entry)
        missed_sessions = await repositories.mark_past_sessions_missed(session, user_email, today_iso)
    logger.info(
        "Processed backlog for %s: %d entries created, %d sessions marked missed",
        user_email,
        len(created),
        missed_sessions,
    )
    return created


async def tick(user_email: str, entry_id: str, count: int = 1) -> dict:
    if count is None:
        count = 1
    if isinstance(count, bool) or int(count) < 1:
        raise ValidationError("count must be a positive integer")
    async with transaction() as session:
        entry = await repositories.get_backlog_entry(session, user_email, entry_id)
        if entry is None:
            raise NotFound("Backlog entry", entry_id)
        missed = max(0, int(entry["missed_count"]) - int(count))
        resolved = entry["resolved"] or missed == 0
        await repositories.update_backlog_entry(session, entry_id, missed, resolved)
        return await repositories.get_backlog_entry(session, user_email, entry_id)


async def resolve(user_email: str, entry_id: str) -> dict:
    async with transaction() as session:
        entry = await repositories.get_backlog_entry(session, user_email, entry_id)
        if entry is None:
            raise NotFound("Backlog entry", entry_id)
        await repositories.update_backlog_entry(session, entry_id, int(entry["missed_count"]), True)
        # Session items only know the entry by id or by the suffixed title.
        title = backlog_item_title(strip_backlog_suffix(entry["title"]))
        touched = await repositories.complete_backlog_items(session, user_email, entry_id, title)
        for session_id in touched:
            await session_state.refresh_session_status(session, user_email, session_id)
        resolved = await repositories.get_backlog_entry(session, user_email, entry_id)
    logger.info("Resolved backlog entry %s for %s (%d sessions touched)", entry_id, user_email, len(touched))
    return resolved


async def list_pending(user_email: str) -> list[dict]:
    async with transaction() as session:
        return await repositories.list_backlog(session, user_email, unresolved_only=True)


async def list_history(user_email: str, limit: int = HISTORY_LIMIT) -> list[dict]:
    async with transaction() as session:
        return await repositories.list_backlog(session, user_email, limit=limit)
