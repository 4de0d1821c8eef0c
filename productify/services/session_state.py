"""Item ticks and status transitions for materialized sessions.

pending -> active -> completed; pending|active -> missed only through the
backlog ledger. A missed session keeps its status when items are ticked.
"""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from productify import repositories
from productify.db import transaction
from productify.errors import ConflictError, NotFound, ValidationError
from productify.services.materializer import strip_backlog_suffix

logger = logging.getLogger(__name__)

PENDING = "pending"
ACTIVE = "active"
COMPLETED = "completed"
MISSED = "missed"
STATUSES = (PENDING, ACTIVE, COMPLETED, MISSED)
PUNISHMENT = "punishment"


async def resolve_punishment_cascade(session: AsyncSession, user_email: str, parent: dict) -> int:
    titles = sorted({strip_backlog_suffix(item["title"]) for item in parent.get("items") or []})
    entry_ids = sorted({item["backlog_entry_id"] for item in parent.get("items") or [] if item.get("backlog_entry_id")})
    resolved = await repositories.resolve_backlog_entries(session, user_email, titles=titles, entry_ids=entry_ids)
    # Entries whose titles drifted away from their items still close with their day.
    resolved += await repositories.resolve_backlog_entries(session, user_email, assigned_to=parent["date"])
    logger.info("Punishment session %s completed, %d backlog entries resolved", parent["id"], resolved)
    return resolved


async def _recompute_status(session: AsyncSession, user_email: str, parent: dict) -> str:
    items = parent.get("items") or []
    status = parent["status"]
    if status == MISSED:
        return status
    if items and all(item["completed"] for item in items):
        if status != COMPLETED:
            await repositories.update_session(session, user_email, parent["id"], {"status": COMPLETED})
        if parent["type"] == PUNISHMENT:
            await resolve_punishment_cascade(session, user_email, parent)
        return COMPLETED
    if status == PENDING:
        await repositories.update_session(session, user_email, parent["id"], {"status": ACTIVE})
        return ACTIVE
    return status


async def refresh_session_status(session: AsyncSession, user_email: str, session_id: str) -> str | None:
    parent = await repositories.get_session(session, user_email, session_id)
    if parent is None:
        return None
    items = parent.get("items") or []
    if not items or not all(item["completed"] for item in items):
        return parent["status"]
    return await _recompute_status(session, user_email, parent)


def _parse_count(value) -> int:
    if isinstance(value, bool):
        raise ValidationError("completedCount must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError("completedCount must be an integer")


async def tick_item(user_email: str, item_id: str, completed_count: int | None = None) -> dict:
    async with transaction() as session:
        item = await repositories.get_item(session, user_email, item_id)
        if item is None:
            raise NotFound("Item", item_id)
        target = int(item["target_count"])
        if completed_count is None:
            new_count = int(item["completed_count"]) + 1
        else:
            new_count = _parse_count(completed_count)
        new_count = max(0, min(new_count, target))
        await repositories.update_item_progress(session, item_id, new_count, target)

        parent = await repositories.get_session(session, user_email, item["session_id"])
        status = await _recompute_status(session, user_email, parent)
        logger.debug("Ticked item %s to %d/%d, session %s is %s", item_id, new_count, target, parent["id"], status)
        return await repositories.get_item(session, user_email, item_id)


async def set_status(user_email: str, session_id: str, status: str) -> dict:
    if status not in STATUSES:
        raise ValidationError(f"status must be one of {', '.join(STATUSES)}")
    if status == MISSED:
        raise ConflictError("Sessions are only marked missed by backlog processing")
    async with transaction() as session:
        parent = await repositories.get_session(session, user_email, session_id)
        if parent is None:
            raise NotFound("Session", session_id)
        await repositories.update_session(session, user_email, session_id, {"status": status})
        if status == COMPLETED and parent["type"] == PUNISHMENT:
            await resolve_punishment_cascade(session, user_email, parent)
        return await repositories.get_session(session, user_email, session_id)
