"""Single active timer per user.

Starting a session stops (and completes) whatever else the user was timing.
The ``active_timers`` row is written first in every start so that concurrent
starts for the same user serialize on it.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone

from productify import repositories
from productify.db import transaction
from productify.errors import NotFound
from productify.services.session_state import ACTIVE, COMPLETED

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def elapsed_seconds(started_at: str, now: datetime) -> int:
    try:
        started = datetime.fromisoformat(str(started_at).replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Unreadable tracking timestamp %r, counting 0s", started_at)
        return 0
    if started.tzinfo is None:
        started = started.replace(tzinfo=timezone.utc)
    return max(0, math.floor((now - started).total_seconds()))


async def start(user_email: str, session_id: str, now: datetime | None = None) -> dict:
    now = now or _utcnow()
    async with transaction() as session:
        await repositories.lock_active_timer(session, user_email)
        target = await repositories.get_session(session, user_email, session_id)
        if target is None:
            raise NotFound("Session", session_id)
        for other in await repositories.list_tracking_sessions(session, user_email, exclude_id=session_id):
            elapsed = elapsed_seconds(other["tracking_started_at"], now)
            await repositories.update_session(
                session,
                user_email,
                other["id"],
                {
                    "tracked_time": int(other["tracked_time"] or 0) + elapsed,
                    "tracking_started_at": None,
                    "status": COMPLETED,
                },
            )
            logger.info("Auto-stopped session %s for %s after %ds", other["id"], user_email, elapsed)
        started_at = now.isoformat()
        tracked = int(target["tracked_time"] or 0)
        if target["tracking_started_at"]:
            # Restarting a running timer banks the time already on the clock.
            tracked += elapsed_seconds(target["tracking_started_at"], now)
        await repositories.update_session(
            session,
            user_email,
            session_id,
            {"tracked_time": tracked, "tracking_started_at": started_at, "status": ACTIVE},
        )
        await repositories.set_active_timer(session, user_email, session_id, started_at)
        return await repositories.get_session(session, user_email, session_id)


async def stop(user_email: str, session_id: str, now: datetime | None = None) -> dict:
    now = now or _utcnow()
    async with transaction() as session:
        target = await repositories.get_session(session, user_email, session_id)
        if target is None:
            raise NotFound("Session", session_id)
        if not target["tracking_started_at"]:
            return target
        elapsed = elapsed_seconds(target["tracking_started_at"], now)
        await repositories.update_session(
            session,
            user_email,
            session_id,
            {"tracked_time": int(target["tracked_time"] or 0) + elapsed, "tracking_started_at": None},
        )
        await repositories.clear_active_timer_for(session, user_email, [session_id])
        logger.debug("Stopped session %s for %s after %ds", session_id, user_email, elapsed)
        return await repositories.get_session(session, user_email, session_id)


async def get_active(user_email: str) -> dict | None:
    async with transaction() as session:
        timer = await repositories.get_active_timer(session, user_email)
        if not timer or not timer.get("session_id"):
            return None
        return await repositories.get_session(session, user_email, timer["session_id"])
