from __future__ import annotations

import json
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import text as sql_text, bindparam
from sqlalchemy.ext.asyncio import AsyncSession

from productify.db_init import (
    ACTIVE_TIMERS_TABLE,
    BACKLOG_TABLE,
    HABITS_TABLE,
    ITEMS_TABLE,
    SESSIONS_TABLE,
    SETTINGS_TABLE,
    STATS_TABLE,
    TEMPLATE_TABLE,
    USER_LOCKS_TABLE,
)

FLEXIBLE = "flexible"

TEMPLATE_COLUMNS = [
    "id",
    "user_email",
    "day_code",
    "name",
    "start_time",
    "end_time",
    "type",
    "category",
    "icon",
    "color",
    "items_json",
    "created_at",
]

SESSION_COLUMNS = [
    "id",
    "user_email",
    "date",
    "name",
    "start_time",
    "end_time",
    "type",
    "category",
    "status",
    "icon",
    "color",
    "tracked_time",
    "tracking_started_at",
    "position",
    "created_at",
]

ITEM_COLUMNS = [
    "id",
    "session_id",
    "user_email",
    "title",
    "category",
    "target_count",
    "completed_count",
    "completed",
    "backlog_entry_id",
    "position",
]

BACKLOG_COLUMNS = [
    "id",
    "user_email",
    "title",
    "category",
    "missed_count",
    "original_date",
    "source_session",
    "assigned_to_date",
    "resolved",
    "created_at",
    "updated_at",
]

STATS_COLUMNS = [
    "sessions_completed",
    "sessions_total",
    "leetcode_completed",
    "leetcode_target",
    "punishment_items",
    "water_liters",
    "workout_done",
]


def _new_id() -> str:
    return uuid4().hex


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _insert_sql(table: str, columns: list[str]) -> str:
    return (
        f"INSERT INTO {table} ({', '.join(columns)}) "
        f"VALUES ({', '.join(f':{col}' for col in columns)})"
    )


def normalize_time_value(value):
    if value is None:
        return FLEXIBLE
    if hasattr(value, "strftime"):
        return value.strftime("%H:%M")
    value_str = str(value).strip()
    if not value_str or value_str.lower() == FLEXIBLE:
        return FLEXIBLE
    return value_str[:5]


def _normalize_item_row(row) -> dict:
    payload = dict(row)
    payload["completed"] = bool(payload.get("completed"))
    return payload


def _normalize_backlog_row(row) -> dict:
    payload = dict(row)
    payload["resolved"] = bool(payload.get("resolved"))
    return payload


def _normalize_template_row(row) -> dict:
    payload = dict(row)
    raw = payload.pop("items_json", None) or "[]"
    try:
        items = json.loads(raw)
    except Exception:
        items = []
    payload["items"] = items if isinstance(items, list) else []
    return payload


# -- settings -----------------------------------------------------------------


async def get_setting(session: AsyncSession, user_email: str, key: str) -> str | None:
    row = (await session.execute(
        sql_text(f"SELECT value FROM {SETTINGS_TABLE} WHERE key = :key"),
        {"key": f"{user_email}::{key}"},
    )).fetchone()
    return row[0] if row else None


async def set_setting(session: AsyncSession, user_email: str, key: str, value: str) -> None:
    await session.execute(
        sql_text(
            f"INSERT INTO {SETTINGS_TABLE} (key, value) VALUES (:key, :value) "
            "ON CONFLICT(key) DO UPDATE SET value=EXCLUDED.value"
        ),
        {"key": f"{user_email}::{key}", "value": value},
    )


# -- weekly template ----------------------------------------------------------


async def list_template_rows(session: AsyncSession, user_email: str, day_codes: list[int] | None = None) -> list[dict]:
    if day_codes is not None and not day_codes:
        return []
    where = "user_email = :user_email"
    params: dict = {"user_email": user_email}
    if day_codes is not None:
        where += " AND day_code IN :day_codes"
        params["day_codes"] = list(day_codes)
    stmt = sql_text(
        f"""
        SELECT {', '.join(TEMPLATE_COLUMNS)}
        FROM {TEMPLATE_TABLE}
        WHERE {where}
        ORDER BY day_code, start_time, created_at
        """
    )
    if day_codes is not None:
        stmt = stmt.bindparams(bindparam("day_codes", expanding=True))
    rows = (await session.execute(stmt, params)).mappings().all()
    return [_normalize_template_row(row) for row in rows]


async def replace_template_rows(session: AsyncSession, user_email: str, rows: list[dict]) -> None:
    await session.execute(
        sql_text(f"DELETE FROM {TEMPLATE_TABLE} WHERE user_email = :user_email"),
        {"user_email": user_email},
    )
    now = _now_iso()
    for row in rows:
        record = {
            "id": _new_id(),
            "user_email": user_email,
            "day_code": int(row["day_code"]),
            "name": row["name"],
            "start_time": row["start_time"],
            "end_time": row["end_time"],
            "type": row["type"],
            "category": row["category"],
            "icon": row["icon"],
            "color": row["color"],
            "items_json": json.dumps(row.get("items") or [], ensure_ascii=False),
            "created_at": now,
        }
        await session.execute(sql_text(_insert_sql(TEMPLATE_TABLE, TEMPLATE_COLUMNS)), record)


# -- sessions & items ---------------------------------------------------------


async def list_items(session: AsyncSession, session_ids: list[str]) -> dict[str, list[dict]]:
    if not session_ids:
        return {}
    stmt = sql_text(
        f"""
        SELECT {', '.join(ITEM_COLUMNS)}
        FROM {ITEMS_TABLE}
        WHERE session_id IN :session_ids
        ORDER BY position ASC
        """
    ).bindparams(bindparam("session_ids", expanding=True))
    rows = (await session.execute(stmt, {"session_ids": list(session_ids)})).mappings().all()
    payload: dict[str, list[dict]] = {session_id: [] for session_id in session_ids}
    for row in rows:
        item = _normalize_item_row(row)
        payload.setdefault(item["session_id"], []).append(item)
    return payload


async def _attach_items(session: AsyncSession, rows) -> list[dict]:
    sessions = [dict(row) for row in rows]
    items = await list_items(session, [row["id"] for row in sessions])
    for row in sessions:
        row["items"] = items.get(row["id"], [])
    return sessions


async def list_sessions_for_date(session: AsyncSession, user_email: str, day_iso: str) -> list[dict]:
    rows = (await session.execute(
        sql_text(
            f"""
            SELECT {', '.join(SESSION_COLUMNS)}
            FROM {SESSIONS_TABLE}
            WHERE user_email = :user_email AND date = :date
            ORDER BY position ASC
            """
        ),
        {"user_email": user_email, "date": day_iso},
    )).mappings().all()
    return await _attach_items(session, rows)


async def list_session_ids_for_date(session: AsyncSession, user_email: str, day_iso: str) -> list[str]:
    rows = (await session.execute(
        sql_text(f"SELECT id FROM {SESSIONS_TABLE} WHERE user_email = :user_email AND date = :date"),
        {"user_email": user_email, "date": day_iso},
    )).fetchall()
    return [row[0] for row in rows]


async def get_session(session: AsyncSession, user_email: str, session_id: str) -> dict | None:
    row = (await session.execute(
        sql_text(
            f"""
            SELECT {', '.join(SESSION_COLUMNS)}
            FROM {SESSIONS_TABLE}
            WHERE id = :id AND user_email = :user_email
            """
        ),
        {"id": session_id, "user_email": user_email},
    )).mappings().fetchone()
    if not row:
        return None
    return (await _attach_items(session, [row]))[0]


async def list_tracking_sessions(session: AsyncSession, user_email: str, exclude_id: str | None = None) -> list[dict]:
    rows = (await session.execute(
        sql_text(
            f"""
            SELECT {', '.join(SESSION_COLUMNS)}
            FROM {SESSIONS_TABLE}
            WHERE user_email = :user_email
              AND tracking_started_at IS NOT NULL
              AND id != :exclude_id
            """
        ),
        {"user_email": user_email, "exclude_id": exclude_id or ""},
    )).mappings().all()
    return [dict(row) for row in rows]


async def delete_sessions(session: AsyncSession, user_email: str, session_ids: list[str]) -> None:
    if not session_ids:
        return
    params = {"user_email": user_email, "session_ids": list(session_ids)}
    await session.execute(
        sql_text(
            f"DELETE FROM {ITEMS_TABLE} WHERE user_email = :user_email AND session_id IN :session_ids"
        ).bindparams(bindparam("session_ids", expanding=True)),
        params,
    )
    await session.execute(
        sql_text(
            f"DELETE FROM {SESSIONS_TABLE} WHERE user_email = :user_email AND id IN :session_ids"
        ).bindparams(bindparam("session_ids", expanding=True)),
        params,
    )


async def insert_session(session: AsyncSession, user_email: str, day_iso: str, position: int, payload: dict) -> dict:
    record = {
        "id": _new_id(),
        "user_email": user_email,
        "date": day_iso,
        "name": payload["name"],
        "start_time": payload["start_time"],
        "end_time": payload["end_time"],
        "type": payload["type"],
        "category": payload["category"],
        "status": "pending",
        "icon": payload["icon"],
        "color": payload["color"],
        "tracked_time": 0,
        "tracking_started_at": None,
        "position": position,
        "created_at": _now_iso(),
    }
    await session.execute(sql_text(_insert_sql(SESSIONS_TABLE, SESSION_COLUMNS)), record)
    items = []
    for index, item in enumerate(payload.get("items") or []):
        item_record = {
            "id": _new_id(),
            "session_id": record["id"],
            "user_email": user_email,
            "title": item["title"],
            "category": item["category"],
            "target_count": item["target_count"],
            "completed_count": 0,
            "completed": 0,
            "backlog_entry_id": item.get("backlog_entry_id"),
            "position": index,
        }
        await session.execute(sql_text(_insert_sql(ITEMS_TABLE, ITEM_COLUMNS)), item_record)
        items.append(_normalize_item_row(item_record))
    record["items"] = items
    return record


async def update_session(session: AsyncSession, user_email: str, session_id: str, fields: dict) -> None:
    allowed = {"status", "tracked_time", "tracking_started_at"}
    updates = []
    params = {"id": session_id, "user_email": user_email}
    for key, value in fields.items():
        if key not in allowed:
            continue
        updates.append(f"{key} = :{key}")
        params[key] = value
    if not updates:
        return
    await session.execute(
        sql_text(
            f"UPDATE {SESSIONS_TABLE} SET {', '.join(updates)} WHERE id = :id AND user_email = :user_email"
        ),
        params,
    )


async def get_item(session: AsyncSession, user_email: str, item_id: str) -> dict | None:
    row = (await session.execute(
        sql_text(
            f"""
            SELECT {', '.join(ITEM_COLUMNS)}
            FROM {ITEMS_TABLE}
            WHERE id = :id AND user_email = :user_email
            """
        ),
        {"id": item_id, "user_email": user_email},
    )).mappings().fetchone()
    return _normalize_item_row(row) if row else None


async def update_item_progress(session: AsyncSession, item_id: str, completed_count: int, target_count: int) -> None:
    await session.execute(
        sql_text(
            f"""
            UPDATE {ITEMS_TABLE}
            SET completed_count = :completed_count,
                completed = :completed
            WHERE id = :id
            """
        ),
        {
            "id": item_id,
            "completed_count": completed_count,
            "completed": int(completed_count >= target_count),
        },
    )


async def complete_backlog_items(session: AsyncSession, user_email: str, entry_id: str, backlog_title: str) -> list[str]:
    """Complete open items linked to a backlog entry; returns their session ids."""
    params = {"user_email": user_email, "entry_id": entry_id, "title": backlog_title}
    match = (
        "user_email = :user_email AND completed = 0 "
        "AND (backlog_entry_id = :entry_id OR title = :title)"
    )
    rows = (await session.execute(
        sql_text(f"SELECT DISTINCT session_id FROM {ITEMS_TABLE} WHERE {match}"),
        params,
    )).fetchall()
    if not rows:
        return []
    await session.execute(
        sql_text(
            f"UPDATE {ITEMS_TABLE} SET completed = 1, completed_count = target_count WHERE {match}"
        ),
        params,
    )
    return [row[0] for row in rows]


async def list_incomplete_past_items(session: AsyncSession, user_email: str, before_iso: str) -> list[dict]:
    rows = (await session.execute(
        sql_text(
            f"""
            SELECT i.id, i.title, i.category, i.target_count, i.completed_count,
                   s.name AS session_name, s.date AS session_date
            FROM {ITEMS_TABLE} i
            JOIN {SESSIONS_TABLE} s ON s.id = i.session_id
            WHERE s.user_email = :user_email
              AND s.date < :before
              -- missed sessions are already ledgered and rescanning them would reopen
              -- entries the user has since resolved.
              AND s.status != 'missed'
              AND i.completed_count < i.target_count
            ORDER BY s.date, s.position, i.position
            """
        ),
        {"user_email": user_email, "before": before_iso},
    )).mappings().all()
    return [dict(row) for row in rows]


async def mark_past_sessions_missed(session: AsyncSession, user_email: str, before_iso: str) -> int:
    result = await session.execute(
        sql_text(
            f"""
            UPDATE {SESSIONS_TABLE}
            SET status = 'missed'
            WHERE user_email = :user_email
              AND date < :before
              AND status NOT IN ('completed', 'missed')
            """
        ),
        {"user_email": user_email, "before": before_iso},
    )
    return int(result.rowcount or 0)


async def month_counts(session: AsyncSession, user_email: str, prefix: str) -> dict[str, dict]:
    rows = (await session.execute(
        sql_text(
            f"""
            SELECT date,
                   COUNT(*) AS total,
                   SUM(CASE WHEN status = 'completed' THEN 1 ELSE 0 END) AS completed
            FROM {SESSIONS_TABLE}
            WHERE user_email = :user_email AND date LIKE :prefix
            GROUP BY date
            ORDER BY date
            """
        ),
        {"user_email": user_email, "prefix": f"{prefix}%"},
    )).mappings().all()
    return {row["date"]: {"total": int(row["total"] or 0), "completed": int(row["completed"] or 0)} for row in rows}


# -- backlog ------------------------------------------------------------------


async def insert_backlog_entry_if_absent(session: AsyncSession, user_email: str, payload: dict) -> dict | None:
    now = _now_iso()
    record = {
        "id": _new_id(),
        "user_email": user_email,
        "title": payload["title"],
        "category": payload.get("category") or "other",
        "missed_count": int(payload["missed_count"]),
        "original_date": payload["original_date"],
        "source_session": payload.get("source_session") or "",
        "assigned_to_date": payload.get("assigned_to_date"),
        "resolved": 0,
        "created_at": now,
        "updated_at": now,
    }
    result = await session.execute(
        sql_text(
            _insert_sql(BACKLOG_TABLE, BACKLOG_COLUMNS)
            + " ON CONFLICT (user_email, title, original_date) WHERE resolved = 0 DO NOTHING"
        ),
        record,
    )
    if not result.rowcount:
        return None
    return _normalize_backlog_row(record)


async def get_backlog_entry(session: AsyncSession, user_email: str, entry_id: str) -> dict | None:
    row = (await session.execute(
        sql_text(
            f"""
            SELECT {', '.join(BACKLOG_COLUMNS)}
            FROM {BACKLOG_TABLE}
            WHERE id = :id AND user_email = :user_email
            """
        ),
        {"id": entry_id, "user_email": user_email},
    )).mappings().fetchone()
    return _normalize_backlog_row(row) if row else None


async def list_backlog(
    session: AsyncSession,
    user_email: str,
    *,
    unresolved_only: bool = False,
    assigned_to: str | None = None,
    limit: int | None = None,
) -> list[dict]:
    where = ["user_email = :user_email"]
    params: dict = {"user_email": user_email}
    if unresolved_only:
        where.append("resolved = 0")
    if assigned_to is not None:
        where.append("assigned_to_date = :assigned_to")
        params["assigned_to"] = assigned_to
    sql = (
        f"SELECT {', '.join(BACKLOG_COLUMNS)} FROM {BACKLOG_TABLE} "
        f"WHERE {' AND '.join(where)} ORDER BY created_at DESC"
    )
    if limit is not None:
        sql += " LIMIT :limit"
        params["limit"] = int(limit)
    rows = (await session.execute(sql_text(sql), params)).mappings().all()
    return [_normalize_backlog_row(row) for row in rows]


async def update_backlog_entry(session: AsyncSession, entry_id: str, missed_count: int, resolved: bool) -> None:
    # resolved only ever moves 0 -> 1.
    await session.execute(
        sql_text(
            f"""
            UPDATE {BACKLOG_TABLE}
            SET missed_count = :missed_count,
                resolved = CASE WHEN resolved = 1 THEN 1 ELSE :resolved END,
                updated_at = :updated_at
            WHERE id = :id
            """
        ),
        {"id": entry_id, "missed_count": missed_count, "resolved": int(resolved), "updated_at": _now_iso()},
    )


async def resolve_backlog_entries(
    session: AsyncSession,
    user_email: str,
    *,
    titles: list[str] | None = None,
    entry_ids: list[str] | None = None,
    assigned_to: str | None = None,
) -> int:
    clauses = []
    params: dict = {"user_email": user_email, "updated_at": _now_iso()}
    expanding = []
    if titles:
        clauses.append("title IN :titles")
        params["titles"] = list(titles)
        expanding.append(bindparam("titles", expanding=True))
    if entry_ids:
        clauses.append("id IN :entry_ids")
        params["entry_ids"] = list(entry_ids)
        expanding.append(bindparam("entry_ids", expanding=True))
    if assigned_to is not None:
        clauses.append("assigned_to_date = :assigned_to")
        params["assigned_to"] = assigned_to
    if not clauses:
        return 0
    stmt = sql_text(
        f"""
        UPDATE {BACKLOG_TABLE}
        SET resolved = 1, updated_at = :updated_at
        WHERE user_email = :user_email
          AND resolved = 0
          AND ({' OR '.join(clauses)})
        """
    )
    if expanding:
        stmt = stmt.bindparams(*expanding)
    result = await session.execute(stmt, params)
    return int(result.rowcount or 0)


async def count_backlog_for_origin(session: AsyncSession, user_email: str, day_iso: str) -> int:
    count = (await session.execute(
        sql_text(
            f"SELECT COUNT(*) FROM {BACKLOG_TABLE} WHERE user_email = :user_email AND original_date = :day_iso"
        ),
        {"user_email": user_email, "day_iso": day_iso},
    )).scalar_one()
    return int(count or 0)


# -- per-user write lock ------------------------------------------------------


async def lock_user(session: AsyncSession, user_email: str) -> None:
    """Take the user's lock row as the first write of the transaction.

    The upsert holds a row lock on Postgres and the database write lock on
    SQLite until commit, so day replacement and backlog processing for one
    user run one at a time and read what the previous run committed.
    """
    await session.execute(
        sql_text(
            f"""
            INSERT INTO {USER_LOCKS_TABLE} (user_email, updated_at)
            VALUES (:user_email, :updated_at)
            ON CONFLICT(user_email) DO UPDATE SET updated_at = EXCLUDED.updated_at
            """
        ),
        {"user_email": user_email, "updated_at": _now_iso()},
    )


# -- active timer -------------------------------------------------------------


async def lock_active_timer(session: AsyncSession, user_email: str) -> dict:
    """Upsert the user's timer row first so concurrent starts serialize on it."""
    now = _now_iso()
    await session.execute(
        sql_text(
            f"""
            INSERT INTO {ACTIVE_TIMERS_TABLE} (user_email, session_id, started_at, updated_at)
            VALUES (:user_email, NULL, NULL, :updated_at)
            ON CONFLICT(user_email) DO UPDATE SET updated_at = EXCLUDED.updated_at
            """
        ),
        {"user_email": user_email, "updated_at": now},
    )
    return await get_active_timer(session, user_email) or {}


async def get_active_timer(session: AsyncSession, user_email: str) -> dict | None:
    row = (await session.execute(
        sql_text(
            f"SELECT user_email, session_id, started_at, updated_at FROM {ACTIVE_TIMERS_TABLE} "
            "WHERE user_email = :user_email"
        ),
        {"user_email": user_email},
    )).mappings().fetchone()
    return dict(row) if row else None


async def set_active_timer(session: AsyncSession, user_email: str, session_id: str | None, started_at: str | None) -> None:
    await session.execute(
        sql_text(
            f"""
            INSERT INTO {ACTIVE_TIMERS_TABLE} (user_email, session_id, started_at, updated_at)
            VALUES (:user_email, :session_id, :started_at, :updated_at)
            ON CONFLICT(user_email) DO UPDATE SET
                session_id = EXCLUDED.session_id,
                started_at = EXCLUDED.started_at,
                updated_at = EXCLUDED.updated_at
            """
        ),
        {"user_email": user_email, "session_id": session_id, "started_at": started_at, "updated_at": _now_iso()},
    )


async def clear_active_timer_for(session: AsyncSession, user_email: str, session_ids: list[str]) -> None:
    if not session_ids:
        return
    await session.execute(
        sql_text(
            f"""
            UPDATE {ACTIVE_TIMERS_TABLE}
            SET session_id = NULL, started_at = NULL, updated_at = :updated_at
            WHERE user_email = :user_email AND session_id IN :session_ids
            """
        ).bindparams(bindparam("session_ids", expanding=True)),
        {"user_email": user_email, "session_ids": list(session_ids), "updated_at": _now_iso()},
    )


# -- habits -------------------------------------------------------------------


async def ensure_habit(session: AsyncSession, user_email: str, day_iso: str, habit_type: str, target_value: float) -> None:
    await session.execute(
        sql_text(
            f"""
            INSERT INTO {HABITS_TABLE} (user_email, date, habit_type, target_value, current_value, updated_at)
            VALUES (:user_email, :date, :habit_type, :target_value, 0, :updated_at)
            ON CONFLICT(user_email, date, habit_type) DO NOTHING
            """
        ),
        {
            "user_email": user_email,
            "date": day_iso,
            "habit_type": habit_type,
            "target_value": target_value,
            "updated_at": _now_iso(),
        },
    )


async def list_habits(session: AsyncSession, user_email: str, day_iso: str) -> dict[str, dict]:
    rows = (await session.execute(
        sql_text(
            f"""
            SELECT user_email, date, habit_type, target_value, current_value, updated_at
            FROM {HABITS_TABLE}
            WHERE user_email = :user_email AND date = :date
            """
        ),
        {"user_email": user_email, "date": day_iso},
    )).mappings().all()
    return {row["habit_type"]: dict(row) for row in rows}


async def set_habit_value(session: AsyncSession, user_email: str, day_iso: str, habit_type: str, value: float) -> None:
    await session.execute(
        sql_text(
            f"""
            UPDATE {HABITS_TABLE}
            SET current_value = :value, updated_at = :updated_at
            WHERE user_email = :user_email AND date = :date AND habit_type = :habit_type
            """
        ),
        {
            "user_email": user_email,
            "date": day_iso,
            "habit_type": habit_type,
            "value": value,
            "updated_at": _now_iso(),
        },
    )


# -- stats cache --------------------------------------------------------------


async def upsert_stats(session: AsyncSession, user_email: str, day_iso: str, stats: dict) -> None:
    columns = ["user_email", "date", *STATS_COLUMNS, "updated_at"]
    updates = ", ".join(f"{col}=EXCLUDED.{col}" for col in [*STATS_COLUMNS, "updated_at"])
    payload = {"user_email": user_email, "date": day_iso, "updated_at": _now_iso()}
    payload.update({col: stats[col] for col in STATS_COLUMNS})
    await session.execute(
        sql_text(
            _insert_sql(STATS_TABLE, columns)
            + f" ON CONFLICT(user_email, date) DO UPDATE SET {updates}"
        ),
        payload,
    )


async def get_cached_stats(session: AsyncSession, user_email: str, day_iso: str) -> dict | None:
    row = (await session.execute(
        sql_text(
            f"SELECT user_email, date, {', '.join(STATS_COLUMNS)}, updated_at FROM {STATS_TABLE} "
            "WHERE user_email = :user_email AND date = :date"
        ),
        {"user_email": user_email, "date": day_iso},
    )).mappings().fetchone()
    return dict(row) if row else None
