from __future__ import annotations

from sqlalchemy import text as sql_text

from productify.db import get_engine


TEMPLATE_TABLE = "weekly_template"
SESSIONS_TABLE = "daily_sessions"
ITEMS_TABLE = "session_items"
BACKLOG_TABLE = "punishment_backlog"
ACTIVE_TIMERS_TABLE = "active_timers"
HABITS_TABLE = "daily_habits"
STATS_TABLE = "daily_stats"
SETTINGS_TABLE = "settings"
USER_LOCKS_TABLE = "user_locks"


async def init_db():
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.execute(
            sql_text(
                f"""
                CREATE TABLE IF NOT EXISTS {TEMPLATE_TABLE} (
                    id TEXT PRIMARY KEY,
                    user_email TEXT NOT NULL,
                    day_code INTEGER NOT NULL,
                    name TEXT NOT NULL,
                    start_time TEXT NOT NULL DEFAULT 'flexible',
                    end_time TEXT NOT NULL DEFAULT 'flexible',
                    type TEXT DEFAULT 'fixed',
                    category TEXT DEFAULT 'other',
                    icon TEXT,
                    color TEXT,
                    items_json TEXT DEFAULT '[]',
                    created_at TEXT NOT NULL
                )
                """
            )
        )
        await conn.execute(
            sql_text(
                f"""
                CREATE TABLE IF NOT EXISTS {SESSIONS_TABLE} (
                    id TEXT PRIMARY KEY,
                    user_email TEXT NOT NULL,
                    date TEXT NOT NULL,
                    name TEXT NOT NULL,
                    start_time TEXT NOT NULL,
                    end_time TEXT NOT NULL,
                    type TEXT DEFAULT 'normal',
                    category TEXT DEFAULT 'other',
                    status TEXT NOT NULL DEFAULT 'pending',
                    icon TEXT,
                    color TEXT,
                    tracked_time INTEGER NOT NULL DEFAULT 0,
                    tracking_started_at TEXT,
                    position INTEGER DEFAULT 0,
                    created_at TEXT NOT NULL
                )
                """
            )
        )
        await conn.execute(
            sql_text(
                f"""
                CREATE TABLE IF NOT EXISTS {ITEMS_TABLE} (
                    id TEXT PRIMARY KEY,
                    session_id TEXT NOT NULL REFERENCES {SESSIONS_TABLE}(id) ON DELETE CASCADE,
                    user_email TEXT NOT NULL,
                    title TEXT NOT NULL,
                    category TEXT DEFAULT 'other',
                    target_count INTEGER NOT NULL DEFAULT 1,
                    completed_count INTEGER NOT NULL DEFAULT 0,
                    completed INTEGER NOT NULL DEFAULT 0,
                    backlog_entry_id TEXT,
                    position INTEGER DEFAULT 0
                )
                """
            )
        )
        await conn.execute(
            sql_text(
                f"""
                CREATE TABLE IF NOT EXISTS {BACKLOG_TABLE} (
                    id TEXT PRIMARY KEY,
                    user_email TEXT NOT NULL,
                    title TEXT NOT NULL,
                    category TEXT NOT NULL DEFAULT 'other',
                    missed_count INTEGER NOT NULL,
                    original_date TEXT NOT NULL,
                    source_session TEXT DEFAULT '',
                    assigned_to_date TEXT,
                    resolved INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT
                )
                """
            )
        )
        await conn.execute(
            sql_text(
                f"""
                CREATE TABLE IF NOT EXISTS {ACTIVE_TIMERS_TABLE} (
                    user_email TEXT PRIMARY KEY,
                    session_id TEXT,
                    started_at TEXT,
                    updated_at TEXT
                )
                """
            )
        )
        await conn.execute(
            sql_text(
                f"""
                CREATE TABLE IF NOT EXISTS {HABITS_TABLE} (
                    user_email TEXT NOT NULL,
                    date TEXT NOT NULL,
                    habit_type TEXT NOT NULL,
                    target_value REAL NOT NULL DEFAULT 1,
                    current_value REAL NOT NULL DEFAULT 0,
                    updated_at TEXT,
                    PRIMARY KEY (user_email, date, habit_type)
                )
                """
            )
        )
        await conn.execute(
            sql_text(
                f"""
                CREATE TABLE IF NOT EXISTS {STATS_TABLE} (
                    user_email TEXT NOT NULL,
                    date TEXT NOT NULL,
                    sessions_completed INTEGER DEFAULT 0,
                    sessions_total INTEGER DEFAULT 0,
                    leetcode_completed INTEGER DEFAULT 0,
                    leetcode_target INTEGER DEFAULT 0,
                    punishment_items INTEGER DEFAULT 0,
                    water_liters REAL DEFAULT 0,
                    workout_done INTEGER DEFAULT 0,
                    updated_at TEXT,
                    PRIMARY KEY (user_email, date)
                )
                """
            )
        )
        await conn.execute(
            sql_text(
                f"""
                CREATE TABLE IF NOT EXISTS {SETTINGS_TABLE} (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
                """
            )
        )
        await conn.execute(
            sql_text(
                f"""
                CREATE TABLE IF NOT EXISTS {USER_LOCKS_TABLE} (
                    user_email TEXT PRIMARY KEY,
                    updated_at TEXT
                )
                """
            )
        )

    async def ensure_index(index_sql: str) -> None:
        try:
            async with engine.begin() as conn:
                await conn.execute(sql_text(index_sql))
        except Exception:
            return

    await ensure_index(
        f"CREATE INDEX IF NOT EXISTS idx_{TEMPLATE_TABLE}_user_day "
        f"ON {TEMPLATE_TABLE} (user_email, day_code)"
    )
    await ensure_index(
        f"CREATE INDEX IF NOT EXISTS idx_{SESSIONS_TABLE}_user_date "
        f"ON {SESSIONS_TABLE} (user_email, date)"
    )
    await ensure_index(
        f"CREATE INDEX IF NOT EXISTS idx_{ITEMS_TABLE}_session "
        f"ON {ITEMS_TABLE} (session_id)"
    )
    await ensure_index(
        f"CREATE INDEX IF NOT EXISTS idx_{BACKLOG_TABLE}_user_resolved "
        f"ON {BACKLOG_TABLE} (user_email, resolved, assigned_to_date)"
    )
    # Guards process() against duplicate unresolved entries under concurrent runs.
    async with engine.begin() as conn:
        await conn.execute(
            sql_text(
                f"CREATE UNIQUE INDEX IF NOT EXISTS uq_{BACKLOG_TABLE}_open_entry "
                f"ON {BACKLOG_TABLE} (user_email, title, original_date) WHERE resolved = 0"
            )
        )
