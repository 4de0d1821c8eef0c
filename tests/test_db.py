import pytest

from productify.db import _engine_options, _normalize_database_url


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("postgres://u:p@db.example.com/app", "postgresql+asyncpg://u:p@db.example.com/app"),
        ("postgresql://u:p@localhost/app", "postgresql+asyncpg://u:p@localhost/app"),
        (
            "postgresql://u:p@db.example.com/app?sslmode=require&channel_binding=require",
            "postgresql+asyncpg://u:p@db.example.com/app?ssl=true",
        ),
        ("sqlite+aiosqlite:///tmp/app.db", "sqlite+aiosqlite:///tmp/app.db"),
        ("", ""),
    ],
)
def test_normalize_database_url(raw, expected):
    assert _normalize_database_url(raw) == expected


def test_engine_options():
    assert "connect_args" not in _engine_options("postgresql+asyncpg://u:p@localhost/app")
    assert _engine_options("postgresql+asyncpg://u:p@db.example.com/app")["connect_args"] == {"ssl": True}
    assert "pool_size" not in _engine_options("sqlite+aiosqlite:///tmp/app.db")
