import logging
from datetime import date

from productify.settings import Settings


def _settings(timezone):
    return Settings(
        DATABASE_URL="sqlite+aiosqlite:///unused.db",
        BACKEND_SESSION_SECRET="secret",
        APP_TIMEZONE=timezone,
    )


def test_today_uses_configured_timezone():
    assert isinstance(_settings("UTC").today(), date)


def test_unknown_timezone_falls_back_with_warning(caplog):
    with caplog.at_level(logging.WARNING, logger="productify.settings"):
        today = _settings("Mars/Olympus_Mons").today()
    assert today == date.today()
    assert "Mars/Olympus_Mons" in caplog.text
