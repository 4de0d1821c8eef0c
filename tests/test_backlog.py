import asyncio
from datetime import date

import pytest

from productify import db, repositories
from productify.errors import NotFound, ValidationError
from productify.services import backlog, materializer, session_state

from conftest import USER, OTHER_USER

YESTERDAY = date(2024, 1, 1)
TODAY = date(2024, 1, 2)


def _lc_practice(run, targets):
    sessions = run(
        materializer.materialize(
            USER,
            YESTERDAY,
            [
                {
                    "name": "LC Practice",
                    "startTime": "07:00",
                    "category": "leetcode",
                    "items": [
                        {"title": f"Problem {index}", "targetCount": target}
                        for index, target in enumerate(targets, start=1)
                    ],
                }
            ],
        )
    )
    return sessions[0]


def test_process_carries_unfinished_count_forward(run):
    session = _lc_practice(run, [3])
    run(session_state.tick_item(USER, session["items"][0]["id"], 1))

    created = run(backlog.process(USER, TODAY))

    assert len(created) == 1
    entry = created[0]
    assert entry["title"] == "Problem 1"
    assert entry["missed_count"] == 2
    assert entry["original_date"] == "2024-01-01"
    assert entry["assigned_to_date"] == "2024-01-03"
    assert entry["source_session"] == "LC Practice"
    assert entry["category"] == "leetcode"
    assert entry["resolved"] is False
    stale = run(materializer.list_sessions(USER, YESTERDAY))[0]
    assert stale["status"] == "missed"


def test_process_creates_one_entry_per_unfinished_item(run):
    session = _lc_practice(run, [1, 1, 1])
    run(session_state.tick_item(USER, session["items"][0]["id"]))

    created = run(backlog.process(USER, TODAY))

    assert sorted(entry["title"] for entry in created) == ["Problem 2", "Problem 3"]
    assert all(entry["missed_count"] == 1 for entry in created)


def test_process_is_idempotent(run):
    _lc_practice(run, [2])
    first = run(backlog.process(USER, TODAY))
    second = run(backlog.process(USER, TODAY))
    assert len(first) == 1
    assert second == []
    assert len(run(backlog.list_pending(USER))) == 1


def test_completed_and_future_sessions_untouched(run):
    done = _lc_practice(run, [1])
    run(session_state.tick_item(USER, done["items"][0]["id"]))
    run(materializer.materialize(USER, TODAY, [{"name": "Today", "items": [{"title": "Later"}]}]))

    assert run(backlog.process(USER, TODAY)) == []
    assert run(materializer.list_sessions(USER, YESTERDAY))[0]["status"] == "completed"
    assert run(materializer.list_sessions(USER, TODAY))[0]["status"] == "pending"


def test_resolved_entry_not_recreated(run):
    _lc_practice(run, [1])
    entry = run(backlog.process(USER, TODAY))[0]
    run(backlog.resolve(USER, entry["id"]))
    assert run(backlog.process(USER, date(2024, 1, 3))) == []


def test_tick_decrements_and_resolves(run):
    _lc_practice(run, [3])
    entry = run(backlog.process(USER, TODAY))[0]

    ticked = run(backlog.tick(USER, entry["id"]))
    assert ticked["missed_count"] == 2
    assert ticked["resolved"] is False

    ticked = run(backlog.tick(USER, entry["id"], 5))
    assert ticked["missed_count"] == 0
    assert ticked["resolved"] is True
    assert run(backlog.list_pending(USER)) == []


def test_tick_rejects_non_positive_count(run):
    _lc_practice(run, [2])
    entry = run(backlog.process(USER, TODAY))[0]
    with pytest.raises(ValidationError):
        run(backlog.tick(USER, entry["id"], 0))


def test_resolution_is_monotonic(run):
    _lc_practice(run, [3])
    entry = run(backlog.process(USER, TODAY))[0]
    run(backlog.resolve(USER, entry["id"]))
    again = run(backlog.tick(USER, entry["id"]))
    assert again["resolved"] is True


def test_resolve_completes_linked_session_items(run):
    _lc_practice(run, [2])
    entry = run(backlog.process(USER, TODAY))[0]
    assigned = date.fromisoformat(entry["assigned_to_date"])
    punishment = run(materializer.materialize(USER, assigned))[0]

    resolved = run(backlog.resolve(USER, entry["id"]))

    assert resolved["resolved"] is True
    refreshed = run(materializer.list_sessions(USER, assigned))[0]
    item = refreshed["items"][0]
    assert item["title"] == "Problem 1 (BACKLOG)"
    assert item["completed"] is True
    assert item["completed_count"] == item["target_count"] == 2
    assert refreshed["id"] == punishment["id"]
    assert refreshed["status"] == "completed"


def test_unknown_entry(run):
    with pytest.raises(NotFound):
        run(backlog.tick(USER, "missing"))
    with pytest.raises(NotFound):
        run(backlog.resolve(USER, "missing"))


def test_entries_scoped_to_user(run):
    _lc_practice(run, [1])
    entry = run(backlog.process(USER, TODAY))[0]
    assert run(backlog.process(OTHER_USER, TODAY)) == []
    assert run(backlog.list_pending(OTHER_USER)) == []
    with pytest.raises(NotFound):
        run(backlog.resolve(OTHER_USER, entry["id"]))


def test_history_includes_resolved(run):
    _lc_practice(run, [1, 1])
    created = run(backlog.process(USER, TODAY))
    run(backlog.resolve(USER, created[0]["id"]))
    history = run(backlog.list_history(USER))
    assert len(history) == 2
    assert sorted(entry["resolved"] for entry in history) == [False, True]
    assert len(run(backlog.list_history(USER, limit=1))) == 1


class TestOpenEntryGuard:
    def test_same_title_twice_in_a_day_yields_one_entry(self, run):
        run(
            materializer.materialize(
                USER,
                YESTERDAY,
                [
                    {"name": "Morning", "startTime": "07:00", "items": [{"title": "X", "targetCount": 2}]},
                    {"name": "Evening", "startTime": "19:00", "items": [{"title": "X", "targetCount": 1}]},
                ],
            )
        )
        created = run(backlog.process(USER, TODAY))
        assert [(entry["title"], entry["missed_count"]) for entry in created] == [("X", 2)]
        assert len(run(backlog.list_pending(USER))) == 1

    def test_concurrent_process_creates_entries_once(self, run):
        _lc_practice(run, [2])

        async def process_twice():
            return await asyncio.gather(backlog.process(USER, TODAY), backlog.process(USER, TODAY))

        results = run(process_twice())
        assert sorted(len(created) for created in results) == [0, 1]
        assert len(run(backlog.list_pending(USER))) == 1

    def test_insert_skips_while_entry_is_open(self, run):
        payload = {
            "title": "X",
            "category": "leetcode",
            "missed_count": 1,
            "original_date": "2024-01-01",
            "assigned_to_date": "2024-01-03",
        }

        async def insert():
            async with db.transaction() as session:
                return await repositories.insert_backlog_entry_if_absent(session, USER, payload)

        first = run(insert())
        assert first is not None
        assert run(insert()) is None

        run(backlog.resolve(USER, first["id"]))
        reopened = run(insert())
        assert reopened is not None
        assert reopened["id"] != first["id"]
