import asyncio
from datetime import date

import pytest

from productify import db, repositories
from productify.errors import ValidationError
from productify.services import backlog, materializer, templates

from conftest import USER, OTHER_USER

MONDAY = date(2024, 1, 1)

WEEK = {
    "Monday": [
        {"name": "Dinner", "startTime": "19:00", "endTime": "20:00", "type": "break"},
        {
            "name": "LC Practice",
            "startTime": "07:00",
            "endTime": "08:00",
            "type": "productive",
            "category": "leetcode",
            "items": [
                {"title": "LC Easy #1", "category": "leetcode", "targetCount": 1},
                {"title": "LC Medium #1", "category": "leetcode", "targetCount": 2},
            ],
        },
        {"name": "Reading", "startTime": "flexible", "endTime": "flexible"},
    ]
}


def _shape(sessions):
    return [
        (
            s["name"],
            s["start_time"],
            s["end_time"],
            s["type"],
            s["category"],
            [(i["title"], i["category"], i["target_count"], i["completed_count"]) for i in s["items"]],
        )
        for s in sessions
    ]


def test_orders_by_start_time_with_flexible_last(run):
    run(templates.replace_template(USER, WEEK))
    sessions = run(materializer.materialize(USER, MONDAY))
    assert [s["name"] for s in sessions] == ["LC Practice", "Dinner", "Reading"]
    for session in sessions:
        assert session["status"] == "pending"
        assert session["tracked_time"] == 0
        assert session["tracking_started_at"] is None
        assert all(item["completed_count"] == 0 and not item["completed"] for item in session["items"])


def test_materialize_is_idempotent(run):
    run(templates.replace_template(USER, WEEK))
    first = run(materializer.materialize(USER, MONDAY))
    second = run(materializer.materialize(USER, MONDAY))
    assert _shape(first) == _shape(second)
    assert {s["id"] for s in first}.isdisjoint({s["id"] for s in second})
    stored = run(materializer.list_sessions(USER, MONDAY))
    assert _shape(stored) == _shape(second)


def test_empty_template_yields_empty_day(run):
    assert run(materializer.materialize(USER, MONDAY)) == []


def test_override_sessions_replace_template(run):
    run(templates.replace_template(USER, WEEK))
    override = [
        {"name": "Travel", "startTime": "10:00", "endTime": "12:00"},
        {"startTime": "13:00"},
        {"name": "Notes", "items": [{"title": "Write up"}, {"category": "lost"}]},
    ]
    sessions = run(materializer.materialize(USER, MONDAY, override))
    assert [s["name"] for s in sessions] == ["Travel", "Notes"]
    assert [i["title"] for i in sessions[1]["items"]] == ["Write up"]
    assert sessions[1]["items"][0]["target_count"] == 1


def test_pending_backlog_becomes_punishment_session(run):
    yesterday = date(2024, 1, 1)
    run(
        materializer.materialize(
            USER,
            yesterday,
            [
                {
                    "name": "LC",
                    "startTime": "07:00",
                    "category": "leetcode",
                    "items": [
                        {"title": "Two Sum", "category": "leetcode", "targetCount": 3},
                        {"title": "Graphs", "category": "leetcode"},
                        {"title": "Essay", "category": "writing"},
                    ],
                }
            ],
        )
    )
    created = run(backlog.process(USER, date(2024, 1, 2)))
    assigned = date.fromisoformat(created[0]["assigned_to_date"])

    sessions = run(materializer.materialize(USER, assigned))
    assert len(sessions) == 1
    punishment = sessions[0]
    assert punishment["name"] == "Punishment Backlog"
    assert punishment["type"] == "punishment"
    assert punishment["category"] == "leetcode"
    assert punishment["start_time"] == "flexible"
    by_title = {item["title"]: item for item in punishment["items"]}
    assert set(by_title) == {"Two Sum (BACKLOG)", "Graphs (BACKLOG)", "Essay (BACKLOG)"}
    assert by_title["Two Sum (BACKLOG)"]["target_count"] == 3
    entry_ids = {entry["title"]: entry["id"] for entry in created}
    assert by_title["Graphs (BACKLOG)"]["backlog_entry_id"] == entry_ids["Graphs"]


def test_invalid_override_leaves_previous_day_untouched(run):
    run(templates.replace_template(USER, WEEK))
    before = run(materializer.materialize(USER, MONDAY))
    with pytest.raises(ValidationError):
        run(materializer.materialize(USER, MONDAY, [{"name": "Bad", "items": [{"title": "x", "targetCount": 0}]}]))
    after = run(materializer.list_sessions(USER, MONDAY))
    assert [s["id"] for s in after] == [s["id"] for s in before]


def test_users_are_isolated(run):
    run(templates.replace_template(USER, WEEK))
    run(materializer.materialize(USER, MONDAY))
    assert run(materializer.materialize(OTHER_USER, MONDAY)) == []
    assert len(run(materializer.list_sessions(USER, MONDAY))) == 3


def test_rematerialize_clears_active_timer_reference(run):
    from productify.services import time_tracker

    run(templates.replace_template(USER, WEEK))
    sessions = run(materializer.materialize(USER, MONDAY))
    run(time_tracker.start(USER, sessions[0]["id"]))
    run(materializer.materialize(USER, MONDAY))
    assert run(time_tracker.get_active(USER)) is None

    async def timer_row():
        async with db.transaction() as session:
            return await repositories.get_active_timer(session, USER)

    assert run(timer_row())["session_id"] is None


def test_month_summary(run):
    run(templates.replace_template(USER, WEEK))
    sessions = run(materializer.materialize(USER, MONDAY))
    run(materializer.materialize(USER, date(2024, 1, 8)))
    from productify.services import session_state

    run(session_state.set_status(USER, sessions[1]["id"], "completed"))
    summary = run(materializer.month_summary(USER, 2024, 1))
    assert summary == {
        "2024-01-01": {"total": 3, "completed": 1},
        "2024-01-08": {"total": 3, "completed": 0},
    }


def test_overlapping_replacements_leave_one_set(run):
    async def replace_twice():
        return await asyncio.gather(
            materializer.materialize(USER, MONDAY, [{"name": "A"}, {"name": "A2"}]),
            materializer.materialize(USER, MONDAY, [{"name": "B"}]),
        )

    first, second = run(replace_twice())
    stored = run(materializer.list_sessions(USER, MONDAY))
    assert [s["name"] for s in stored] in (["A", "A2"], ["B"])
    assert [s["id"] for s in stored] in ([s["id"] for s in first], [s["id"] for s in second])
