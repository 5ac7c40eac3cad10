"""Runs the SQL against a real PostgreSQL server.

Opt in with HANDOFF_TEST_DATABASE_URL pointing at a disposable database;
the tables are truncated before every test.
"""
import os
import threading
from datetime import datetime, timedelta, timezone

import pytest

from handoff import settings
from handoff.db import Database

DSN = os.getenv("HANDOFF_TEST_DATABASE_URL")

pytestmark = pytest.mark.skipif(not DSN, reason="HANDOFF_TEST_DATABASE_URL not set")

NOW = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def db(monkeypatch):
    monkeypatch.setattr(settings, "DB_POOL_MAX", 10)
    db = Database(DSN)
    db.ensure_schema()
    with db.cursor() as cur:
        cur.execute("TRUNCATE queue_items, operators, service_gate RESTART IDENTITY")
    yield db
    db.close()


def enqueue(db, count):
    for n in range(count):
        assert db.insert_queue_item(f"u{n}", f"u{n}-chat", NOW + timedelta(seconds=n))


def test_duplicate_insert_keeps_first(db):
    assert db.insert_queue_item("u1", "c1", NOW) is True
    assert db.insert_queue_item("u1", "c2", NOW + timedelta(seconds=5)) is False
    assert db.get_queue_item("u1")["chat_id"] == "c1"
    assert db.queue_position("u1") == 1
    assert db.queue_position("nobody") is None


def test_concurrent_assign_never_shares_an_item(db):
    enqueue(db, 5)
    claimed = []
    lock = threading.Lock()
    barrier = threading.Barrier(8)

    def take(operator):
        barrier.wait()
        row = db.assign_oldest_unassigned(operator, NOW)
        if row is not None:
            with lock:
                claimed.append(row["user_id"])

    threads = [threading.Thread(target=take, args=(f"op{n}",)) for n in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert len(claimed) == len(set(claimed))
    while db.assign_oldest_unassigned("late", NOW) is not None:
        pass
    assigned = [row for row in db.list_queue_items() if row["assigned_operator"]]
    assert len(assigned) == 5


def test_pop_returns_oldest_first(db):
    enqueue(db, 2)
    assert db.pop_oldest_queue_item()["user_id"] == "u0"
    assert db.pop_oldest_queue_item()["user_id"] == "u1"
    assert db.pop_oldest_queue_item() is None


def test_warning_mark_respects_timer_window(db):
    enqueue(db, 1)
    db.assign_oldest_unassigned("op1", NOW)
    started = NOW + timedelta(seconds=10)
    assert db.start_timer("u0", started)

    assert db.mark_timeout_warned("u0", NOW, NOW) is False
    assert db.mark_timeout_warned("u0", NOW, started) is True
    assert db.mark_timeout_warned("u0", NOW, started) is False

    restarted = started + timedelta(seconds=30)
    assert db.start_timer("u0", restarted)
    assert db.get_queue_item("u0")["timeout_warning_sent"] is False
    assert db.mark_timeout_warned("u0", NOW) is True


def test_timer_needs_assignment(db):
    enqueue(db, 1)
    assert db.start_timer("u0", NOW) is False
    assert db.clear_timer("u0", NOW) is False


def test_expired_delete_matches_only_current_window(db):
    enqueue(db, 1)
    db.assign_oldest_unassigned("op1", NOW)
    started = NOW + timedelta(seconds=10)
    db.start_timer("u0", started)

    assert db.delete_expired_queue_item("u0", NOW) is None
    assert [row["user_id"] for row in db.list_running_timers()] == ["u0"]
    removed = db.delete_expired_queue_item("u0", started)
    assert removed["assigned_operator"] == "op1"
    assert db.count_queue_items() == 0


def test_operator_delete_refused_while_assigned(db):
    assert db.insert_operator("alice", NOW)["name"] == "alice"
    assert db.insert_operator("alice", NOW) is None
    enqueue(db, 1)
    db.assign_oldest_unassigned("alice", NOW)

    assert db.count_assignments("alice") == 1
    assert db.delete_operator_if_idle("alice") is False
    db.delete_queue_item("u0")
    assert db.delete_operator_if_idle("alice") is True
    assert db.list_operators() == []


def test_gate_row_lifecycle(db):
    assert db.get_gate() is None
    assert db.set_gate(True) is False
    db.ensure_gate(default_online=False)
    db.ensure_gate(default_online=True)
    assert db.get_gate() is False
    assert db.set_gate(True) is True
    assert db.get_gate() is True
