import time

import pytest

from handoff.sweeper import SweeperConfig, TimeoutSweeper, describe_duration, parse_response_timeout
from tests.conftest import OPERATOR_CHAT
from tests.fakes import drain


@pytest.fixture
def engaged(queue, clock):
    """Contact `a` assigned to op1 with a running response timer."""
    queue.enqueue("a", "a-chat")
    queue.assign_next("op1")
    queue.start_or_reset_timer("a")
    return queue.get("a")


def test_warning_then_removal_timeline(sweeper, queue, client, notifier, clock, engaged):
    clock.advance(239)
    result = sweeper.tick()
    assert result.warned == [] and result.removed == []
    assert queue.get("a").timeout_warning_sent is False

    clock.advance(1)
    result = sweeper.tick()
    assert result.warned == ["a"]
    assert queue.get("a").timeout_warning_sent is True
    drain(notifier)
    assert len(client.messages_to("a-chat")) == 1
    assert "op1" in client.messages_to("a-chat")[0]

    clock.advance(1)
    result = sweeper.tick()
    assert result.warned == []
    drain(notifier)
    assert len(client.messages_to("a-chat")) == 1

    clock.advance(59)
    result = sweeper.tick()
    assert result.removed == ["a"]
    assert queue.get("a") is None
    drain(notifier)

    contact_messages = client.messages_to("a-chat")
    assert len(contact_messages) == 2
    assert "removed from the queue" in contact_messages[1]
    assert "5 minutes" in contact_messages[1]
    operator_messages = client.messages_to(OPERATOR_CHAT)
    assert len(operator_messages) == 1
    assert "a" in operator_messages[0] and "op1" in operator_messages[0]

    assert sweeper.tick().removed == []
    drain(notifier)
    assert len(client.sent) == 3


def test_idle_assignment_is_ignored(sweeper, queue, clock):
    queue.enqueue("a", "a-chat")
    queue.assign_next("op1")
    clock.advance(10_000)
    assert sweeper.tick().removed == []
    assert queue.get("a") is not None


def test_reply_clears_timer_before_sweep(sweeper, queue, clock, engaged):
    clock.advance(299)
    queue.clear_timer("a")
    clock.advance(100)
    result = sweeper.tick()
    assert result.removed == [] and result.warned == []
    assert queue.get("a").is_assigned


def test_operator_message_resets_window(sweeper, queue, clock, client, notifier, engaged):
    clock.advance(250)
    assert sweeper.tick().warned == ["a"]
    queue.start_or_reset_timer("a")
    clock.advance(250)
    assert sweeper.tick().warned == ["a"]
    drain(notifier)
    assert len(client.messages_to("a-chat")) == 2


def test_item_removed_elsewhere_skips_notices(sweeper, queue, clock, client, notifier, engaged, db):
    clock.advance(300)
    snapshot = db.list_running_timers()
    queue.remove("a")

    # The scan saw the item, but the manual removal won the race.
    db.list_running_timers = lambda: snapshot
    assert sweeper.tick().removed == []
    drain(notifier)
    assert client.sent == []


def test_reply_between_scan_and_removal_keeps_contact(sweeper, queue, clock, db, engaged):
    clock.advance(300)
    snapshot = db.list_running_timers()
    queue.clear_timer("a")
    db.list_running_timers = lambda: snapshot

    assert sweeper.tick().removed == []
    assert queue.get("a") is not None


def test_notification_failure_does_not_undo_removal(sweeper, queue, clock, client, notifier, engaged):
    client.failing_destinations.add("a-chat")
    clock.advance(301)
    assert sweeper.tick().removed == ["a"]
    drain(notifier)
    assert queue.get("a") is None
    assert len(client.messages_to(OPERATOR_CHAT)) == 1


def test_one_failing_item_does_not_stop_the_tick(sweeper, queue, clock, db):
    for user in ("a", "b"):
        queue.enqueue(user, f"{user}-chat")
        queue.assign_next("op1")
        queue.start_or_reset_timer(user)
    clock.advance(300)

    original = db.delete_expired_queue_item

    def flaky(user_id, started_at):
        if user_id == "a":
            raise RuntimeError("deadlock detected")
        return original(user_id, started_at)

    db.delete_expired_queue_item = flaky
    assert sweeper.tick().removed == ["b"]
    assert queue.get("a") is not None


def test_zero_warning_threshold_warns_immediately(queue, notifier, clock, engaged):
    config = SweeperConfig(timeout_seconds=30, warning_lead_seconds=60, operator_chat_id=OPERATOR_CHAT)
    sweeper = TimeoutSweeper(queue, notifier, config=config, clock=clock)
    assert sweeper.tick().warned == ["a"]


def test_refuses_to_start_without_notifier(queue, sweeper_config, clock):
    sweeper = TimeoutSweeper(queue, None, config=sweeper_config, clock=clock)
    assert sweeper.start() is False
    assert sweeper.running is False
    assert sweeper.thread is None


def test_background_thread_ticks_and_stops(queue, notifier, clock, engaged):
    config = SweeperConfig(timeout_seconds=300, warning_lead_seconds=60,
                           interval_seconds=1, operator_chat_id=OPERATOR_CHAT)
    sweeper = TimeoutSweeper(queue, None, config=config, clock=clock)
    sweeper.bind_notifier(notifier)
    clock.advance(400)

    assert sweeper.start() is True
    assert sweeper.start() is False
    deadline = time.monotonic() + 2
    while queue.get("a") is not None and time.monotonic() < deadline:
        time.sleep(0.01)
    sweeper.stop()

    assert queue.get("a") is None
    assert not sweeper.thread.is_alive()


@pytest.mark.parametrize("raw, expected", [
    (None, 300),
    ("", 300),
    ("abc", 300),
    ("10", 300),
    ("-5", 300),
    ("11", 11),
    (" 600 ", 600),
    ("15abc", 15),
    ("12.9", 12),
    ("10.5", 300),
    ("+30", 30),
    ("x15", 300),
])
def test_parse_response_timeout(raw, expected):
    assert parse_response_timeout(raw) == expected


def test_describe_duration():
    assert describe_duration(300) == "5 minutes"
    assert describe_duration(45) == "45 seconds"
