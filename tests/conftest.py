import pytest

from handoff.gate import ServiceGate
from handoff.handler import MessageHandler
from handoff.notifier import Notifier
from handoff.operators import OperatorDirectory
from handoff.queue.manager import QueueManager
from handoff.sweeper import SweeperConfig, TimeoutSweeper
from tests.fakes import FakeClock, InMemoryDatabase, RecordingClient

OPERATOR_CHAT = "operators@c.us"
OPERATOR_ID = "15550000@c.us"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db():
    return InMemoryDatabase()


@pytest.fixture
def queue(db, clock):
    return QueueManager(db, clock=clock)


@pytest.fixture
def gate(db):
    gate = ServiceGate(db)
    gate.initialize()
    return gate


@pytest.fixture
def operators(db, clock):
    return OperatorDirectory(db, clock=clock)


@pytest.fixture
def client():
    return RecordingClient()


@pytest.fixture
def notifier(client):
    notifier = Notifier(client, max_workers=2)
    yield notifier
    notifier.close()


@pytest.fixture
def sweeper_config():
    return SweeperConfig(
        timeout_seconds=300,
        warning_lead_seconds=60,
        interval_seconds=30,
        operator_chat_id=OPERATOR_CHAT,
    )


@pytest.fixture
def sweeper(queue, notifier, sweeper_config, clock):
    return TimeoutSweeper(queue, notifier, config=sweeper_config, clock=clock)


@pytest.fixture
def handler(queue, gate, operators, notifier):
    return MessageHandler(
        queue, gate, operators, notifier,
        operator_ids=[OPERATOR_ID],
        operator_chat_id=OPERATOR_CHAT,
    )
