import pytest
from unittest.mock import AsyncMock

from intakegenie.processor import TurnProcessor
from intakegenie.session import CallSession
from intakegenie.state_machine import StateMachine
from intakegenie.store import Firm, InMemoryCallStore


@pytest.fixture
def session():
    return CallSession(call_id="CA_test_123", firm_name="Smith Jones Law")


@pytest.fixture
def machine():
    return StateMachine()


@pytest.fixture
def llm():
    client = AsyncMock()
    client.complete_json.return_value = {}
    return client


@pytest.fixture
def processor(llm, machine):
    return TurnProcessor(llm, machine=machine)


@pytest.fixture
def reply():
    """Build a model reply dict."""
    def _reply(say, next_state, updates=None, done=False):
        return {
            "assistant_say": say,
            "next_state": next_state,
            "updates": updates or {},
            "done": done,
        }
    return _reply


@pytest.fixture
def firm():
    return Firm(
        id="firm_1",
        firm_name="Smith Jones Law",
        notify_emails=["intake@smithjones.example"],
        inbound_number="+15550001111",
        forward_to_number="+15550002222",
    )


@pytest.fixture
def store(firm):
    return InMemoryCallStore(firms=[firm])
