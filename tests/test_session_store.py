import pytest

from conftest import Collector, ScriptedFactory
from speech_gateway.core.errors import SessionConflictError
from speech_gateway.models.transcript import SessionState
from speech_gateway.services.session import StreamingSession
from speech_gateway.services.session_store import SessionRegistry


def new_session(session_id="s1"):
    return StreamingSession(session_id, send=Collector(), adapter_factory=ScriptedFactory())


def test_register_and_lookup():
    registry = SessionRegistry()
    s = new_session()
    registry.register(s, "conn-a")
    assert registry.get("s1") is s
    assert registry.owner_of("s1") == "conn-a"
    assert registry.get("missing") is None
    assert len(registry) == 1


def test_second_active_session_is_rejected():
    registry = SessionRegistry()
    first = new_session()
    registry.register(first, "conn-a")
    first.state = SessionState.STREAMING
    with pytest.raises(SessionConflictError):
        registry.register(new_session(), "conn-a")
    assert registry.get("s1") is first


def test_closed_session_can_be_superseded():
    registry = SessionRegistry()
    first = new_session()
    registry.register(first, "conn-a")
    first.state = SessionState.CLOSED
    second = new_session()
    registry.register(second, "conn-b")
    assert registry.get("s1") is second
    assert registry.owner_of("s1") == "conn-b"


def test_remove_only_drops_the_registered_instance():
    registry = SessionRegistry()
    stale = new_session()
    registry.register(stale, "conn-a")
    stale.state = SessionState.FAILED
    fresh = new_session()
    registry.register(fresh, "conn-a")

    registry.remove(stale)
    assert registry.get("s1") is fresh
    registry.remove(fresh)
    assert len(registry) == 0


def test_sessions_for_connection():
    registry = SessionRegistry()
    a1, a2, b1 = new_session("a1"), new_session("a2"), new_session("b1")
    registry.register(a1, "conn-a")
    registry.register(a2, "conn-a")
    registry.register(b1, "conn-b")
    assert set(registry.sessions_for("conn-a")) == {a1, a2}
    assert registry.sessions_for("conn-c") == []
