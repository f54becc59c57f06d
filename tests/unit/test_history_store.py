"""Tests for session history storage."""

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from taskpilot.models import ActionStep, StepStatus, StepType
from taskpilot.persistence import (
    HistoryStore,
    InMemoryHistoryStore,
    SQLiteHistoryStore,
    create_history_store,
    to_message,
)


def _step():
    return ActionStep(
        id="balance-1",
        type=StepType.CHECK_BALANCE,
        params={"address": "0x1", "chain_id": 1},
        status=StepStatus.COMPLETED,
        result={"balance": "1.5"},
        attempts=1,
    )


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryHistoryStore()
    return SQLiteHistoryStore(str(tmp_path / "nested" / "history.db"))


class TestHistoryStore:
    def test_implements_protocol(self, store):
        assert isinstance(store, HistoryStore)

    def test_unknown_session(self, store):
        assert store.get_session("missing") is None

    def test_messages_keep_order_and_type(self, store):
        store.add_message("s1", "user", "check my balance")
        store.add_message("s1", "assistant", "Done: QUERY")
        store.add_message("s1", "system", "note")

        record = store.get_session("s1")

        assert [type(m) for m in record.messages] == [HumanMessage, AIMessage, SystemMessage]
        assert record.messages[0].content == "check my balance"
        assert record.session_id == "s1"

    def test_steps_are_stored_as_json(self, store):
        store.add_step("s1", _step())

        steps = store.get_session("s1").steps

        assert len(steps) == 1
        assert steps[0]["id"] == "balance-1"
        assert steps[0]["type"] == "check_balance"
        assert steps[0]["status"] == "completed"
        assert steps[0]["result"] == {"balance": "1.5"}

    def test_sessions_are_isolated(self, store):
        store.add_message("a", "user", "one")
        store.add_message("b", "user", "two")

        assert set(store.list_sessions()) == {"a", "b"}
        assert [m.content for m in store.get_session("b").messages] == ["two"]

    def test_unknown_role_rejected(self, store):
        with pytest.raises(ValueError):
            store.add_message("s1", "robot", "beep")


class TestSQLiteHistoryStore:
    def test_persists_across_instances(self, tmp_path):
        path = str(tmp_path / "history.db")
        SQLiteHistoryStore(path).add_message("s1", "user", "hello")

        record = SQLiteHistoryStore(path).get_session("s1")

        assert record.messages[0].content == "hello"
        assert record.created_at <= record.updated_at

    def test_delete(self, tmp_path):
        store = SQLiteHistoryStore(str(tmp_path / "history.db"))
        store.add_message("s1", "user", "hello")
        store.add_step("s1", _step())

        store.delete("s1")

        assert store.get_session("s1") is None
        assert store.list_sessions() == []


def test_to_message_aliases():
    assert isinstance(to_message("Human", "x"), HumanMessage)
    assert isinstance(to_message("ai", "x"), AIMessage)


def test_create_history_store(tmp_path):
    assert isinstance(create_history_store(None), InMemoryHistoryStore)
    assert isinstance(create_history_store(str(tmp_path / "h.db")), SQLiteHistoryStore)
