"""Session history: conversational turns and executed steps."""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    message_to_dict,
    messages_from_dict,
)

from taskpilot.models import ActionStep

LOGGER = logging.getLogger(__name__)

_ROLES = {
    "user": HumanMessage,
    "human": HumanMessage,
    "assistant": AIMessage,
    "ai": AIMessage,
    "system": SystemMessage,
}


def to_message(role: str, content: str) -> BaseMessage:
    message_cls = _ROLES.get(role.lower())
    if message_cls is None:
        raise ValueError(f"Unknown message role: {role}")
    return message_cls(content=content)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class SessionRecord:
    session_id: str
    messages: List[BaseMessage] = field(default_factory=list)
    steps: List[Dict[str, Any]] = field(default_factory=list)
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)


@runtime_checkable
class HistoryStore(Protocol):
    """Append-only sink for turns and executed steps."""

    def add_message(self, session_id: str, role: str, content: str) -> None: ...

    def add_step(self, session_id: str, step: ActionStep) -> None: ...

    def get_session(self, session_id: str) -> Optional[SessionRecord]: ...


class InMemoryHistoryStore:
    """Process-local history, lost on exit."""

    def __init__(self) -> None:
        self._sessions: Dict[str, SessionRecord] = {}

    def _session(self, session_id: str) -> SessionRecord:
        if session_id not in self._sessions:
            self._sessions[session_id] = SessionRecord(session_id=session_id)
        return self._sessions[session_id]

    def add_message(self, session_id: str, role: str, content: str) -> None:
        record = self._session(session_id)
        record.messages.append(to_message(role, content))
        record.updated_at = _now()

    def add_step(self, session_id: str, step: ActionStep) -> None:
        record = self._session(session_id)
        record.steps.append(step.model_dump(mode="json"))
        record.updated_at = _now()

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        return self._sessions.get(session_id)

    def list_sessions(self) -> List[str]:
        return list(self._sessions)


class SQLiteHistoryStore:
    """SQLite-backed history. One connection per operation."""

    def __init__(self, db_path: str = "data/history.db"):
        db_dir = os.path.dirname(db_path)
        if db_dir and not os.path.exists(db_dir):
            os.makedirs(db_dir, exist_ok=True)

        self.db_path = db_path
        self._init_db()

    def _init_db(self) -> None:
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS sessions (
                    session_id TEXT PRIMARY KEY,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id TEXT NOT NULL,
                    message_json TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS steps (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id TEXT NOT NULL,
                    step_json TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            conn.commit()
        finally:
            conn.close()

    def _touch(self, conn: sqlite3.Connection, session_id: str, now: str) -> None:
        updated = conn.execute(
            "UPDATE sessions SET updated_at = ? WHERE session_id = ?", (now, session_id)
        ).rowcount
        if not updated:
            conn.execute(
                "INSERT INTO sessions (session_id, created_at, updated_at) VALUES (?, ?, ?)",
                (session_id, now, now),
            )

    def add_message(self, session_id: str, role: str, content: str) -> None:
        payload = json.dumps(message_to_dict(to_message(role, content)), ensure_ascii=False)
        now = _now()
        conn = sqlite3.connect(self.db_path)
        try:
            self._touch(conn, session_id, now)
            conn.execute(
                "INSERT INTO messages (session_id, message_json, created_at) VALUES (?, ?, ?)",
                (session_id, payload, now),
            )
            conn.commit()
        finally:
            conn.close()

    def add_step(self, session_id: str, step: ActionStep) -> None:
        payload = json.dumps(step.model_dump(mode="json"), ensure_ascii=False, default=str)
        now = _now()
        conn = sqlite3.connect(self.db_path)
        try:
            self._touch(conn, session_id, now)
            conn.execute(
                "INSERT INTO steps (session_id, step_json, created_at) VALUES (?, ?, ?)",
                (session_id, payload, now),
            )
            conn.commit()
        finally:
            conn.close()

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        conn = sqlite3.connect(self.db_path)
        try:
            row = conn.execute(
                "SELECT created_at, updated_at FROM sessions WHERE session_id = ?", (session_id,)
            ).fetchone()
            if row is None:
                return None
            message_rows = conn.execute(
                "SELECT message_json FROM messages WHERE session_id = ? ORDER BY id", (session_id,)
            ).fetchall()
            step_rows = conn.execute(
                "SELECT step_json FROM steps WHERE session_id = ? ORDER BY id", (session_id,)
            ).fetchall()
        finally:
            conn.close()

        return SessionRecord(
            session_id=session_id,
            messages=messages_from_dict([json.loads(r[0]) for r in message_rows]),
            steps=[json.loads(r[0]) for r in step_rows],
            created_at=row[0],
            updated_at=row[1],
        )

    def list_sessions(self) -> List[str]:
        conn = sqlite3.connect(self.db_path)
        try:
            rows = conn.execute("SELECT session_id FROM sessions ORDER BY updated_at DESC").fetchall()
            return [r[0] for r in rows]
        finally:
            conn.close()

    def delete(self, session_id: str) -> None:
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute("DELETE FROM messages WHERE session_id = ?", (session_id,))
            conn.execute("DELETE FROM steps WHERE session_id = ?", (session_id,))
            conn.execute("DELETE FROM sessions WHERE session_id = ?", (session_id,))
            conn.commit()
        finally:
            conn.close()
        LOGGER.info(f"Deleted session {session_id}")


def create_history_store(db_path: Optional[str] = None):
    """SQLite store when a path is configured, else in-memory."""
    if db_path:
        return SQLiteHistoryStore(db_path)
    return InMemoryHistoryStore()
