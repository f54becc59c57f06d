"""Session history stores."""

from .history_store import (
    HistoryStore,
    InMemoryHistoryStore,
    SessionRecord,
    SQLiteHistoryStore,
    create_history_store,
    to_message,
)

__all__ = [
    "HistoryStore",
    "InMemoryHistoryStore",
    "SessionRecord",
    "SQLiteHistoryStore",
    "create_history_store",
    "to_message",
]
