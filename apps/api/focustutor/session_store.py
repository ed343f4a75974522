"""
Chat session storage.

InMemorySessionStore keeps sessions in a dict (default when no DATABASE_URL
is set); SqlSessionStore persists them with SQLAlchemy. Both hand out copies,
so callers always go through load() and save().
"""
from __future__ import annotations

import logging
from typing import Protocol

from sqlalchemy.orm import sessionmaker

from . import database
from .models import ChatSessionRecord
from .schemas import ChatSession, Phase

logger = logging.getLogger(__name__)


class SessionNotFoundError(LookupError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Chat session {session_id!r} not found")
        self.session_id = session_id


class SessionStore(Protocol):
    def load(self, session_id: str) -> ChatSession: ...

    def save(self, session: ChatSession) -> None: ...

    def delete(self, session_id: str) -> None: ...


class InMemorySessionStore:
    def __init__(self) -> None:
        self._sessions: dict[str, ChatSession] = {}

    def load(self, session_id: str) -> ChatSession:
        try:
            return self._sessions[session_id].model_copy(deep=True)
        except KeyError:
            raise SessionNotFoundError(session_id) from None

    def save(self, session: ChatSession) -> None:
        self._sessions[session.session_id] = session.model_copy(deep=True)

    def delete(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is None:
            raise SessionNotFoundError(session_id)


def _to_session(row: ChatSessionRecord) -> ChatSession:
    return ChatSession(
        session_id=row.session_id,
        phase=Phase(row.phase),
        substantive_message_count=row.substantive_message_count,
        current_topic=row.current_topic,
        subject=row.subject,
        concepts_covered=list(row.concepts_covered or []),
        recent_messages=list(row.recent_messages or []),
    )


class SqlSessionStore:
    def __init__(self, session_factory: sessionmaker | None = None) -> None:
        self._factory = session_factory

    def _scope(self):
        if self._factory is None:
            return database.get_db()
        return database.session_scope(self._factory)

    def load(self, session_id: str) -> ChatSession:
        with self._scope() as db:
            row = db.get(ChatSessionRecord, session_id)
            if row is None:
                raise SessionNotFoundError(session_id)
            return _to_session(row)

    def save(self, session: ChatSession) -> None:
        with self._scope() as db:
            row = db.get(ChatSessionRecord, session.session_id)
            if row is None:
                row = ChatSessionRecord(session_id=session.session_id)
                db.add(row)
            row.phase = session.phase.value
            row.substantive_message_count = session.substantive_message_count
            row.current_topic = session.current_topic
            row.subject = session.subject
            row.concepts_covered = list(session.concepts_covered)
            row.recent_messages = list(session.recent_messages)

    def delete(self, session_id: str) -> None:
        with self._scope() as db:
            row = db.get(ChatSessionRecord, session_id)
            if row is None:
                raise SessionNotFoundError(session_id)
            db.delete(row)


def build_session_store() -> SessionStore:
    """SQL store when the database was initialised, in-memory otherwise."""
    if database.SessionLocal is not None:
        return SqlSessionStore()
    logger.info("DATABASE_URL not set; chat sessions are kept in memory")
    return InMemorySessionStore()
