"""
Pytest configuration.
Provides the moderation core, an in-memory session store, a fake LLM and an
API client wired to them.
"""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from focustutor.llm import LlmResult
from focustutor.main import app, get_chat_service
from focustutor.moderation import DecisionGate
from focustutor.phases import PhaseTracker
from focustutor.schemas import ChatSession, Phase
from focustutor.service import ChatService
from focustutor.session_store import InMemorySessionStore


# ==================== Moderation core ====================

@pytest.fixture
def tracker() -> PhaseTracker:
    return PhaseTracker(discovery_window=3)


@pytest.fixture
def gate(tracker) -> DecisionGate:
    return DecisionGate(tracker=tracker, relevance_threshold=0.6, follow_up_threshold=0.4)


@pytest.fixture
def make_session():
    """Factory for sessions; defaults to a fresh discovery session."""

    def _make(**fields) -> ChatSession:
        fields.setdefault("session_id", "s-1")
        return ChatSession(**fields)

    return _make


@pytest.fixture
def focus_session(make_session) -> ChatSession:
    """Session that has already locked "Derivatives" in Mathematics."""
    return make_session(
        phase=Phase.FOCUS,
        substantive_message_count=3,
        current_topic="Derivatives",
        subject="Mathematics",
    )


# ==================== Service & LLM fakes ====================

@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def fake_generate() -> AsyncMock:
    return AsyncMock(return_value=LlmResult(content="Tutor answer", model="fake-model", stub=False))


@pytest.fixture
def stream_calls() -> list:
    return []


@pytest.fixture
def fake_generate_stream(stream_calls):
    async def _stream(prompt, session, max_tokens=512, temperature=0.4):
        stream_calls.append(prompt)
        for chunk in ("Tutor ", "answer"):
            yield chunk

    return _stream


@pytest.fixture
def service(store, gate, fake_generate, fake_generate_stream) -> ChatService:
    return ChatService(
        store=store,
        gate=gate,
        generate=fake_generate,
        generate_stream=fake_generate_stream,
        history_size=10,
    )


@pytest.fixture
def client(service):
    app.dependency_overrides[get_chat_service] = lambda: service
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
