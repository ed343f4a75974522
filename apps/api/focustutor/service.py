"""
Chat turn orchestration around the moderation gate.

Every turn for a session runs under that session's asyncio.Lock:
load -> gate.evaluate -> tracker.advance -> save, then the model call for
non-blocked messages and a second save for the conversation history.
Different sessions never share a lock.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Iterable

from . import llm
from .logging_config import set_session_id
from .moderation import DecisionGate
from .schemas import ChatSession, Phase, RelevanceVerdict, VerdictAction
from .session_store import SessionStore
from .subjects import resolve_subject_name

logger = logging.getLogger(__name__)

Generate = Callable[..., Awaitable[llm.LlmResult]]
GenerateStream = Callable[..., AsyncIterator[str]]

MODERATION_MODEL = "moderation"


@dataclass(frozen=True)
class ChatTurn:
    verdict: RelevanceVerdict
    session: ChatSession
    reply: str
    model: str
    stub: bool


def _clean_concepts(concepts: Iterable[str] | None) -> list[str]:
    return [c.strip() for c in concepts or [] if c and c.strip()]


class ChatService:
    def __init__(
        self,
        store: SessionStore,
        gate: DecisionGate,
        generate: Generate = llm.generate_response,
        generate_stream: GenerateStream = llm.generate_response_stream,
        history_size: int = 10,
    ) -> None:
        self.store = store
        self.gate = gate
        self.generate = generate
        self.generate_stream = generate_stream
        # History is stored as user/assistant pairs.
        self.history_size = history_size - history_size % 2
        self._locks: dict[str, asyncio.Lock] = {}

    def lock_for(self, session_id: str) -> asyncio.Lock:
        """Per-session lock. Raises SessionNotFoundError before creating one for an unknown id."""
        lock = self._locks.get(session_id)
        if lock is None:
            self.store.load(session_id)
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    # --- session management (the "external collaborator" side of the core) ---

    def create_session(
        self,
        subject: str | None = None,
        topic: str | None = None,
        concepts: Iterable[str] | None = None,
    ) -> ChatSession:
        session = ChatSession(
            session_id=uuid.uuid4().hex,
            subject=resolve_subject_name(subject),
            current_topic=(topic or "").strip() or None,
            concepts_covered=_clean_concepts(concepts),
        )
        self.store.save(session)
        logger.info("Created chat session %s (subject=%r, topic=%r)", session.session_id, session.subject, session.current_topic)
        return session

    def get_session(self, session_id: str) -> ChatSession:
        return self.store.load(session_id)

    async def delete_session(self, session_id: str) -> None:
        async with self.lock_for(session_id):
            self.store.delete(session_id)
        self._locks.pop(session_id, None)

    async def reset_session(self, session_id: str) -> ChatSession:
        """Back to discovery with no topic; subject and concepts are kept."""
        async with self.lock_for(session_id):
            session = self.store.load(session_id).model_copy(
                update={
                    "phase": Phase.DISCOVERY,
                    "substantive_message_count": 0,
                    "current_topic": None,
                    "recent_messages": [],
                }
            )
            self.store.save(session)
        logger.info("Reset chat session %s", session_id)
        return session

    async def switch_topic(
        self,
        session_id: str,
        topic: str,
        subject: str | None = None,
        concepts: Iterable[str] | None = None,
    ) -> ChatSession:
        """Explicit topic change requested by the learner; the phase is left as is."""
        async with self.lock_for(session_id):
            session = self.store.load(session_id)
            update: dict = {"current_topic": topic.strip()}
            if subject is not None:
                update["subject"] = resolve_subject_name(subject)
            if concepts is not None:
                update["concepts_covered"] = _clean_concepts(concepts)
            session = session.model_copy(update=update)
            self.store.save(session)
        logger.info("Session %s switched topic to %r", session_id, session.current_topic)
        return session

    # --- moderation ---

    def preview(self, session_id: str, message: str) -> RelevanceVerdict:
        """Verdict for message against the stored session, without advancing it."""
        return self.gate.evaluate(self.store.load(session_id), message)

    def _moderate_locked(self, session_id: str, message: str) -> tuple[RelevanceVerdict, ChatSession]:
        session = self.store.load(session_id)
        verdict = self.gate.evaluate(session, message)
        session = self.gate.tracker.advance(session, message)
        self.store.save(session)
        return verdict, session

    async def moderate(self, session_id: str, message: str) -> tuple[RelevanceVerdict, ChatSession]:
        async with self.lock_for(session_id):
            set_session_id(session_id)
            try:
                return self._moderate_locked(session_id, message)
            finally:
                set_session_id(None)

    def _remember(self, session: ChatSession, message: str, reply: str) -> ChatSession:
        if self.history_size == 0:
            return session
        history = (session.recent_messages + [message, reply])[-self.history_size:]
        session = session.model_copy(update={"recent_messages": history})
        self.store.save(session)
        return session

    async def chat(self, session_id: str, message: str, max_tokens: int = 512, temperature: float = 0.4) -> ChatTurn:
        async with self.lock_for(session_id):
            set_session_id(session_id)
            try:
                verdict, session = self._moderate_locked(session_id, message)
                if verdict.action is VerdictAction.BLOCK:
                    return ChatTurn(
                        verdict=verdict,
                        session=session,
                        reply=verdict.redirect.as_text(),
                        model=MODERATION_MODEL,
                        stub=True,
                    )

                result = await self.generate(message, session, max_tokens=max_tokens, temperature=temperature)
                session = self._remember(session, message, result.content)
                return ChatTurn(verdict=verdict, session=session, reply=result.content, model=result.model, stub=result.stub)
            finally:
                set_session_id(None)

    async def chat_stream(
        self, session_id: str, message: str, max_tokens: int = 512, temperature: float = 0.4
    ) -> tuple[RelevanceVerdict, AsyncIterator[str]]:
        """
        Moderate now, stream later. The returned iterator yields the redirect text
        for blocked messages and model chunks otherwise; the full reply is added
        to the history once the stream is exhausted.
        """
        verdict, session = await self.moderate(session_id, message)

        async def _chunks() -> AsyncIterator[str]:
            if verdict.action is VerdictAction.BLOCK:
                yield verdict.redirect.as_text()
                return
            parts: list[str] = []
            async with self.lock_for(session_id):
                async for chunk in self.generate_stream(message, session, max_tokens=max_tokens, temperature=temperature):
                    parts.append(chunk)
                    yield chunk
                self._remember(self.store.load(session_id), message, "".join(parts))

        return verdict, _chunks()
