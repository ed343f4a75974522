from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class Phase(str, Enum):
    DISCOVERY = "discovery"
    FOCUS = "focus"


class MessageKind(str, Enum):
    EMPTY = "empty"
    GREETING = "greeting"
    META = "meta"
    SUBSTANTIVE = "substantive"


class VerdictAction(str, Enum):
    ALLOW = "allow"
    BLOCK = "block"
    EXEMPT = "exempt"


class VerdictReason(str, Enum):
    EMPTY = "empty"
    GREETING = "greeting"
    META = "meta"
    DISCOVERY = "discovery"
    NO_TOPIC = "no_topic"
    FOLLOW_UP = "follow_up"
    RELEVANT = "relevant"
    OFF_TOPIC = "off_topic"


class ChatSession(BaseModel):
    """
    One ongoing tutoring conversation.

    The moderation core only ever changes phase, substantive_message_count and
    (while in discovery) current_topic, and always by returning a copy.
    concepts_covered and recent_messages are maintained by the chat service.
    """

    session_id: str = Field(min_length=1, max_length=64)
    phase: Phase = Phase.DISCOVERY
    substantive_message_count: int = Field(default=0, ge=0)
    current_topic: Optional[str] = None
    subject: Optional[str] = None
    concepts_covered: list[str] = Field(default_factory=list)
    recent_messages: list[str] = Field(default_factory=list)


class RedirectPayload(BaseModel):
    """Templated on-topic content returned instead of an LLM answer."""

    message: str
    suggestions: list[str]
    score: float

    def as_text(self) -> str:
        lines = [self.message, "", "You could ask:"]
        lines.extend(f"- {q}" for q in self.suggestions)
        return "\n".join(lines)


class RelevanceVerdict(BaseModel):
    score: float = Field(ge=0.0, le=1.0)
    action: VerdictAction
    reason: VerdictReason
    matched_topic_terms: list[str] = Field(default_factory=list)
    matched_subject_terms: list[str] = Field(default_factory=list)
    redirect: Optional[RedirectPayload] = None

    @property
    def forwards_to_llm(self) -> bool:
        return self.action is not VerdictAction.BLOCK


# --- API bodies ---


class ChatMessage(BaseModel):
    role: str = Field(pattern="^(system|user|assistant)$")
    content: str = Field(min_length=1, max_length=20000)


class CreateSessionRequest(BaseModel):
    subject: str | None = Field(default=None, max_length=128)
    topic: str | None = Field(default=None, max_length=256)
    concepts: list[str] = Field(default_factory=list)


class SwitchTopicRequest(BaseModel):
    topic: str = Field(min_length=1, max_length=256)
    subject: str | None = Field(default=None, max_length=128)
    concepts: list[str] | None = None


class UserMessageRequest(BaseModel):
    content: str = Field(min_length=1, max_length=20000)
    max_tokens: int | None = Field(default=512, ge=64, le=4096)
    temperature: float | None = Field(default=0.4, ge=0.0, le=2.0)


class ChatTurnResponse(BaseModel):
    assistant: ChatMessage
    model: str
    stub: bool = False
    verdict: RelevanceVerdict
    session: ChatSession


class SubjectConfig(BaseModel):
    id: str
    name: str
    description: str


class SubjectsListResponse(BaseModel):
    subjects: list[SubjectConfig]
