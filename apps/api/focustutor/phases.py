"""
Discovery/focus phase tracking for chat sessions.

    discovery --(substantive_message_count reaches window)--> focus

Focus has no way back inside the core; only an explicit reset does that.
"""
from __future__ import annotations

import logging
from typing import Optional

from .keywords import extract_keywords
from .patterns import PatternTables, build_pattern_tables
from .schemas import ChatSession, MessageKind, Phase

logger = logging.getLogger(__name__)

DEFAULT_DISCOVERY_WINDOW = 3


def phase_for_count(substantive_message_count: int, discovery_window: int = DEFAULT_DISCOVERY_WINDOW) -> Phase:
    if substantive_message_count >= discovery_window:
        return Phase.FOCUS
    return Phase.DISCOVERY


class PhaseTracker:
    def __init__(
        self,
        patterns: PatternTables | None = None,
        discovery_window: int = DEFAULT_DISCOVERY_WINDOW,
    ) -> None:
        if discovery_window < 1:
            raise ValueError("discovery_window must be at least 1")
        self.patterns = patterns or build_pattern_tables()
        self.discovery_window = discovery_window

    def classify(self, message: str) -> MessageKind:
        if not message or not message.strip():
            return MessageKind.EMPTY
        return self.patterns.match_exempt(message) or MessageKind.SUBSTANTIVE

    def extract_topic(self, message: str) -> Optional[str]:
        """Candidate topic from phrasing like "teach me about X"; None if nothing usable."""
        topic = self.patterns.extract_topic(message)
        if topic and extract_keywords(topic):
            return topic
        return None

    def advance(self, session: ChatSession, message: str) -> ChatSession:
        """
        Return the session updated for one incoming message.

        Greetings, meta questions and empty messages leave it untouched.
        Substantive messages bump the counter; during discovery the first
        extractable topic is locked in. The input session is not mutated.
        """
        if self.classify(message) is not MessageKind.SUBSTANTIVE:
            return session

        count = session.substantive_message_count + 1
        update: dict = {"substantive_message_count": count}

        if session.phase is Phase.DISCOVERY:
            if not session.current_topic:
                topic = self.extract_topic(message)
                if topic:
                    update["current_topic"] = topic
                    logger.info("Topic set during discovery: %r", topic)
            update["phase"] = phase_for_count(count, self.discovery_window)
            if update["phase"] is Phase.FOCUS:
                logger.info(
                    "Session %s entered focus after %d substantive messages (topic=%r)",
                    session.session_id,
                    count,
                    update.get("current_topic", session.current_topic),
                )

        return session.model_copy(update=update)
