"""
Topic relevance moderation (no LLM call).
Decide per user message whether it may reach the tutor model or should be
answered with a templated redirect back to the session's topic.
"""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import AbstractSet

from .keywords import extract_keywords, is_question
from .patterns import load_pattern_tables
from .phases import PhaseTracker
from .relevance import TopicProfile, score_relevance
from .schemas import (
    ChatSession,
    MessageKind,
    Phase,
    RedirectPayload,
    RelevanceVerdict,
    VerdictAction,
    VerdictReason,
)
from .settings import get_settings

logger = logging.getLogger(__name__)

DEFAULT_RELEVANCE_THRESHOLD = 0.6
DEFAULT_FOLLOW_UP_THRESHOLD = 0.4
FOLLOW_UP_HISTORY = 3

SUGGESTION_TEMPLATES = (
    "What is {topic}?",
    "How do I work with {topic}?",
    "Can you explain the concept of {topic}?",
)

_EXEMPT_REASONS = {
    MessageKind.EMPTY: VerdictReason.EMPTY,
    MessageKind.GREETING: VerdictReason.GREETING,
    MessageKind.META: VerdictReason.META,
}


def build_redirect(topic: str, subject: str | None, score: float) -> RedirectPayload:
    where = f"**{topic}** in {subject}" if subject else f"**{topic}**"
    message = (
        f"Let's stay focused on {topic}! Your question looks like it is about a different topic, "
        f"so I won't answer it here. We're currently studying {where}. "
        "If you'd like to learn about something else, you can start a new session anytime."
    )
    return RedirectPayload(
        message=message,
        suggestions=[t.format(topic=topic) for t in SUGGESTION_TEMPLATES],
        score=score,
    )


class DecisionGate:
    """
    Combines phase and relevance score into a verdict.

    evaluate() is pure: it reads the session as loaded and never advances
    it. Callers run PhaseTracker.advance() afterwards and must not forward a
    BLOCK verdict to the model.
    """

    def __init__(
        self,
        tracker: PhaseTracker | None = None,
        relevance_threshold: float = DEFAULT_RELEVANCE_THRESHOLD,
        follow_up_threshold: float = DEFAULT_FOLLOW_UP_THRESHOLD,
    ) -> None:
        self.tracker = tracker or PhaseTracker()
        self.relevance_threshold = relevance_threshold
        self.follow_up_threshold = follow_up_threshold

    def action_for_score(self, score: float) -> VerdictAction:
        if score >= self.relevance_threshold:
            return VerdictAction.ALLOW
        return VerdictAction.BLOCK

    def _is_follow_up(
        self,
        session: ChatSession,
        message: str,
        message_keywords: AbstractSet[str],
        profile: TopicProfile,
    ) -> bool:
        # A follow-up may only lean on history; any term of its own must belong to the topic or subject.
        if message_keywords - profile.topic_keywords - profile.subject_keywords:
            return False
        if not session.recent_messages:
            return False
        if not self.tracker.patterns.has_contextual_reference(message):
            return False
        recent = " ".join(session.recent_messages[-FOLLOW_UP_HISTORY:])
        context_score = score_relevance(
            extract_keywords(recent),
            profile.topic_keywords,
            profile.subject_keywords,
            is_question=False,
        )
        if context_score >= self.follow_up_threshold:
            logger.info("Contextual follow-up allowed (context score %.2f)", context_score)
            return True
        return False

    def evaluate(self, session: ChatSession, message: str) -> RelevanceVerdict:
        verdict = self._evaluate(session, message)
        logger.info(
            "Moderation verdict %s (%s) score=%.2f topic=%r phase=%s",
            verdict.action.value,
            verdict.reason.value,
            verdict.score,
            session.current_topic,
            session.phase.value,
        )
        return verdict

    def _evaluate(self, session: ChatSession, message: str) -> RelevanceVerdict:
        kind = self.tracker.classify(message)
        if kind is not MessageKind.SUBSTANTIVE:
            return RelevanceVerdict(score=0.0, action=VerdictAction.EXEMPT, reason=_EXEMPT_REASONS[kind])

        if session.phase is Phase.DISCOVERY:
            return RelevanceVerdict(score=0.0, action=VerdictAction.ALLOW, reason=VerdictReason.DISCOVERY)

        if not session.current_topic:
            return RelevanceVerdict(score=0.0, action=VerdictAction.ALLOW, reason=VerdictReason.NO_TOPIC)

        profile = TopicProfile.from_session(session)
        message_keywords = extract_keywords(message)
        score = score_relevance(
            message_keywords,
            profile.topic_keywords,
            profile.subject_keywords,
            is_question(message),
        )
        matched_topic = sorted(message_keywords & profile.topic_keywords)
        matched_subject = sorted(message_keywords & profile.subject_keywords)

        if self.action_for_score(score) is VerdictAction.ALLOW:
            return RelevanceVerdict(
                score=score,
                action=VerdictAction.ALLOW,
                reason=VerdictReason.RELEVANT,
                matched_topic_terms=matched_topic,
                matched_subject_terms=matched_subject,
            )

        if self._is_follow_up(session, message, message_keywords, profile):
            return RelevanceVerdict(
                score=score,
                action=VerdictAction.ALLOW,
                reason=VerdictReason.FOLLOW_UP,
                matched_topic_terms=matched_topic,
                matched_subject_terms=matched_subject,
            )

        return RelevanceVerdict(
            score=score,
            action=VerdictAction.BLOCK,
            reason=VerdictReason.OFF_TOPIC,
            matched_topic_terms=matched_topic,
            matched_subject_terms=matched_subject,
            redirect=build_redirect(session.current_topic, session.subject, score),
        )


@lru_cache
def get_decision_gate() -> DecisionGate:
    """Gate configured from settings; shared by the app."""
    settings = get_settings()
    tracker = PhaseTracker(
        patterns=load_pattern_tables(settings.moderation_patterns_file),
        discovery_window=settings.discovery_window,
    )
    return DecisionGate(
        tracker=tracker,
        relevance_threshold=settings.relevance_threshold,
        follow_up_threshold=settings.follow_up_threshold,
    )
