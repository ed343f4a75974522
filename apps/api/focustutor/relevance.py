"""
Relevance scoring between a message and the session's topic/subject.

    score = 0.6 * topic_score + 0.3 * subject_score + question_boost

question_boost is already weighted (0.2 or 0) and added flat. The overlap
uses the sum of set sizes as denominator, with the shared terms counted once
on each side, so long messages dilute the score and an exact match gives 1.0.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import AbstractSet, FrozenSet

from .keywords import extract_keywords
from .schemas import ChatSession

TOPIC_WEIGHT = 0.6
SUBJECT_WEIGHT = 0.3
QUESTION_BOOST = 0.2


@dataclass(frozen=True)
class TopicProfile:
    topic_keywords: FrozenSet[str]
    subject_keywords: FrozenSet[str]

    @classmethod
    def from_session(cls, session: ChatSession) -> "TopicProfile":
        topic = set(extract_keywords(session.current_topic or ""))
        for concept in session.concepts_covered:
            topic |= extract_keywords(concept)
        return cls(
            topic_keywords=frozenset(topic),
            subject_keywords=extract_keywords(session.subject or ""),
        )


def overlap_score(a: AbstractSet[str], b: AbstractSet[str]) -> float:
    """Dice overlap 2|a ∩ b| / (|a| + |b|); 0.0 when both sets are empty."""
    total = len(a) + len(b)
    if total == 0:
        return 0.0
    shared = len(a & b)
    return (2 * shared) / total


def score_relevance(
    message_keywords: AbstractSet[str],
    topic_keywords: AbstractSet[str],
    subject_keywords: AbstractSet[str],
    is_question: bool,
) -> float:
    """Weighted relevance in [0, 1]. Never raises on empty sets."""
    topic_score = overlap_score(message_keywords, topic_keywords)
    subject_score = overlap_score(message_keywords, subject_keywords)
    boost = QUESTION_BOOST if is_question else 0.0
    score = (topic_score * TOPIC_WEIGHT) + (subject_score * SUBJECT_WEIGHT) + boost
    return max(0.0, min(1.0, score))
