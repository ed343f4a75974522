"""
Pattern tables used by the phase tracker and decision gate.

Greeting/meta patterns are matched against the whole trimmed message; topic
extraction and contextual-reference patterns are searched. Defaults live in
code and any table can be replaced from a JSON file:

    {
      "greetings": ["(hi|hello)( there)?", ...],
      "meta": ["how does this work", ...],
      "topic_extraction": ["\\bexplain (?P<topic>.+)", ...],
      "contextual_references": ["\\b(it|this|that)\\b", ...]
    }
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Pattern

from .schemas import MessageKind

logger = logging.getLogger(__name__)

DEFAULT_GREETINGS = [
    r"(hi|hello|hey|hiya|howdy)( there)?",
    r"greetings",
    r"good (morning|afternoon|evening|day)",
    r"(what'?s up|sup)",
    r"((hi|hello|hey)[ ,]+)?how are you( doing)?( today)?",
    r"(thanks|thank you|thx)( (so|very) much)?",
    r"(bye|goodbye|see you)( later)?",
]

DEFAULT_META = [
    r"how does (this|it) work",
    r"what can you (do|teach)( me)?",
    r"who are you",
    r"can you help( me)?",
    r"help",
]

# Each pattern must define a "topic" group. First match wins.
DEFAULT_TOPIC_EXTRACTION = [
    r"\bteach me about (?P<topic>.+)",
    r"\btell me about (?P<topic>.+)",
    r"\bi (?:want|would like|'d like) to learn(?: more)?(?: about)? (?P<topic>.+)",
    r"\bcan you teach(?: me)?(?: about)? (?P<topic>.+)",
    r"\bhelp me (?:with|understand) (?P<topic>.+)",
    r"\bexplain (?P<topic>.+)",
    r"^(?:what|who) (?:is|are) (?P<topic>.+)",
]

DEFAULT_CONTEXTUAL_REFERENCES = [
    r"\b(it|this|that|these|those|them|they)\b",
    r"\b(above|previous|earlier|before|mentioned)\b",
    r"\b(same|such)\b",
    r"^(continue|more|explain|elaborate|tell me more)",
]

MAX_TOPIC_LENGTH = 120

_TRAILING = "!.?,~ \t\n"
_LEADING_ARTICLE = re.compile(r"^(the|a|an)\s+", re.I)


@dataclass(frozen=True)
class PatternRule:
    pattern: Pattern[str]
    kind: MessageKind


def _normalize(text: str) -> str:
    return " ".join(text.replace("’", "'").split()).rstrip(_TRAILING)


def _compile(patterns: Iterable[str]) -> tuple[Pattern[str], ...]:
    return tuple(re.compile(p, re.I) for p in patterns)


@dataclass(frozen=True)
class PatternTables:
    exempt: tuple[PatternRule, ...]
    topic_extraction: tuple[Pattern[str], ...]
    contextual_references: tuple[Pattern[str], ...]

    def match_exempt(self, text: str) -> Optional[MessageKind]:
        """Return GREETING/META when the entire message matches a rule, else None."""
        normalized = _normalize(text)
        if not normalized:
            return None
        for rule in self.exempt:
            if rule.pattern.fullmatch(normalized):
                return rule.kind
        return None

    def extract_topic(self, text: str) -> Optional[str]:
        normalized = _normalize(text)
        for pat in self.topic_extraction:
            m = pat.search(normalized)
            if not m:
                continue
            topic = _LEADING_ARTICLE.sub("", m.group("topic").strip().rstrip(_TRAILING))
            if topic:
                return topic[:MAX_TOPIC_LENGTH]
        return None

    def has_contextual_reference(self, text: str) -> bool:
        normalized = _normalize(text)
        return any(pat.search(normalized) for pat in self.contextual_references)


def build_pattern_tables(
    greetings: Iterable[str] = DEFAULT_GREETINGS,
    meta: Iterable[str] = DEFAULT_META,
    topic_extraction: Iterable[str] = DEFAULT_TOPIC_EXTRACTION,
    contextual_references: Iterable[str] = DEFAULT_CONTEXTUAL_REFERENCES,
) -> PatternTables:
    """Compile pattern lists into tables. Raises re.error on an invalid pattern."""
    exempt = [PatternRule(p, MessageKind.GREETING) for p in _compile(greetings)]
    exempt += [PatternRule(p, MessageKind.META) for p in _compile(meta)]
    topic = _compile(topic_extraction)
    for pat in topic:
        if "topic" not in pat.groupindex:
            raise ValueError(f"topic extraction pattern {pat.pattern!r} has no 'topic' group")
    return PatternTables(
        exempt=tuple(exempt),
        topic_extraction=topic,
        contextual_references=_compile(contextual_references),
    )


def _load_overrides(path: Path) -> dict[str, list[str]]:
    """Read table overrides from JSON. Missing or invalid files are skipped."""
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Ignoring moderation patterns file %s: %s", path, e)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring moderation patterns file %s: expected a JSON object", path)
        return {}
    overrides = {}
    for key in ("greetings", "meta", "topic_extraction", "contextual_references"):
        value = data.get(key)
        if isinstance(value, list) and all(isinstance(v, str) for v in value):
            overrides[key] = value
    return overrides


def load_pattern_tables(path: str | None = None) -> PatternTables:
    """Built-in tables, with any table present in the JSON file at path replaced."""
    if not path:
        return build_pattern_tables()
    overrides = _load_overrides(Path(path))
    if overrides:
        logger.info("Loaded moderation pattern overrides for %s", ", ".join(sorted(overrides)))
    return build_pattern_tables(**overrides)
