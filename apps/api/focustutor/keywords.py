"""
Keyword extraction for topic relevance checks.
Lowercase, strip punctuation, drop stopwords and short tokens, then apply a
naive plural rule so "equations" and "equation" compare equal. No stemming
library and no NLP model: exact-token matching after normalisation.
"""
from __future__ import annotations

import re
from typing import FrozenSet

MIN_TOKEN_LENGTH = 3

# Question words never count as keywords; they only drive the question boost.
QUESTION_WORDS = frozenset({"what", "how", "why", "when", "where", "which", "who", "whom", "whose"})

STOPWORDS = frozenset({
    # articles, conjunctions, prepositions
    "the", "and", "but", "nor", "for", "yet", "with", "from", "into", "onto", "about",
    "through", "during", "before", "after", "above", "below", "over", "under", "between",
    "than", "then", "also", "just", "not", "too", "very", "some", "any", "all", "each",
    "more", "most", "other", "such", "only", "own", "same", "both", "out", "off", "again",
    # pronouns
    "you", "your", "yours", "yourself", "mine", "our", "ours", "they", "them", "their",
    "theirs", "this", "that", "these", "those", "its", "him", "his", "her", "hers",
    "she", "myself", "itself", "something", "anything", "everything", "there", "here",
    # auxiliaries and modals
    "are", "was", "were", "been", "being", "have", "has", "had", "having", "does", "did",
    "doing", "done", "will", "would", "could", "should", "shall", "may", "might", "must",
    "can", "cant", "dont", "doesnt", "didnt", "isnt", "arent", "wont", "get", "got",
    # instructional filler
    "please", "explain", "tell", "show", "help", "teach", "learn", "understand", "define",
    "describe", "concept", "work", "want", "need", "know", "like", "give", "let", "lets",
    "really", "thing", "things", "way", "ways", "mean", "means", "another", "example", "examples",
    "once", "still", "bit", "little", "simpler", "detail", "details",
    "whats", "hows", "whos", "wheres", "whys",
}) | QUESTION_WORDS

_APOSTROPHES = re.compile(r"['’]")
_NON_WORD = re.compile(r"[^\w\s]")
_QUESTION_WORD_RE = re.compile(r"\b(" + "|".join(sorted(QUESTION_WORDS)) + r")\b", re.I)


def normalize_token(token: str) -> str:
    """
    Naive plural folding:
    - "ies" -> "y" for tokens longer than 4 characters ("theories" -> "theory")
    - "sses" -> "ss" ("classes" -> "class")
    - a trailing "s" is dropped for tokens longer than 3 characters unless the
      token ends in "ss", "us" or "is" ("equations" -> "equation", "calculus" kept)
    """
    if len(token) > 4 and token.endswith("ies"):
        return token[:-3] + "y"
    if token.endswith("sses"):
        return token[:-2]
    if len(token) > 3 and token.endswith("s") and not token.endswith(("ss", "us", "is")):
        return token[:-1]
    return token


def tokenize(text: str) -> list[str]:
    if not text:
        return []
    cleaned = _APOSTROPHES.sub("", text.lower())
    cleaned = _NON_WORD.sub(" ", cleaned)
    return cleaned.split()


def extract_keywords(text: str) -> FrozenSet[str]:
    """Return the deduplicated set of significant, normalised terms in text."""
    keywords = set()
    for token in tokenize(text):
        if len(token) < MIN_TOKEN_LENGTH or token in STOPWORDS:
            continue
        keywords.add(normalize_token(token))
    return frozenset(keywords)


def is_question(text: str) -> bool:
    """True when text ends with '?' or contains a question word."""
    if not text or not text.strip():
        return False
    stripped = text.strip()
    return stripped.endswith("?") or bool(_QUESTION_WORD_RE.search(stripped))
