"""Keyword extraction, token normalisation and question-form detection."""

import pytest

from focustutor.keywords import extract_keywords, is_question, normalize_token


class TestExtractKeywords:

    @pytest.mark.parametrize("text", ["", "   ", "\n\t"])
    def test_blank_text_has_no_keywords(self, text):
        assert extract_keywords(text) == frozenset()

    def test_drops_stopwords_question_words_and_short_tokens(self):
        assert extract_keywords("What is the derivative of x²?") == {"derivative"}

    def test_folds_plurals(self):
        assert extract_keywords("How do I solve quadratic equations?") == {"solve", "quadratic", "equation"}

    def test_punctuation_splits_tokens(self):
        assert extract_keywords("Calculus - Limits") == {"calculus", "limit"}

    def test_case_and_duplicates_collapse(self):
        assert extract_keywords("Photosynthesis, PHOTOSYNTHESIS!") == {"photosynthesis"}

    def test_apostrophes_are_dropped_not_split(self):
        assert extract_keywords("Newton's laws") == {"newton", "law"}

    def test_instructional_filler_is_ignored(self):
        assert extract_keywords("Can you explain the concept of Derivatives?") == {"derivative"}


@pytest.mark.parametrize(
    "token,expected",
    [
        ("equations", "equation"),
        ("derivatives", "derivative"),
        ("theories", "theory"),
        ("classes", "class"),
        ("class", "class"),
        ("calculus", "calculus"),
        ("analysis", "analysis"),
        ("gas", "gas"),
        ("mathematics", "mathematic"),
    ],
)
def test_normalize_token(token, expected):
    assert normalize_token(token) == expected


@pytest.mark.parametrize(
    "text,expected",
    [
        ("What is sex?", True),
        ("derivatives", False),
        ("Tell me how limits work", True),
        ("Limits are fun.", False),
        ("limits?", True),
        ("somewhat interesting", False),
        ("", False),
    ],
)
def test_is_question(text, expected):
    assert is_question(text) is expected
