"""Tests for follow-up question normalization."""

import pytest

from src.assist.domain import QuestionSet, normalize_question, normalize_questions


@pytest.mark.parametrize("a,b", [
    ("What browser were you using to log in?", "what browser were you using to login"),
    ("Can you  sign in now?", "can you signin now!!"),
    ("  Is 2FA enabled? ", "is 2fa enabled."),
])
def test_equivalent_wordings_share_a_key(a, b):
    assert normalize_question(a) == normalize_question(b)


def test_login_folding_respects_word_boundaries():
    assert normalize_question("catalog in stock?") == "catalog in stock"


def test_question_set_keeps_first_wording_in_order():
    questions = QuestionSet(["Can you log in?", "What browser?"])

    assert questions.add("can you login") is False
    assert questions.add("Which device?") is True
    assert questions.values() == ["Can you log in?", "What browser?", "Which device?"]
    assert len(questions) == 3


def test_blank_questions_ignored():
    questions = QuestionSet()
    assert questions.add("   ") is False
    assert questions.add("?!") is False
    assert len(questions) == 0


def test_normalize_questions_accepts_only_lists():
    assert normalize_questions("not a list") == []
    assert normalize_questions(None) == []
    assert normalize_questions(["A?", None, "a", 42]) == ["A?", "42"]
