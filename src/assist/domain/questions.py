"""
Follow-up question normalization and de-duplication.
"""

import re
from typing import Any, Dict, Iterable, List, Optional

LOG_IN = re.compile(r"\blog\s+in\b")
SIGN_IN = re.compile(r"\bsign\s+in\b")
WHITESPACE = re.compile(r"\s+")
TRAILING_PUNCTUATION = re.compile(r"[.?!]+$")


def normalize_question(text: Optional[str]) -> str:
    """Comparison key: lowercase, "log in"/"sign in" folded, whitespace collapsed, trailing punctuation dropped."""
    s = str(text or "").strip().lower()
    s = LOG_IN.sub("login", s)
    s = SIGN_IN.sub("signin", s)
    s = WHITESPACE.sub(" ", s)
    return TRAILING_PUNCTUATION.sub("", s)


class QuestionSet:
    """Ordered set of questions keyed by normalized form; first wording wins."""

    def __init__(self, initial: Optional[Iterable[str]] = None):
        self._by_key: Dict[str, str] = {}
        for question in initial or []:
            self.add(question)

    def add(self, question: str) -> bool:
        key = normalize_question(question)
        if not key or key in self._by_key:
            return False
        self._by_key[key] = str(question).strip()
        return True

    def values(self) -> List[str]:
        return list(self._by_key.values())

    def __len__(self) -> int:
        return len(self._by_key)


def normalize_questions(raw: Any) -> List[str]:
    """De-duplicate a model-provided question list; non-lists yield nothing."""
    if not isinstance(raw, list):
        return []
    questions = QuestionSet()
    for value in raw:
        if value is None:
            continue
        questions.add(str(value))
    return questions.values()
