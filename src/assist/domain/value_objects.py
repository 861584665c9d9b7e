"""
Assist Domain Value Objects
===========================

Keyword rules that drive the relevance filter and the follow-up questions
added to a generated reply. Loaded from YAML; the defaults below apply when
no file is configured.
"""

from typing import List

from pydantic import BaseModel, Field, field_validator


DEFAULT_LOGIN_QUERY_KEYWORDS = [
    "login", "log in", "signin", "sign in", "password", "reset", "otp", "token",
]
DEFAULT_BILLING_QUERY_KEYWORDS = [
    "charged", "charge", "billing", "refund", "invoice", "payment",
]
DEFAULT_LOGIN_HIT_KEYWORDS = [
    "login", "log in", "password", "reset", "token", "device time", "timestamp", "browser",
]
DEFAULT_BILLING_HIT_KEYWORDS = [
    "billing", "refund", "invoice", "payment", "charged", "charge",
]


def _lowercase_all(values: List[str]) -> List[str]:
    return [v.strip().lower() for v in values if v and v.strip()]


def _contains_any(text: str, keywords: List[str]) -> bool:
    return any(k in text for k in keywords)


class FollowUpRule(BaseModel):
    """Questions added when every keyword appears in the selected sources."""
    all_of: List[str] = Field(..., min_length=1, description="Keywords that must all be present")
    questions: List[str] = Field(..., min_length=1, description="Questions to add, in order")

    @field_validator("all_of")
    @classmethod
    def lowercase_keywords(cls, v: List[str]) -> List[str]:
        return _lowercase_all(v)


def _default_follow_ups() -> List[FollowUpRule]:
    return [
        FollowUpRule(
            all_of=["device time"],
            questions=["Is your device date/time/timezone set correctly right now?"],
        ),
        FollowUpRule(
            all_of=["browser", "timestamp"],
            questions=[
                "What browser were you using when trying to login?",
                "What timestamp (with timezone) did you attempt to login?",
            ],
        ),
    ]


class AssistRules(BaseModel):
    """
    Relevance and follow-up rules.

    This is a value object: replaced wholesale on reload, never mutated.
    """
    login_query_keywords: List[str] = Field(default_factory=lambda: list(DEFAULT_LOGIN_QUERY_KEYWORDS))
    billing_query_keywords: List[str] = Field(default_factory=lambda: list(DEFAULT_BILLING_QUERY_KEYWORDS))
    login_hit_keywords: List[str] = Field(default_factory=lambda: list(DEFAULT_LOGIN_HIT_KEYWORDS))
    billing_hit_keywords: List[str] = Field(default_factory=lambda: list(DEFAULT_BILLING_HIT_KEYWORDS))
    follow_ups: List[FollowUpRule] = Field(default_factory=_default_follow_ups)

    @field_validator(
        "login_query_keywords",
        "billing_query_keywords",
        "login_hit_keywords",
        "billing_hit_keywords",
    )
    @classmethod
    def lowercase_keywords(cls, v: List[str]) -> List[str]:
        return _lowercase_all(v)

    def is_login_query(self, text: str) -> bool:
        return _contains_any(text.lower(), self.login_query_keywords)

    def is_billing_query(self, text: str) -> bool:
        return _contains_any(text.lower(), self.billing_query_keywords)

    def is_login_hit(self, hit_text: str) -> bool:
        return _contains_any(hit_text, self.login_hit_keywords)

    def is_billing_hit(self, hit_text: str) -> bool:
        return _contains_any(hit_text, self.billing_hit_keywords)

    def follow_up_questions(self, sources_text: str) -> List[str]:
        """Questions triggered by the (lowercased) text of the selected sources."""
        questions: List[str] = []
        for rule in self.follow_ups:
            if all(k in sources_text for k in rule.all_of):
                questions.extend(rule.questions)
        return questions
