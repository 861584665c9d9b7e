"""
Retrieved-hit selection for assist prompts.

A keyword heuristic narrows hits to the ticket's topic when the ticket is
clearly about login or clearly about billing, then strong hits are
preferred with fallbacks so that some grounding is kept whenever anything
was retrieved.
"""

from dataclasses import dataclass
from typing import List

from src.assist.domain.value_objects import AssistRules
from src.knowledge.domain import QueryHit


@dataclass
class HitSelection:
    """Hits at each stage of selection, with the topic flags used."""
    original: List[QueryHit]
    filtered: List[QueryHit]
    final: List[QueryHit]
    is_login: bool
    is_billing: bool

    def debug(self, threshold: float) -> dict:
        return {
            "simThreshold": threshold,
            "originalKbHits": len(self.original),
            "filteredKbHits": len(self.filtered),
            "finalKbHits": len(self.final),
            "isLoginTicket": self.is_login,
            "isBillingTicket": self.is_billing,
        }

    def sources_text(self) -> str:
        return "\n".join(h.search_text() for h in self.final)


def filter_by_topic(hits: List[QueryHit], query_text: str, rules: AssistRules) -> HitSelection:
    """Apply the topic filter only when exactly one topic matches the query."""
    is_login = rules.is_login_query(query_text)
    is_billing = rules.is_billing_query(query_text)

    filtered = hits
    if is_login and not is_billing:
        filtered = [
            h for h in hits
            if rules.is_login_hit(h.search_text()) and not rules.is_billing_hit(h.search_text())
        ]
    elif is_billing and not is_login:
        filtered = [h for h in hits if rules.is_billing_hit(h.search_text())]

    return HitSelection(original=hits, filtered=filtered, final=[], is_login=is_login, is_billing=is_billing)


def select_hits(
    hits: List[QueryHit],
    query_text: str,
    rules: AssistRules,
    top_k: int,
    threshold: float,
) -> HitSelection:
    """
    Choose the hits given to the model.

    Strong filtered hits (similarity >= threshold) win; otherwise all
    filtered hits; otherwise everything retrieved. The result is
    de-duplicated by chunk id and capped at ``top_k``.
    """
    selection = filter_by_topic(hits, query_text, rules)

    strong = [h for h in selection.filtered if (h.similarity or 0.0) >= threshold]
    chosen = strong or selection.filtered or hits

    seen = set()
    final: List[QueryHit] = []
    for hit in chosen:
        if not hit.chunk_id or hit.chunk_id in seen:
            continue
        seen.add(hit.chunk_id)
        final.append(hit)

    selection.final = final[:top_k]
    return selection
