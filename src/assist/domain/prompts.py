"""
Prompt construction for ticket assist and draft replies.
"""

from typing import List, Optional

from src.assist.domain.entities import Ticket
from src.assist.domain.marker import truncate
from src.config import AssistTone
from src.knowledge.domain import QueryHit


ASSIST_SYSTEM_PROMPT = (
    "You are a support agent assistant. Use ONLY the provided KB sources.\n"
    "Return STRICT JSON only (no markdown, no prose outside JSON).\n"
    "HARD RULE: The customer_reply MUST focus only on the current ticket issue.\n"
    "Do NOT mention refunds/billing unless the ticket is explicitly about billing/charges.\n"
    "\n"
    "JSON must match this schema exactly:\n"
    "{\n"
    "  \"customer_reply\": string,\n"
    "  \"internal_notes\": string,\n"
    "  \"next_steps\": string[],\n"
    "  \"questions_for_customer\": string[],\n"
    "  \"citations\": { \"source\": string, \"filename\": string, \"chunkId\": string }[]\n"
    "}\n"
)

DRAFT_SYSTEM_PROMPT = (
    "You are a support agent assistant for a SaaS helpdesk.\n"
    "Goal: produce a helpful, concise customer-facing reply draft.\n"
    "\n"
    "Rules:\n"
    "- Use ONLY the provided KB context for factual claims/policies.\n"
    "- If KB context is insufficient, say what you need to ask next (do not invent policy).\n"
    "- Output STRICT JSON with keys:\n"
    "  replyDraft (string),\n"
    "  nextQuestions (string[]),\n"
    "  usedCitations (array of objects: { label: string, filename?: string, reason: string })"
)

SOURCE_SEPARATOR = "\n---\n"
CONTEXT_SEPARATOR = "\n\n---\n\n"


class AssistPromptBuilder:
    """Builds the query text and chat messages for the assist flow."""

    def __init__(
        self,
        max_comments: int = 3,
        max_comment_chars: int = 800,
        max_source_chars: int = 1200,
    ):
        self.max_comments = max_comments
        self.max_comment_chars = max_comment_chars
        self.max_source_chars = max_source_chars

    def query_text(self, ticket: Ticket, query: Optional[str] = None) -> str:
        """
        Text used for retrieval and as the ticket section of the prompt.

        An explicit query wins; otherwise title, description and the most
        recent comments (oldest of them first).
        """
        if query and query.strip():
            return query.strip()

        parts: List[str] = []
        if ticket.title:
            parts.append(f"TITLE: {ticket.title}")
        if ticket.description:
            parts.append(f"DESCRIPTION: {ticket.description}")

        recent = ticket.comments[-self.max_comments:] if self.max_comments > 0 else []
        if recent:
            lines = []
            for comment in recent:
                stamp = comment.created_at.isoformat() if comment.created_at else ""
                lines.append(f"- ({stamp}) {truncate(comment.body, self.max_comment_chars)}")
            parts.append("COMMENTS:\n" + "\n".join(lines))

        return "\n\n".join(parts)

    def source_block(self, hits: List[QueryHit]) -> str:
        blocks = []
        for i, hit in enumerate(hits, start=1):
            blocks.append(
                f"SOURCE S{i}\n"
                f"filename: {hit.filename or 'unknown'}\n"
                f"chunkId: {hit.chunk_id}\n"
                f"similarity: {hit.similarity}\n"
                f"content:\n{truncate(hit.content, self.max_source_chars)}\n"
            )
        return SOURCE_SEPARATOR.join(blocks)

    def messages(self, query_text: str, hits: List[QueryHit], tone: AssistTone) -> List[dict]:
        block = self.source_block(hits)
        user = (
            f"Ticket:\n{query_text}\n\n"
            f"KB Sources:\n{block or '(none)'}\n\n"
            "Task:\n"
            "Generate a helpful response in JSON with keys:\n"
            "customer_reply, internal_notes, next_steps, questions_for_customer, citations.\n"
            f"- customer_reply: customer-facing reply ({AssistTone(tone).value} tone)\n"
            "- internal_notes: short internal summary\n"
            "- next_steps: array of strings\n"
            "- questions_for_customer: array of strings\n"
            "- citations: array of objects {source:\"S1\", filename, chunkId}\n"
            "Cite only sources you actually used.\n"
        )
        return [
            {"role": "system", "content": ASSIST_SYSTEM_PROMPT},
            {"role": "user", "content": user},
        ]


class DraftReplyPromptBuilder:
    """Chat messages for a draft reply grounded on retrieved context."""

    @staticmethod
    def context(hits: List[QueryHit]) -> str:
        return CONTEXT_SEPARATOR.join(
            f"[#{i}] source={hit.filename or hit.source_id} idx={hit.ordinal} "
            f"similarity={hit.similarity:.3f}\n{hit.content}"
            for i, hit in enumerate(hits, start=1)
        )

    def messages(self, ticket: Ticket, hits: List[QueryHit]) -> List[dict]:
        user = (
            "TICKET:\n"
            f"Title: {ticket.title}\n"
            f"Description: {ticket.description}\n\n"
            f"KB CONTEXT:\n{self.context(hits) or '(no KB matches)'}\n\n"
            "Write the response now."
        )
        return [
            {"role": "system", "content": DRAFT_SYSTEM_PROMPT},
            {"role": "user", "content": user},
        ]
