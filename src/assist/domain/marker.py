"""
AI comment rendering.

An AI-authored ticket comment is a human-readable rendering followed by a
machine-readable JSON block between fixed delimiters. Later assist calls
read that block back to avoid regenerating the same reply.
"""

import json
from typing import Any, Dict, Optional

from src.assist.domain.entities import AssistReply

MARKER_START = "[AIAssistResponseJSON]"
MARKER_END = "[/AIAssistResponseJSON]"

TRUNCATED_SUFFIX = "\n...[truncated]"
CLAMPED_SUFFIX = "\n\n...[truncated]"


def truncate(text: Optional[str], max_chars: int) -> str:
    """Cut to ``max_chars`` and mark the cut."""
    if not text:
        return ""
    return text[:max_chars] + TRUNCATED_SUFFIX if len(text) > max_chars else text


def build_comment_body(reply: AssistReply, payload: Dict[str, Any]) -> str:
    lines = [
        "[AI Assist]",
        "",
        "Customer reply (suggested):",
        reply.customer_reply or "(none)",
        "",
        f"Internal notes: {reply.internal_notes or '(none)'}",
        "",
        "Next steps:",
    ]
    if reply.next_steps:
        lines.extend(f"- {s}" for s in reply.next_steps)
    else:
        lines.append("- (none)")
    lines.append("")

    lines.append("Questions for customer:")
    if reply.questions_for_customer:
        lines.extend(f"- {q}" for q in reply.questions_for_customer)
    else:
        lines.append("- (none)")
    lines.append("")

    lines.append("Citations:")
    if reply.citations:
        lines.extend(f"- {c.source} {c.filename} (chunkId: {c.chunk_id})" for c in reply.citations)
    else:
        lines.append("- (none)")
    lines.append("")

    lines.append(MARKER_START)
    lines.append(json.dumps(payload, separators=(",", ":"), ensure_ascii=False))
    lines.append(MARKER_END)
    return "\n".join(lines)


def clamp_comment(body: str, max_length: int) -> str:
    """
    Bound a rendered comment to ``max_length``.

    Only the human-readable part is cut; the marker block is kept whole,
    even if that alone exceeds the limit.
    """
    if len(body) <= max_length:
        return body

    start = body.find(MARKER_START)
    if start < 0:
        return body[:max_length - 20] + CLAMPED_SUFFIX

    block = body[start:]
    budget = max_length - len(block) - len(CLAMPED_SUFFIX) - 1
    if budget <= 0:
        return block
    return body[:budget] + CLAMPED_SUFFIX + "\n" + block


def extract_marker_json(body: Optional[str]) -> Optional[Dict[str, Any]]:
    """The JSON object between the delimiters, or None."""
    if not body:
        return None
    start = body.find(MARKER_START)
    end = body.find(MARKER_END)
    if start < 0 or end < 0 or end <= start:
        return None
    raw = body[start + len(MARKER_START):end].strip()
    try:
        data = json.loads(raw)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None
