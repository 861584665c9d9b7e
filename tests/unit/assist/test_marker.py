"""Tests for AI comment rendering and the marker block."""

from src.assist.domain import (
    MARKER_END,
    MARKER_START,
    AssistReply,
    Citation,
    build_comment_body,
    clamp_comment,
    extract_marker_json,
    truncate,
)


def sample_reply():
    return AssistReply(
        customer_reply="Please reset your password from the login page.",
        internal_notes="Known SSO issue",
        next_steps=["Check SSO logs"],
        questions_for_customer=["What browser were you using?"],
        citations=[Citation(source="S1", filename="login.md", chunk_id="c1")],
    )


def test_body_layout():
    body = build_comment_body(sample_reply(), {"kbTopK": 5, "kbHits": 1})
    lines = body.split("\n")

    assert lines[:8] == [
        "[AI Assist]",
        "",
        "Customer reply (suggested):",
        "Please reset your password from the login page.",
        "",
        "Internal notes: Known SSO issue",
        "",
        "Next steps:",
    ]
    assert "- S1 login.md (chunkId: c1)" in lines
    assert lines[-3:] == [MARKER_START, '{"kbTopK":5,"kbHits":1}', MARKER_END]


def test_empty_sections_render_none():
    body = build_comment_body(AssistReply(), {})

    assert "Customer reply (suggested):\n(none)" in body
    assert "Internal notes: (none)" in body
    assert body.count("- (none)") == 3


def test_marker_round_trip_keeps_unicode():
    payload = {"kbTopK": 3, "customer_reply": "Grüße ✓"}
    body = build_comment_body(sample_reply(), payload)

    assert "Grüße ✓" in body
    assert extract_marker_json(body) == payload


def test_extract_rejects_missing_or_broken_blocks():
    assert extract_marker_json(None) is None
    assert extract_marker_json("plain comment") is None
    assert extract_marker_json(f"{MARKER_END} {{}} {MARKER_START}") is None
    assert extract_marker_json(f"{MARKER_START}not json{MARKER_END}") is None
    assert extract_marker_json(f"{MARKER_START}[1, 2]{MARKER_END}") is None


def test_clamp_keeps_marker_block_whole():
    reply = sample_reply()
    reply.customer_reply = "x" * 6000
    body = build_comment_body(reply, {"kbTopK": 5, "kbHits": 1})

    clamped = clamp_comment(body, 4800)

    assert len(clamped) <= 4800
    assert "...[truncated]" in clamped
    assert extract_marker_json(clamped) == {"kbTopK": 5, "kbHits": 1}


def test_clamp_without_marker():
    clamped = clamp_comment("y" * 500, 300)

    assert clamped == "y" * 280 + "\n\n...[truncated]"


def test_clamp_leaves_short_bodies_alone():
    assert clamp_comment("short", 300) == "short"


def test_truncate():
    assert truncate("abcdef", 3) == "abc\n...[truncated]"
    assert truncate("abc", 3) == "abc"
    assert truncate(None, 3) == ""
