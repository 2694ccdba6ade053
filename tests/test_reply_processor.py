"""Tests for cleaning, rendering and announcing agent replies."""

from broadcaster import AGENT_MESSAGE_SENT, session_channel
from models import SENDER_AGENT, Conversation, Message
from reply_processor import ReplyProcessor, markdown_to_html, strip_citations

from conftest import RecordingListener


def test_strip_citations():
    assert strip_citations("【source:doc1】Some fact.") == "Some fact."
    assert strip_citations("Plans start at $10【4:0†pricing.pdf】 per month.") == "Plans start at $10 per month."


def test_strip_citations_keeps_text_without_markers():
    assert strip_citations("  plain answer ") == "plain answer"


def test_markdown_is_rendered():
    html = markdown_to_html("**Bold** and a [link](https://example.com)")

    assert "<strong>Bold</strong>" in html
    assert '<a href="https://example.com">link</a>' in html


def test_raw_html_is_escaped():
    html = markdown_to_html("<script>alert(1)</script>")

    assert "<script>" not in html
    assert "&lt;script&gt;" in html


def test_javascript_links_are_not_rendered():
    html = markdown_to_html("[click](javascript:alert(1))")

    assert 'href="javascript:' not in html


def test_finalize_persists_and_announces_once(db, broadcaster):
    conversation = Conversation(session_id="sess-42")
    db.add(conversation)
    db.commit()
    listener = RecordingListener()
    broadcaster.subscribe(session_channel("sess-42"), listener)

    message = ReplyProcessor(broadcaster).finalize(db, conversation, "【source:doc1】Some **fact**.")

    assert message.sender == SENDER_AGENT
    assert message.body.strip() == "<p>Some <strong>fact</strong>.</p>"
    assert db.query(Message).count() == 1
    assert len(listener.events) == 1
    event, payload = listener.events[0]
    assert event == AGENT_MESSAGE_SENT
    assert payload["id"] == message.id
    assert payload["body"] == message.body
    assert payload["sender"] == SENDER_AGENT
