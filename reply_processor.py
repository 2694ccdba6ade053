"""Turns raw assistant markdown into a stored, broadcast agent message"""
import logging
import re

from markdown_it import MarkdownIt

from broadcaster import AGENT_MESSAGE_SENT, session_channel
from models import SENDER_AGENT, Message
from schemas import MessageResponse

logger = logging.getLogger(__name__)

# Provider citation markers such as 【4:0†source】
CITATION_RE = re.compile(r"【.*?】", re.DOTALL)

# Raw HTML is escaped, unsafe link schemes are refused by the default validator
_markdown = MarkdownIt("commonmark", {"html": False})


def strip_citations(text) -> str:
    return CITATION_RE.sub("", text or "").strip()


def markdown_to_html(text) -> str:
    return _markdown.render(text or "")


def serialize_message(message) -> dict:
    return MessageResponse.model_validate(message).model_dump(mode="json")


class ReplyProcessor:
    def __init__(self, broadcaster):
        self.broadcaster = broadcaster

    def finalize(self, db, conversation, markdown_text) -> Message:
        """Clean, render, persist and announce the agent reply"""
        html = markdown_to_html(strip_citations(markdown_text))

        message = Message(conversation_id=conversation.id, sender=SENDER_AGENT, body=html)
        db.add(message)
        db.commit()
        db.refresh(message)
        logger.info("✅ Agent message %s saved for conversation %s", message.id, conversation.id)

        self.broadcaster.publish(
            session_channel(conversation.session_id),
            AGENT_MESSAGE_SENT,
            serialize_message(message),
        )
        return message
