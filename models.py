"""Database models for the support chatbot"""
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from database import Base


def utcnow():
    return datetime.now(timezone.utc)


SENDER_VISITOR = "visitor"
SENDER_AGENT = "agent"


class TrustedSite(Base):
    """A website the operator allows the crawler to index"""
    __tablename__ = "trusted_sites"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    url = Column(String(1024), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    pages = relationship(
        "IndexedPage",
        back_populates="site",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class IndexedPage(Base):
    """Crawled page content plus its (optional) embedding vector"""
    __tablename__ = "indexed_pages"

    id = Column(Integer, primary_key=True, index=True)
    trusted_site_id = Column(
        Integer, ForeignKey("trusted_sites.id", ondelete="CASCADE"), nullable=False, index=True
    )
    url = Column(String(1024), unique=True, nullable=False, index=True)
    title = Column(String(512), nullable=True)
    content = Column(Text, nullable=False)
    embedding = Column(JSON(none_as_null=True), nullable=True)
    last_crawled_at = Column(DateTime, default=utcnow)

    site = relationship("TrustedSite", back_populates="pages")


class Conversation(Base):
    """One chat widget session, bound to a remote assistant thread"""
    __tablename__ = "conversations"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String(255), unique=True, nullable=False, index=True)
    openai_thread_id = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=utcnow)

    messages = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
    )


class Message(Base):
    """A single visitor or agent turn"""
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    conversation_id = Column(
        Integer, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sender = Column(String(20), nullable=False)
    body = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow, index=True)

    conversation = relationship("Conversation", back_populates="messages")
