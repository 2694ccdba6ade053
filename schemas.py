"""Pydantic schemas for request/response validation"""
from datetime import datetime
from typing import List, Optional

from bs4 import BeautifulSoup
from pydantic import BaseModel, ConfigDict, Field, field_validator


def strip_tags(value):
    """Remove any HTML tags from visitor-supplied text"""
    if not isinstance(value, str):
        return value
    if "<" not in value:
        return value.strip()
    return BeautifulSoup(value, "html.parser").get_text().strip()


# ========================================
# Request Schemas
# ========================================
class ChatRequest(BaseModel):
    """Request schema for a visitor chat message"""
    message: str = Field(..., min_length=1, max_length=1000)
    session_id: Optional[str] = Field(None, max_length=255)
    conversation_id: Optional[int] = None

    @field_validator("message", mode="before")
    @classmethod
    def remove_html(cls, value):
        return strip_tags(value)

    @field_validator("session_id", mode="before")
    @classmethod
    def blank_session_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class TrustedSiteCreate(BaseModel):
    """Request schema for registering a website to crawl"""
    name: str = Field(..., min_length=1, max_length=255)
    url: str = Field(..., max_length=1024)
    is_active: bool = True

    @field_validator("url")
    @classmethod
    def http_url(cls, value):
        value = value.strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError("url must start with http:// or https://")
        return value


class TrustedSiteUpdate(BaseModel):
    """Request schema for renaming or enabling/disabling a site"""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    is_active: Optional[bool] = None


class CrawlRequest(BaseModel):
    """Request schema for crawling one site or all active sites"""
    site_id: Optional[int] = None


class EmbedRequest(BaseModel):
    """Request schema for the batch embedding job"""
    fresh: bool = False


# ========================================
# Response Schemas
# ========================================
class MessageResponse(BaseModel):
    """A persisted chat message"""
    model_config = ConfigDict(from_attributes=True)

    id: int
    conversation_id: int
    sender: str
    body: str
    created_at: datetime


class ChatAckResponse(BaseModel):
    """Acknowledgement for a submitted visitor message"""
    status: str = "success"
    message: str
    conversation_id: int
    session_id: str
    sent_message: MessageResponse


class ConversationHistoryResponse(BaseModel):
    """Full ordered message history of a conversation"""
    conversation_id: Optional[int] = None
    messages: List[MessageResponse] = []


class TrustedSiteResponse(BaseModel):
    """A registered trusted site"""
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    url: str
    is_active: bool
    created_at: datetime


class StatusResponse(BaseModel):
    """Response schema for knowledge base status"""
    ready: bool
    message: str
    pages_indexed: int = 0
    pages_embedded: int = 0


class JobResponse(BaseModel):
    """Response schema for background indexing jobs"""
    message: str
    started: bool = True
