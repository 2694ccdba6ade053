"""Main FastAPI application - website support chatbot"""
import asyncio
import contextlib
import logging
import os
from typing import List

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from broadcaster import session_channel
from chat_service import chat_service
from crawler import SiteCrawler
from database import SessionLocal, get_db, init_db
from embedding_client import EmbeddingClient
from embedding_job import generate_embeddings
from models import Conversation, IndexedPage, TrustedSite
from openai_client import OpenAIClient
from schemas import (
    ChatAckResponse, ChatRequest, ConversationHistoryResponse, CrawlRequest, EmbedRequest,
    JobResponse, MessageResponse, StatusResponse, TrustedSiteCreate, TrustedSiteResponse, TrustedSiteUpdate,
)
from settings import ConfigurationError

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

# Create all tables
init_db()

# Initialize FastAPI app
app = FastAPI(
    title="Website Support Chatbot API",
    description="Assistant-backed support chat with website RAG fallback",
    version="1.0.0"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ========================================
# DEPENDENCIES
# ========================================
def get_chat_service():
    return chat_service


def history_response(db, conversation) -> ConversationHistoryResponse:
    return ConversationHistoryResponse(
        conversation_id=conversation.id,
        messages=[MessageResponse.model_validate(m) for m in chat_service.history(db, conversation)],
    )


# ========================================
# CHAT ENDPOINTS
# ========================================
@app.post("/api/chat", response_model=ChatAckResponse)
def send_message(
    request: ChatRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    service=Depends(get_chat_service),
):
    """Store a visitor message; the agent reply arrives as a real-time event"""
    conversation = service.get_or_create_conversation(db, request.session_id, request.conversation_id)
    visitor_message = service.record_visitor_message(db, conversation, request.message)

    if service.settings.response_mode == "background":
        background_tasks.add_task(service.respond_in_background, conversation.id, visitor_message.id)
        status_message = "Message queued for processing."
    else:
        service.respond(db, conversation, visitor_message)
        status_message = "Message processed synchronously."

    return ChatAckResponse(
        message=status_message,
        conversation_id=conversation.id,
        session_id=conversation.session_id,
        sent_message=MessageResponse.model_validate(visitor_message),
    )


@app.post("/api/chat/stream")
def stream_message(
    request: ChatRequest,
    db: Session = Depends(get_db),
    service=Depends(get_chat_service),
):
    """Store a visitor message and stream the agent reply as server-sent events"""
    conversation = service.get_or_create_conversation(db, request.session_id, request.conversation_id)
    visitor_message = service.record_visitor_message(db, conversation, request.message)

    return StreamingResponse(
        service.stream_reply(conversation.id, visitor_message.id),
        media_type="text/event-stream",
        headers={
            "X-Accel-Buffering": "no",
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Conversation-Id": str(conversation.id),
            "X-Session-Id": conversation.session_id,
        },
    )


@app.get("/api/conversation/session/{session_id}", response_model=ConversationHistoryResponse)
def get_history_by_session(session_id: str, db: Session = Depends(get_db)):
    """Get chat history for a widget session"""
    conversation = db.query(Conversation).filter(Conversation.session_id == session_id).first()
    if not conversation:
        return ConversationHistoryResponse(conversation_id=None, messages=[])
    return history_response(db, conversation)


@app.get("/api/conversation/{conversation_id}", response_model=ConversationHistoryResponse)
def get_history(conversation_id: int, db: Session = Depends(get_db)):
    """Get chat history for a conversation"""
    conversation = db.get(Conversation, conversation_id)
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return history_response(db, conversation)


@app.websocket("/ws/chat-session/{session_id}")
async def chat_session_ws(websocket: WebSocket, session_id: str):
    """Push message events for one widget session"""
    queue, unsubscribe = chat_service.broadcaster.subscribe_queue(session_channel(session_id))

    async def forward_events():
        while True:
            await websocket.send_json(await queue.get())

    sender = None
    try:
        await websocket.accept()
        sender = asyncio.create_task(forward_events())
        # Inbound frames are ignored; receiving only detects the disconnect
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        unsubscribe()
        if sender is not None:
            sender.cancel()
            # Collects a send failure as well as the cancellation
            with contextlib.suppress(Exception, asyncio.CancelledError):
                await sender
            if not sender.cancelled() and sender.exception() is not None:
                logger.warning("⚠️  WebSocket delivery failed for session %s: %s", session_id, sender.exception())


# ========================================
# KNOWLEDGE BASE ENDPOINTS
# ========================================
@app.post("/api/sites", response_model=TrustedSiteResponse, status_code=201)
def create_site(request: TrustedSiteCreate, db: Session = Depends(get_db)):
    """Register a trusted website"""
    site = TrustedSite(name=request.name.strip(), url=request.url, is_active=request.is_active)
    db.add(site)
    db.commit()
    db.refresh(site)
    logger.info("✅ Trusted site saved: %s (%s)", site.name, site.url)
    return site


@app.get("/api/sites", response_model=List[TrustedSiteResponse])
def list_sites(db: Session = Depends(get_db)):
    """List trusted websites"""
    return db.query(TrustedSite).order_by(TrustedSite.id).all()


@app.patch("/api/sites/{site_id}", response_model=TrustedSiteResponse)
def update_site(site_id: int, request: TrustedSiteUpdate, db: Session = Depends(get_db)):
    """Rename or enable/disable a trusted website"""
    site = db.get(TrustedSite, site_id)
    if not site:
        raise HTTPException(status_code=404, detail="Site not found")
    if request.name is not None:
        site.name = request.name.strip()
    if request.is_active is not None:
        site.is_active = request.is_active
    db.commit()
    db.refresh(site)
    return site


@app.delete("/api/sites/{site_id}")
def delete_site(site_id: int, db: Session = Depends(get_db)):
    """Delete a trusted website and all of its indexed pages"""
    site = db.get(TrustedSite, site_id)
    if not site:
        raise HTTPException(status_code=404, detail="Site not found")
    db.delete(site)
    db.commit()
    return {"message": "Site deleted successfully"}


def crawl_task(site_id=None):
    """Background task for crawling"""
    db_task = SessionLocal()
    try:
        SiteCrawler.from_settings(chat_service.settings).crawl(db_task, site_id)
    except Exception:
        logger.exception("❌ Error in crawl_task")
        db_task.rollback()
    finally:
        db_task.close()


def embed_task(fresh=False):
    """Background task for embedding generation"""
    db_task = SessionLocal()
    try:
        settings = chat_service.settings
        client = OpenAIClient.from_settings(settings)
        generate_embeddings(db_task, EmbeddingClient.from_settings(client, settings), fresh=fresh)
    except Exception:
        logger.exception("❌ Error in embed_task")
        db_task.rollback()
    finally:
        db_task.close()


@app.post("/api/sites/crawl", response_model=JobResponse)
def crawl_sites(request: CrawlRequest, background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
    """Crawl one or all active trusted sites in the background"""
    query = db.query(TrustedSite).filter(TrustedSite.is_active.is_(True))
    if request.site_id is not None:
        query = query.filter(TrustedSite.id == request.site_id)
        if query.first() is None:
            raise HTTPException(status_code=404, detail=f"No active trusted site found with ID: {request.site_id}")
    elif query.count() == 0:
        return JobResponse(message="No active trusted sites to crawl.", started=False)

    background_tasks.add_task(crawl_task, request.site_id)
    return JobResponse(message="Crawl started in background")


@app.post("/api/pages/embed", response_model=JobResponse)
def embed_pages(request: EmbedRequest, background_tasks: BackgroundTasks):
    """Generate embeddings for indexed pages in the background"""
    try:
        chat_service.settings.require_credentials(assistant=False)
    except ConfigurationError as e:
        raise HTTPException(status_code=503, detail=str(e))

    background_tasks.add_task(embed_task, request.fresh)
    return JobResponse(message="Embedding generation started in background")


@app.get("/api/status", response_model=StatusResponse)
def get_status(db: Session = Depends(get_db)):
    """Get knowledge base status"""
    pages = db.query(IndexedPage).count()
    embedded = db.query(IndexedPage).filter(IndexedPage.embedding.isnot(None)).count()
    if embedded:
        message = "Ready"
    elif pages:
        message = "Pages indexed, embeddings pending"
    else:
        message = "No pages indexed"
    return StatusResponse(ready=embedded > 0, message=message, pages_indexed=pages, pages_embedded=embedded)


@app.get("/health")
def health_check():
    """Health check"""
    try:
        db = SessionLocal()
        db.execute(text("SELECT 1"))
        db.close()
        db_status = "connected"
    except Exception as e:
        logger.error("Database health check failed: %s", e)
        db_status = "error"

    settings = chat_service.settings
    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "database": db_status,
        "assistant_configured": bool(settings.openai_api_key and settings.assistant_id),
    }


# ========================================
# STARTUP EVENT
# ========================================
@app.on_event("startup")
async def startup_event():
    settings = chat_service.settings
    print("\n" + "="*60)
    print("🚀 SUPPORT CHATBOT STARTING")
    print("="*60)
    print(f"🔑 API Key: {'✓ Configured' if settings.openai_api_key else '✗ Missing'}")
    print(f"🤖 Assistant: {'✓ Configured' if settings.assistant_id else '✗ Missing'}")
    print(f"📨 Response mode: {settings.response_mode}")
    print("="*60 + "\n")


# ========================================
# RUN SERVER
# ========================================
if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 10000))
    host = os.getenv("HOST", "0.0.0.0")

    print(f"\n🌐 Starting server on {host}:{port}")

    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        log_level="info",
        reload=False
    )
