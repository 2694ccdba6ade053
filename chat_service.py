"""Chat Service - runs the answer pipeline for each visitor message"""
import json
import logging
import uuid
from dataclasses import dataclass
from typing import Iterator, List, Optional

from sqlalchemy.exc import IntegrityError

from assistant_runner import FILE_SEARCH_TOOL, AssistantRunner, RunPollPolicy, StreamEvent
from broadcaster import AGENT_MESSAGE_SENT, VISITOR_MESSAGE_SENT, broadcaster as default_broadcaster, session_channel
from database import SessionLocal
from embedding_client import EmbeddingClient
from models import SENDER_AGENT, SENDER_VISITOR, Conversation, Message
from openai_client import OpenAIClient, ProviderError
from prompt_templates import PromptKind, PromptRegistry, is_simple_query
from reply_processor import ReplyProcessor, serialize_message
from resolution_policy import ResolutionPolicy, ResolvedReply
from settings import get_settings
from similarity import SemanticSearch
from thread_manager import ThreadManager

logger = logging.getLogger(__name__)

STREAM_ERROR_TEXT = "An error occurred."


def sse_event(event, data) -> str:
    return f"event: {event}\ndata: {data}\n\n"


def sse_data(payload) -> str:
    return f"data: {json.dumps(payload)}\n\n"


@dataclass
class Pipeline:
    threads: ThreadManager
    runner: AssistantRunner
    policy: ResolutionPolicy


class ChatService:
    """Owns the per-message flow: store, resolve, finalize, broadcast.

    Every visitor message ends in exactly one stored agent message and one
    ``agent-message-sent`` event, even when the provider is unreachable.
    """

    def __init__(self, settings=None, client=None, session_factory=SessionLocal, broadcaster=None):
        self.settings = settings or get_settings()
        self.client = client
        self.session_factory = session_factory
        self.broadcaster = broadcaster or default_broadcaster
        self.prompts = PromptRegistry.from_settings(self.settings)
        self.processor = ReplyProcessor(self.broadcaster)
        self._pipeline = None

    # ========================================
    # Wiring
    # ========================================
    def pipeline(self) -> Pipeline:
        """Build provider-backed components on first use.

        Raises ConfigurationError when credentials are missing, so a
        misconfigured deployment fails per request rather than at import.
        """
        if self._pipeline is not None:
            return self._pipeline

        settings = self.settings
        settings.require_credentials()
        client = self.client or OpenAIClient.from_settings(settings)

        runner = AssistantRunner(
            client,
            settings.assistant_id,
            poll_policy=RunPollPolicy.from_settings(settings),
            no_answer_text=settings.refusal_phrase,
        )
        search = SemanticSearch.from_settings(EmbeddingClient.from_settings(client, settings), settings)
        self._pipeline = Pipeline(
            threads=ThreadManager(client, settings.vector_store_id),
            runner=runner,
            policy=ResolutionPolicy(runner, search, self.prompts, settings.fallback_phrases),
        )
        return self._pipeline

    # ========================================
    # Conversations & visitor messages
    # ========================================
    def get_or_create_conversation(self, db, session_id=None, conversation_id=None) -> Conversation:
        if conversation_id is not None:
            conversation = db.get(Conversation, conversation_id)
            if conversation is not None:
                return conversation

        session_id = session_id or str(uuid.uuid4())
        conversation = db.query(Conversation).filter(Conversation.session_id == session_id).first()
        if conversation is not None:
            return conversation

        conversation = Conversation(session_id=session_id)
        db.add(conversation)
        try:
            db.commit()
        except IntegrityError:
            # Another request created the same session first
            db.rollback()
            return db.query(Conversation).filter(Conversation.session_id == session_id).one()
        db.refresh(conversation)
        logger.info("✅ Conversation %s created for session %s", conversation.id, session_id)
        return conversation

    def record_visitor_message(self, db, conversation, body) -> Message:
        message = Message(conversation_id=conversation.id, sender=SENDER_VISITOR, body=body)
        db.add(message)
        db.commit()
        db.refresh(message)
        logger.info("Visitor message %s created", message.id)

        self.broadcaster.publish(
            session_channel(conversation.session_id), VISITOR_MESSAGE_SENT, serialize_message(message)
        )
        return message

    @staticmethod
    def history(db, conversation) -> List[Message]:
        return (
            db.query(Message)
            .filter(Message.conversation_id == conversation.id)
            .order_by(Message.created_at, Message.id)
            .all()
        )

    # ========================================
    # Buffered reply (sync request or background task)
    # ========================================
    def resolve(self, db, conversation, visitor_message) -> ResolvedReply:
        pipeline = self.pipeline()
        thread_id = pipeline.threads.ensure_thread(db, conversation)
        return pipeline.policy.resolve(db, thread_id, visitor_message.body)

    def respond(self, db, conversation, visitor_message) -> Message:
        """Resolve the reply for a visitor message and persist it"""
        try:
            resolved = self.resolve(db, conversation, visitor_message)
            logger.info("Reply for message %s resolved from %s", visitor_message.id, resolved.source)
            reply = resolved.text
        except Exception:
            logger.exception("❌ Chat pipeline failed for message %s", visitor_message.id)
            db.rollback()
            reply = self.prompts.render(PromptKind.TECHNICAL_ERROR)
        return self.finalize(db, conversation, reply)

    def respond_in_background(self, conversation_id, message_id) -> None:
        """Background task entry point; uses its own session"""
        db = self.session_factory()
        try:
            conversation = db.get(Conversation, conversation_id)
            message = db.get(Message, message_id)
            if conversation is None or message is None:
                logger.error("❌ Conversation %s / message %s not found for background reply", conversation_id, message_id)
                return
            self.respond(db, conversation, message)
        finally:
            db.close()

    def finalize(self, db, conversation, reply) -> Message:
        try:
            return self.processor.finalize(db, conversation, reply)
        except Exception:
            logger.exception("❌ Could not finalize reply for conversation %s", conversation.id)
            db.rollback()

        message = Message(
            conversation_id=conversation.id,
            sender=SENDER_AGENT,
            body=self.prompts.render(PromptKind.TECHNICAL_ERROR),
        )
        db.add(message)
        db.commit()
        db.refresh(message)
        self.broadcaster.publish(
            session_channel(conversation.session_id), AGENT_MESSAGE_SENT, serialize_message(message)
        )
        return message

    # ========================================
    # Streaming reply
    # ========================================
    def stream_reply(self, conversation_id, message_id) -> Iterator[str]:
        """Yield server-sent event frames for one streamed assistant run"""
        db = self.session_factory()
        try:
            conversation = db.get(Conversation, conversation_id)
            visitor_message = db.get(Message, message_id)
            if conversation is None or visitor_message is None:
                yield sse_event("error", json.dumps({"error": STREAM_ERROR_TEXT}))
                return

            received: List[str] = []
            events = None
            finalized = False
            try:
                if not is_simple_query(visitor_message.body):
                    yield sse_event("start-processing", "Starting complex query process")

                full_text: Optional[str] = None
                try:
                    pipeline = self.pipeline()
                    thread_id = pipeline.threads.ensure_thread(db, conversation)
                    instructions = self.prompts.render(PromptKind.STREAMING)
                    events = pipeline.runner.stream(thread_id, visitor_message.body, instructions, [FILE_SEARCH_TOOL])
                    for event in events:
                        if event.type == StreamEvent.TEXT:
                            received.append(event.text)
                            yield sse_data({"text": event.text})
                        elif event.type == StreamEvent.ERROR:
                            raise ProviderError(event.error or "stream error")
                        elif event.type == StreamEvent.END:
                            full_text = event.text
                except Exception:
                    logger.exception("❌ Streaming error for message %s", message_id)
                    db.rollback()
                    self.finalize(db, conversation, self.prompts.render(PromptKind.TECHNICAL_ERROR))
                    finalized = True
                    yield sse_event("error", json.dumps({"error": STREAM_ERROR_TEXT}))
                    return

                if not full_text or not full_text.strip():
                    full_text = self.prompts.render(PromptKind.FINAL_FALLBACK)
                    yield sse_data({"text": full_text})

                self.finalize(db, conversation, full_text)
                finalized = True
                yield sse_event("end", "Stream finished")
            except GeneratorExit:
                # The client went away; the turn still gets its one agent message
                if events is not None:
                    events.close()
                if not finalized:
                    partial = "".join(received)
                    logger.warning("⚠️  Client disconnected while streaming message %s", message_id)
                    self.finalize(db, conversation, partial if partial.strip() else self.prompts.render(PromptKind.FINAL_FALLBACK))
                raise
        finally:
            db.close()


# Initialize global chat service
chat_service = ChatService()
