"""Binds local conversations to remote assistant threads"""
import logging

from models import Conversation

logger = logging.getLogger(__name__)


class ThreadManager:
    """Creates remote threads lazily and stores their id exactly once."""

    def __init__(self, client, vector_store_id=None):
        self.client = client
        self.vector_store_id = vector_store_id

    def ensure_thread(self, db, conversation) -> str:
        """Return the conversation's thread id, creating the thread if needed.

        The id is written with a conditional update so two racing requests
        cannot both bind a thread; the loser adopts the stored id.
        """
        if conversation.openai_thread_id:
            return conversation.openai_thread_id

        # A concurrent request may have bound a thread since this row was loaded
        db.refresh(conversation)
        if conversation.openai_thread_id:
            return conversation.openai_thread_id

        thread_id = self.client.create_thread(vector_store_id=self.vector_store_id)

        updated = (
            db.query(Conversation)
            .filter(Conversation.id == conversation.id, Conversation.openai_thread_id.is_(None))
            .update({Conversation.openai_thread_id: thread_id}, synchronize_session=False)
        )
        db.commit()
        db.refresh(conversation)

        if updated:
            logger.info("✅ New thread %s created for conversation %s", thread_id, conversation.id)
        else:
            logger.warning(
                "⚠️  Conversation %s was bound to thread %s concurrently; abandoning thread %s",
                conversation.id, conversation.openai_thread_id, thread_id,
            )
        return conversation.openai_thread_id
