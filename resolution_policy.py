"""Decides which source answers a visitor question.

Order of attempts, stopping at the first confident answer:

1. the hosted assistant with its own file search,
2. locally indexed website pages (semantic search + RAG instructions),
3. a fixed apology with the support contact.
"""
import logging
from dataclasses import dataclass

from assistant_runner import FILE_SEARCH_TOOL
from openai_client import ProviderError
from prompt_templates import PromptKind

logger = logging.getLogger(__name__)

SOURCE_ASSISTANT = "assistant"
SOURCE_RAG = "rag"
SOURCE_FALLBACK = "fallback"


def is_fallback_response(reply, phrases) -> bool:
    """True if the reply is an "I don't know" style answer"""
    if reply is None or not reply.strip():
        return True
    return any(phrase in reply for phrase in phrases)


@dataclass(frozen=True)
class ResolvedReply:
    text: str
    source: str


class ResolutionPolicy:
    def __init__(self, runner, semantic_search, prompts, fallback_phrases):
        self.runner = runner
        self.semantic_search = semantic_search
        self.prompts = prompts
        self.fallback_phrases = tuple(fallback_phrases)

    def resolve(self, db, thread_id, question) -> ResolvedReply:
        # Step 1: the assistant's own knowledge via file search
        logger.info("Step 1: Attempting answer from the assistant's file_search.")
        reply = self._attempt(thread_id, question, self.prompts.render(PromptKind.NATIVE), [FILE_SEARCH_TOOL])

        if reply is not None and not is_fallback_response(reply, self.fallback_phrases):
            logger.info("Step 1a: SUCCESS. Assistant found a direct answer.")
            return ResolvedReply(reply, SOURCE_ASSISTANT)

        # Step 2: locally indexed pages
        logger.info("Step 2: Fallback from assistant. Searching indexed pages (RAG).")
        context = self.semantic_search.search(db, question)
        if context:
            logger.info("Step 2a: Found context. Re-asking assistant with RAG instructions.")
            instructions = self.prompts.render(PromptKind.RAG, context=context, question=question)
            reply = self._attempt(thread_id, question, instructions, [])
            if reply is not None and not is_fallback_response(reply, self.fallback_phrases):
                return ResolvedReply(reply, SOURCE_RAG)

        # Step 3: deterministic apology
        logger.info("Step 3: All sources failed. Using the final fallback reply.")
        return ResolvedReply(self.prompts.render(PromptKind.FINAL_FALLBACK), SOURCE_FALLBACK)

    def _attempt(self, thread_id, question, instructions, tools):
        """Run the assistant once; provider failures count as no answer"""
        try:
            return self.runner.run(thread_id, question, instructions, tools)
        except ProviderError as e:
            logger.error("❌ Assistant attempt failed: %s", e)
            return None
