"""Similarity search over stored page embeddings"""
import logging
import math
from dataclasses import dataclass
from numbers import Real
from typing import Any, Iterable, List, Optional

from models import IndexedPage

logger = logging.getLogger(__name__)

CONTEXT_HEADER = "Context from semantically similar pages:"


def _as_float(value):
    """float(value) for finite real numbers, else None"""
    if not isinstance(value, Real) or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except OverflowError:
        return None
    return number if math.isfinite(number) else None


def cosine_similarity(vec_a, vec_b) -> float:
    """Cosine of the angle between two vectors.

    Returns 0.0 for empty, zero-norm, mismatched-length or non-numeric input
    instead of raising, so one malformed stored vector cannot break a search.
    """
    if not isinstance(vec_a, (list, tuple)) or not isinstance(vec_b, (list, tuple)):
        return 0.0
    if not vec_a or len(vec_a) != len(vec_b):
        return 0.0

    dot = norm_a = norm_b = 0.0
    for a, b in zip(vec_a, vec_b):
        a, b = _as_float(a), _as_float(b)
        if a is None or b is None:
            return 0.0
        dot += a * b
        norm_a += a * a
        norm_b += b * b

    denominator = math.sqrt(norm_a) * math.sqrt(norm_b)
    if denominator == 0:
        return 0.0
    score = dot / denominator
    # Overflowing magnitudes end up as inf or nan
    if not math.isfinite(score):
        return 0.0
    # Clamp rounding noise so identical vectors score exactly within [-1, 1]
    return max(-1.0, min(1.0, score))


@dataclass
class ScoredPage:
    page: Any
    score: float


def rank_candidates(query_vector, candidates, limit=3) -> List[ScoredPage]:
    """Score every candidate against the query and keep the best ``limit``"""
    scored = [
        ScoredPage(page=candidate, score=cosine_similarity(query_vector, candidate.embedding))
        for candidate in candidates
    ]
    scored.sort(key=lambda s: s.score, reverse=True)
    return scored[:limit]


def build_context(scored_pages: Iterable[ScoredPage], max_chars=4000) -> str:
    """Format retrieved pages as a labelled context block for the assistant"""
    sections = [CONTEXT_HEADER, ""]
    for item in scored_pages:
        title = item.page.title or "Untitled"
        content = (item.page.content or "")[:max_chars]
        sections.append(f"--- Page: {title} (Similarity Score: {item.score:.2f})")
        sections.append(content)
        sections.append("")
    return "\n".join(sections)


def search(query_vector, candidates, limit=3, threshold=0.6, max_chars=4000) -> Optional[str]:
    """Return a context block for the best candidates, or None.

    The whole result is rejected when the best score is below ``threshold``;
    candidates under the threshold never reach the context block.
    """
    if not query_vector:
        return None

    top = rank_candidates(query_vector, list(candidates), limit)
    if not top:
        return None

    logger.info(
        "Top semantic search results: %s",
        [(getattr(s.page, "id", None), round(s.score, 4)) for s in top],
    )

    if top[0].score < threshold:
        logger.info("No sufficiently similar results found (best=%.4f, threshold=%.2f)", top[0].score, threshold)
        return None

    eligible = [s for s in top if s.score >= threshold]
    return build_context(eligible, max_chars)


class SemanticSearch:
    """Embeds a question and searches the locally indexed pages"""

    def __init__(self, embedder, limit=3, threshold=0.6, max_chars=4000):
        self.embedder = embedder
        self.limit = limit
        self.threshold = threshold
        self.max_chars = max_chars

    @classmethod
    def from_settings(cls, embedder, settings):
        return cls(
            embedder,
            limit=settings.search_limit,
            threshold=settings.similarity_threshold,
            max_chars=settings.context_max_chars,
        )

    def search(self, db, question) -> Optional[str]:
        query_vector = self.embedder.embed(question)
        if not query_vector:
            logger.info("No embedding produced for the question, skipping local search")
            return None

        pages = db.query(IndexedPage).filter(IndexedPage.embedding.isnot(None)).all()
        candidates = [p for p in pages if isinstance(p.embedding, list) and p.embedding]
        if not candidates:
            logger.info("No embedded pages available for local search")
            return None

        return search(query_vector, candidates, self.limit, self.threshold, self.max_chars)
