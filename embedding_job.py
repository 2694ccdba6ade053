"""Batch job that generates embeddings for indexed pages"""
import logging
from dataclasses import dataclass

from models import IndexedPage

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingReport:
    total: int = 0
    embedded: int = 0
    failed: int = 0


def generate_embeddings(db, embedder, fresh=False, batch_size=50) -> EmbeddingReport:
    """Embed pages without a vector (or every page when ``fresh``).

    Pages are loaded in batches; a page whose embedding fails is counted and
    skipped so one bad page does not stop the job.
    """
    query = db.query(IndexedPage.id)
    if not fresh:
        query = query.filter(IndexedPage.embedding.is_(None))
    page_ids = [row.id for row in query.order_by(IndexedPage.id).all()]

    report = EmbeddingReport(total=len(page_ids))
    if not page_ids:
        logger.info("No pages to process. All indexed pages already have embeddings.")
        return report

    logger.info("Found %s pages to embed", report.total)
    for start in range(0, len(page_ids), batch_size):
        batch = page_ids[start:start + batch_size]
        pages = db.query(IndexedPage).filter(IndexedPage.id.in_(batch)).all()
        for page in pages:
            vector = embedder.embed(page.content)
            if vector is None:
                report.failed += 1
                logger.error("❌ Embedding generation failed for page %s", page.id)
                continue
            page.embedding = vector
            report.embedded += 1
        db.commit()

    logger.info("✅ Embedding generation complete: %s", report)
    return report
