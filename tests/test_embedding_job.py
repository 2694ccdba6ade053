"""Tests for the batch embedding job."""

from unittest.mock import MagicMock

from embedding_job import generate_embeddings
from models import IndexedPage


def test_embeds_only_pages_without_vectors(db, make_page):
    make_page("https://example.com/a", content="alpha " * 30)
    make_page("https://example.com/b", content="beta " * 30, embedding=[9.0])
    embedder = MagicMock()
    embedder.embed.return_value = [0.1, 0.2]

    report = generate_embeddings(db, embedder, batch_size=1)

    assert (report.total, report.embedded, report.failed) == (1, 1, 0)
    embedder.embed.assert_called_once_with("alpha " * 30)
    vectors = {p.url: p.embedding for p in db.query(IndexedPage).all()}
    assert vectors == {"https://example.com/a": [0.1, 0.2], "https://example.com/b": [9.0]}


def test_fresh_reembeds_everything(db, make_page):
    make_page("https://example.com/a", embedding=[1.0])
    make_page("https://example.com/b", embedding=[2.0])
    embedder = MagicMock()
    embedder.embed.return_value = [0.5]

    report = generate_embeddings(db, embedder, fresh=True)

    assert report.embedded == 2
    assert all(p.embedding == [0.5] for p in db.query(IndexedPage).all())


def test_failed_pages_are_counted_and_left_unembedded(db, make_page):
    make_page("https://example.com/a")
    make_page("https://example.com/b")
    embedder = MagicMock()
    embedder.embed.side_effect = [None, [0.3]]

    report = generate_embeddings(db, embedder)

    assert (report.embedded, report.failed) == (1, 1)
    assert db.query(IndexedPage).filter(IndexedPage.embedding.is_(None)).count() == 1


def test_nothing_to_do(db):
    embedder = MagicMock()

    report = generate_embeddings(db, embedder)

    assert report.total == 0
    embedder.embed.assert_not_called()
