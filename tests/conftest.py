from __future__ import annotations

import sqlite3
from collections.abc import Callable, Iterable, Iterator
from pathlib import Path

import pytest

from repomem.store import CONSOLIDATION_WORKER


@pytest.fixture(autouse=True)
def _isolate_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[None]:
    monkeypatch.setenv("REPOMEM_CONFIG", str(tmp_path / "config" / "config.json"))
    monkeypatch.setenv("REPOMEM_EMBEDDING_DISABLED", "1")
    yield
    CONSOLIDATION_WORKER.wait(timeout=5)


class FakeEmbedder:
    """Bag-of-keywords embedder: one dimension per vocabulary word."""

    provider = "fake"
    model = "fake-embedder"

    def __init__(self, vocabulary: Iterable[str] = ("auth", "login", "database", "cache")):
        self.vocabulary = [word.lower() for word in vocabulary]
        self.calls: list[list[str]] = []

    def embed(self, texts: Iterable[str]) -> list[list[float]]:
        batch = list(texts)
        self.calls.append(batch)
        vectors = []
        for text in batch:
            lowered = text.lower()
            vector = [float(lowered.count(word)) for word in self.vocabulary]
            # Keeps every vector non-zero so cosine similarity is defined.
            vector.append(0.1)
            vectors.append(vector)
        return vectors


class FailingEmbedder:
    provider = "failing"
    model = "failing-embedder"

    def embed(self, texts: Iterable[str]) -> list[list[float]]:
        raise RuntimeError("embedding backend offline")


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def failing_embedder() -> FailingEmbedder:
    return FailingEmbedder()


def _shadow_table_with_view(conn: sqlite3.Connection, table: str) -> None:
    # Same name and columns, but every write to it now fails.
    conn.execute(f"ALTER TABLE {table} RENAME TO {table}_backing")
    conn.execute(f"CREATE VIEW {table} AS SELECT * FROM {table}_backing")
    conn.commit()


@pytest.fixture
def read_only_table() -> Callable[[sqlite3.Connection, str], None]:
    return _shadow_table_with_view
