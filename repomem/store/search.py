from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from .. import db
from ..semantic import cosine_similarity, deserialize_vector
from .types import EntityResult, SearchResult

if TYPE_CHECKING:
    from ._store import MemoryStore

logger = logging.getLogger(__name__)

ENTITY_RESULT_LIMIT = 10

_VECTOR_SOURCES = (
    ("session", "SELECT id, summary AS content, embedding FROM sessions WHERE embedding IS NOT NULL"),
    (
        "knowledge",
        "SELECT id, area || ': ' || summary AS content, embedding FROM knowledge WHERE embedding IS NOT NULL",
    ),
    ("fact", "SELECT id, fact AS content, embedding FROM facts WHERE embedding IS NOT NULL"),
)


def _match_query(query: str) -> str:
    # Each token quoted so FTS5 operators and punctuation in user text are inert.
    # Unicode letters and digits, the same characters the unicode61 tokenizer indexes.
    tokens = re.findall(r"[^\W_]+", query)
    return " ".join(f'"{token}"' for token in tokens)


def like_pattern(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def search(
    store: MemoryStore,
    query: str,
    limit: int = 10,
    highlight: tuple[str, str] = ("**", "**"),
) -> list[SearchResult]:
    match = _match_query(query)
    if not match:
        return []
    rows = store.conn.execute(
        """
        SELECT source_type, source_id,
            snippet(memory_fts, 0, ?, ?, '...', 32) AS snippet,
            bm25(memory_fts) AS rank
        FROM memory_fts
        WHERE memory_fts MATCH ?
        ORDER BY rank
        LIMIT ?
        """,
        (highlight[0], highlight[1], match, limit),
    ).fetchall()
    return [
        SearchResult(
            source_type=str(row["source_type"]),
            source_id=int(row["source_id"]),
            text=str(row["snippet"] or ""),
            score=-float(row["rank"]),
        )
        for row in rows
    ]


def entity_search(
    store: MemoryStore, query: str, entity_type: str | None = None
) -> list[EntityResult] | None:
    if not db.has_table(store.conn, "entity_metadata"):
        return None
    params: list[object] = [like_pattern(query)]
    type_clause = ""
    if entity_type:
        type_clause = "AND em.entity_type = ?"
        params.append(entity_type)
    params.append(ENTITY_RESULT_LIMIT)
    rows = store.conn.execute(
        f"""
        SELECT em.entity, em.entity_type, em.source_type, em.source_id, em.created_at,
            CASE em.source_type
                WHEN 'session' THEN (SELECT summary FROM sessions WHERE id = em.source_id)
                WHEN 'knowledge' THEN (
                    SELECT area || ': ' || summary FROM knowledge WHERE id = em.source_id
                )
                WHEN 'fact' THEN (SELECT fact FROM facts WHERE id = em.source_id)
            END AS context
        FROM entity_metadata em
        WHERE em.entity LIKE ? ESCAPE '\\'
        {type_clause}
        ORDER BY em.created_at DESC, em.id DESC
        LIMIT ?
        """,
        params,
    ).fetchall()
    return [
        EntityResult(
            entity=row["entity"],
            entity_type=row["entity_type"],
            source_type=row["source_type"],
            source_id=int(row["source_id"]),
            context=row["context"] or "",
            created_at=row["created_at"],
        )
        for row in rows
    ]


def vector_search(store: MemoryStore, query: str, limit: int = 5) -> list[SearchResult]:
    if not db.has_table(store.conn, "vector_meta"):
        return search(store, query, limit=limit)
    client = store.embedding_client()
    if client is None:
        logger.info("no embedding provider; using keyword search")
        return search(store, query, limit=limit)
    try:
        embeddings = client.embed([query])
    except Exception as exc:
        logger.warning("query embedding failed; using keyword search", exc_info=exc)
        return search(store, query, limit=limit)
    if not embeddings or not embeddings[0]:
        return search(store, query, limit=limit)
    query_vector = list(embeddings[0])

    threshold = store.config.similarity_threshold
    scored: list[SearchResult] = []
    for source_type, sql in _VECTOR_SOURCES:
        for row in store.conn.execute(sql):
            similarity = cosine_similarity(query_vector, deserialize_vector(row["embedding"]))
            if similarity <= threshold:
                continue
            scored.append(
                SearchResult(
                    source_type=source_type,
                    source_id=int(row["id"]),
                    text=str(row["content"] or ""),
                    score=similarity,
                    method="vector",
                )
            )
    scored.sort(key=lambda item: item.score, reverse=True)
    return scored[:limit]
