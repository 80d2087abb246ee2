from __future__ import annotations

import datetime as dt
import logging
import sqlite3
from typing import TYPE_CHECKING, Any

from .. import db
from ..semantic import EmbeddingClient, serialize_vector

if TYPE_CHECKING:
    from ._store import MemoryStore

logger = logging.getLogger(__name__)

EMBED_BATCH_SIZE = 32

_CONTENT_SQL = {
    "session": "SELECT id, trim(summary || ' ' || topics) AS content FROM sessions",
    "knowledge": "SELECT id, trim(area || ' ' || summary || ' ' || patterns) AS content FROM knowledge",
    "fact": "SELECT id, trim(fact || ' ' || category) AS content FROM facts",
}

_UPSERT_PENDING = """
    ON CONFLICT(source_type, source_id) DO UPDATE SET
        content = excluded.content,
        status = 'pending',
        error_message = NULL,
        processed_at = NULL
"""


def _now_iso() -> str:
    return dt.datetime.now(dt.UTC).isoformat()


def requeue_source(conn: sqlite3.Connection, source_type: str, source_id: int) -> None:
    """Invalidate a row's embedding after its text changed and queue it again.

    A no-op until vector support is initialized. Errors are logged, never raised:
    the source row has already been committed.
    """

    try:
        if not db.has_table(conn, "embedding_queue"):
            return
        table = db.SOURCE_TABLES[source_type]
        row = conn.execute(
            f"{_CONTENT_SQL[source_type]} WHERE id = ?", (source_id,)
        ).fetchone()
        if row is None:
            return
        with conn:
            conn.execute(f"UPDATE {table} SET embedding = NULL WHERE id = ?", (source_id,))
            conn.execute(
                f"""
                INSERT INTO embedding_queue(source_type, source_id, content, status)
                VALUES (?, ?, ?, 'pending')
                {_UPSERT_PENDING}
                """,
                (source_type, source_id, row["content"]),
            )
    except sqlite3.Error as exc:
        logger.warning("embedding enqueue failed for %s %s", source_type, source_id, exc_info=exc)


def delete_queue_items(conn: sqlite3.Connection, source_type: str, source_ids: list[int]) -> None:
    if not source_ids or not db.has_table(conn, "embedding_queue"):
        return
    conn.executemany(
        "DELETE FROM embedding_queue WHERE source_type = ? AND source_id = ?",
        [(source_type, source_id) for source_id in source_ids],
    )


def queue_missing(conn: sqlite3.Connection) -> int:
    """Queue every row that has no embedding yet. Returns the pending count."""

    with conn:
        for source_type, table in db.SOURCE_TABLES.items():
            conn.execute(
                f"""
                INSERT INTO embedding_queue(source_type, source_id, content, status)
                SELECT ?, src.id, src.content, 'pending'
                FROM ({_CONTENT_SQL[source_type]} WHERE embedding IS NULL) AS src
                WHERE 1
                {_UPSERT_PENDING}
                """,
                (source_type,),
            )
    row = conn.execute(
        "SELECT COUNT(*) FROM embedding_queue WHERE status = 'pending'"
    ).fetchone()
    return int(row[0]) if row else 0


def _mark(
    conn: sqlite3.Connection, queue_id: int, status: str, error_message: str | None = None
) -> None:
    conn.execute(
        """
        UPDATE embedding_queue
        SET status = ?, error_message = ?, processed_at = ?
        WHERE id = ?
        """,
        (status, error_message, _now_iso(), queue_id),
    )


def _record_model(conn: sqlite3.Connection, client: EmbeddingClient, dimension: int) -> None:
    values = {
        "provider": str(getattr(client, "provider", type(client).__name__)),
        "model": client.model,
        "dimension": str(dimension),
    }
    with conn:
        conn.executemany(
            """
            INSERT INTO vector_meta(key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """,
            [(key, value, _now_iso()) for key, value in values.items()],
        )


def embed_pending(store: MemoryStore, client: EmbeddingClient) -> dict[str, int]:
    conn = store.conn
    queued = queue_missing(conn)
    rows = conn.execute(
        """
        SELECT id, source_type, source_id, content
        FROM embedding_queue
        WHERE status = 'pending'
        ORDER BY created_at ASC, id ASC
        """
    ).fetchall()
    embedded = 0
    failed = 0
    dimension = 0
    for start in range(0, len(rows), EMBED_BATCH_SIZE):
        batch = rows[start : start + EMBED_BATCH_SIZE]
        try:
            vectors = client.embed([row["content"] for row in batch])
        except Exception as exc:
            logger.warning("embedding batch failed", exc_info=exc)
            with conn:
                for row in batch:
                    _mark(conn, int(row["id"]), "error", str(exc) or type(exc).__name__)
            failed += len(batch)
            continue
        with conn:
            for index, row in enumerate(batch):
                vector = vectors[index] if index < len(vectors) else None
                if not vector:
                    _mark(conn, int(row["id"]), "error", "empty embedding")
                    failed += 1
                    continue
                table = db.SOURCE_TABLES.get(row["source_type"])
                if table is None:
                    _mark(conn, int(row["id"]), "error", "unknown source type")
                    failed += 1
                    continue
                cur = conn.execute(
                    f"UPDATE {table} SET embedding = ? WHERE id = ?",
                    (serialize_vector(vector), int(row["source_id"])),
                )
                if cur.rowcount == 0:
                    _mark(conn, int(row["id"]), "error", "source row missing")
                    failed += 1
                    continue
                _mark(conn, int(row["id"]), "done")
                dimension = len(vector)
                embedded += 1
    if embedded:
        _record_model(conn, client, dimension)
    return {"queued": queued, "embedded": embedded, "failed": failed}


def embedding_coverage(conn: sqlite3.Connection) -> dict[str, Any]:
    coverage: dict[str, Any] = {}
    for source_type, table in db.SOURCE_TABLES.items():
        row = conn.execute(
            f"SELECT COUNT(*) FROM {table} WHERE embedding IS NOT NULL"
        ).fetchone()
        coverage[source_type] = int(row[0]) if row else 0
    row = conn.execute(
        "SELECT COUNT(*) FROM embedding_queue WHERE status = 'pending'"
    ).fetchone()
    coverage["pending"] = int(row[0]) if row else 0
    return coverage
