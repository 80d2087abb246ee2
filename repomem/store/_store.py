from __future__ import annotations

import datetime as dt
import logging
import sqlite3
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from .. import db, fs_paths
from ..config import RepomemConfig, load_config
from ..entities import delete_entities, parse_files, store_entities
from ..normalize import normalize
from ..semantic import EmbeddingClient, get_embedding_client, setup_embeddings
from . import consolidate as store_consolidate
from . import packs as store_packs
from . import search as store_search
from . import vectors as store_vectors
from .types import ConsolidationResult, EntityResult, SearchResult

logger = logging.getLogger(__name__)


class MissingStoreError(FileNotFoundError):
    """Raised by read operations when the repository has no memory store yet."""


def _join_list(value: str | Sequence[str] | None) -> str:
    if not value:
        return ""
    items = value.split(",") if isinstance(value, str) else list(value)
    return ",".join(item.strip() for item in items if item and item.strip())


def _check_limit(limit: int) -> int:
    if limit <= 0:
        raise ValueError(f"limit must be positive, got {limit}")
    return limit


class MemoryStore:
    """Per-repository memory: sessions, code-area knowledge and facts.

    The store lives at ``<repo_root>/<memory_dir>/memory.db``. Write operations
    create it on demand; read operations raise ``MissingStoreError`` (or return
    an empty value, for ``context`` and ``stats``) when it does not exist.
    """

    def __init__(
        self,
        repo_root: Path | str,
        *,
        config: RepomemConfig | None = None,
        embedder: EmbeddingClient | None = None,
        check_same_thread: bool = True,
    ):
        self.repo_root = Path(repo_root).expanduser()
        self.config = config or load_config()
        self.db_path = fs_paths.store_path(self.repo_root, self.config.memory_dir)
        self._embedder = embedder
        self._check_same_thread = check_same_thread
        self._conn: sqlite3.Connection | None = None

    @staticmethod
    def _now_iso() -> str:
        return dt.datetime.now(dt.UTC).isoformat()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            if not self.db_path.exists():
                raise MissingStoreError(f"No memory database found at {self.db_path}")
            self._conn = db.connect(self.db_path, check_same_thread=self._check_same_thread)
        return self._conn

    def _open(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = db.connect(self.db_path, check_same_thread=self._check_same_thread)
        return self._conn

    def exists(self) -> bool:
        if not self.db_path.exists():
            return False
        return db.has_table(self.conn, "sessions")

    def _require_store(self) -> sqlite3.Connection:
        if not self.exists():
            raise MissingStoreError(f"No memory database found at {self.db_path}")
        return self.conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # Schema

    def init(self) -> bool:
        return db.initialize_schema(self._open())

    def init_metadata(self) -> bool:
        return db.initialize_metadata_schema(self._open())

    def init_vector(self) -> bool:
        return db.initialize_vector_schema(
            self._open(), {"model": self.config.embedding_model}
        )

    # Writes

    def add_session(
        self,
        summary: str,
        files: str | Sequence[str] | None = None,
        tools: str | Sequence[str] | None = None,
        topics: str | Sequence[str] | None = None,
    ) -> int:
        if not summary or not summary.strip():
            raise ValueError("session summary is required")
        self.init()
        text = normalize(summary)
        file_list = parse_files(files)
        cur = self.conn.execute(
            """
            INSERT INTO sessions(created_at, summary, files_touched, tools_used, topics)
            VALUES (?, ?, ?, ?, ?)
            """,
            (self._now_iso(), text, db.to_json(file_list), _join_list(tools), _join_list(topics)),
        )
        self.conn.commit()
        if cur.lastrowid is None:
            raise RuntimeError("Failed to insert session")
        session_id = int(cur.lastrowid)
        store_entities(self.conn, "session", session_id, text, file_list)
        store_vectors.requeue_source(self.conn, "session", session_id)
        self._maybe_consolidate()
        return session_id

    def add_knowledge(self, area: str, summary: str, patterns: str | None = "") -> int:
        area = (area or "").strip()
        if not area:
            raise ValueError("knowledge area is required")
        self.init()
        text = normalize(summary or "")
        now = self._now_iso()
        self.conn.execute(
            """
            INSERT INTO knowledge(area, summary, patterns, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(area) DO UPDATE SET
                summary = excluded.summary,
                patterns = excluded.patterns,
                updated_at = excluded.updated_at
            """,
            (area, text, patterns or "", now, now),
        )
        self.conn.commit()
        row = self.conn.execute("SELECT id FROM knowledge WHERE area = ?", (area,)).fetchone()
        knowledge_id = int(row["id"])
        self._reindex_entities("knowledge", knowledge_id, text)
        store_vectors.requeue_source(self.conn, "knowledge", knowledge_id)
        return knowledge_id

    def add_fact(self, fact: str, category: str | None = "general") -> int:
        if not fact or not fact.strip():
            raise ValueError("fact text is required")
        self.init()
        text = normalize(fact)
        cur = self.conn.execute(
            "INSERT INTO facts(fact, category, created_at) VALUES (?, ?, ?)",
            (text, (category or "").strip() or "general", self._now_iso()),
        )
        self.conn.commit()
        if cur.lastrowid is None:
            raise RuntimeError("Failed to insert fact")
        fact_id = int(cur.lastrowid)
        store_entities(self.conn, "fact", fact_id, text)
        store_vectors.requeue_source(self.conn, "fact", fact_id)
        return fact_id

    def _reindex_entities(self, source_type: str, source_id: int, text: str) -> None:
        try:
            with self.conn:
                delete_entities(self.conn, source_type, [source_id])
        except sqlite3.Error as exc:
            logger.warning("stale entity cleanup failed", exc_info=exc)
        store_entities(self.conn, source_type, source_id, text)

    def add_relation(
        self,
        from_type: str,
        from_id: int,
        to_type: str,
        to_id: int,
        relation: str = "related_to",
    ) -> bool:
        self.init_metadata()
        cur = self.conn.execute(
            """
            INSERT OR IGNORE INTO entry_relations(from_type, from_id, to_type, to_id, relation)
            VALUES (?, ?, ?, ?, ?)
            """,
            (from_type, int(from_id), to_type, int(to_id), relation or "related_to"),
        )
        self.conn.commit()
        return cur.rowcount > 0

    def relations(self, source_type: str, source_id: int) -> list[dict[str, Any]]:
        conn = self._require_store()
        if not db.has_table(conn, "entry_relations"):
            return []
        rows = conn.execute(
            """
            SELECT from_type, from_id, to_type, to_id, relation, created_at
            FROM entry_relations
            WHERE (from_type = ? AND from_id = ?) OR (to_type = ? AND to_id = ?)
            ORDER BY created_at ASC, id ASC
            """,
            (source_type, source_id, source_type, source_id),
        ).fetchall()
        return db.rows_to_dicts(rows)

    def _maybe_consolidate(self) -> None:
        if not self.config.auto_consolidate:
            return
        try:
            if store_consolidate.should_consolidate(self.conn, self.config):
                store_consolidate.CONSOLIDATION_WORKER.submit(self)
        except sqlite3.Error as exc:
            logger.warning("consolidation check failed", exc_info=exc)

    # Reads

    def search(self, query: str, limit: int = 10) -> list[SearchResult]:
        self._require_store()
        return store_search.search(self, query, limit=_check_limit(limit))

    def vsearch(self, query: str, limit: int = 5) -> list[SearchResult]:
        self._require_store()
        return store_search.vector_search(self, query, limit=_check_limit(limit))

    def entity_search(
        self, query: str, entity_type: str | None = None
    ) -> list[EntityResult] | None:
        self._require_store()
        return store_search.entity_search(self, query, entity_type)

    def recent(self, limit: int = 5) -> list[dict[str, Any]]:
        conn = self._require_store()
        rows = conn.execute(
            """
            SELECT id, created_at, summary, topics
            FROM sessions
            ORDER BY created_at DESC, id DESC
            LIMIT ?
            """,
            (_check_limit(limit),),
        ).fetchall()
        return db.rows_to_dicts(rows)

    def context(self, query: str, token_limit: int | None = None) -> str:
        if not self.exists():
            return ""
        limit = self.config.context_token_limit if token_limit is None else token_limit
        return store_packs.build_context(self, query, token_limit=limit)

    # Maintenance

    def consolidate(self) -> ConsolidationResult:
        conn = self._require_store()
        return store_consolidate.consolidate(conn, self.config)

    def embedding_client(self) -> EmbeddingClient | None:
        if self._embedder is not None:
            return self._embedder
        return get_embedding_client(self.config)

    def embed(self) -> dict[str, int]:
        self._require_store()
        self.init_vector()
        client = self.embedding_client()
        if client is None:
            raise RuntimeError(
                "No embedding provider available (install fastembed or unset "
                "REPOMEM_EMBEDDING_DISABLED)"
            )
        config_path = fs_paths.embedding_config_path(self.repo_root, self.config.memory_dir)
        if not config_path.exists():
            logger.info("embeddings not configured; running setup")
            setup_embeddings(config_path, client)
        return store_vectors.embed_pending(self, client)

    def stats(self) -> dict[str, Any] | None:
        if not self.exists():
            return None
        conn = self.conn
        counts: dict[str, Any] = {}
        for source_type, table in db.SOURCE_TABLES.items():
            row = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
            counts[source_type] = int(row[0]) if row else 0
        entities = None
        if db.has_table(conn, "entity_metadata"):
            row = conn.execute("SELECT COUNT(*) FROM entity_metadata").fetchone()
            entities = int(row[0]) if row else 0
        vector_enabled = db.has_table(conn, "vector_meta")
        return {
            "path": str(self.db_path),
            "size_bytes": self.db_path.stat().st_size,
            "sessions": counts["session"],
            "knowledge": counts["knowledge"],
            "facts": counts["fact"],
            "entities": entities,
            "vector_enabled": vector_enabled,
            "vector_meta": db.read_vector_meta(conn) if vector_enabled else {},
            "embeddings": store_vectors.embedding_coverage(conn) if vector_enabled else None,
        }
