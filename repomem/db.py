from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterable
from pathlib import Path
from typing import Any

SCHEMA_VERSION = 1

SOURCE_TABLES = {"session": "sessions", "knowledge": "knowledge", "fact": "facts"}

DEFAULT_VECTOR_META = {
    "provider": "fastembed",
    "model": "BAAI/bge-small-en-v1.5",
    "dimension": "384",
    "version": "1",
}


def connect(db_path: Path | str, check_same_thread: bool = True) -> sqlite3.Connection:
    path = Path(db_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, timeout=10.0, check_same_thread=check_same_thread)
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA journal_mode = WAL")
    except sqlite3.OperationalError:
        conn.execute("PRAGMA journal_mode = DELETE")
    conn.execute("PRAGMA synchronous = NORMAL")
    conn.execute("PRAGMA busy_timeout = 10000")
    return conn


def has_table(conn: sqlite3.Connection, name: str) -> bool:
    row = conn.execute(
        "SELECT COUNT(*) FROM sqlite_master WHERE name = ?",
        (name,),
    ).fetchone()
    return bool(row and row[0])


def initialize_schema(conn: sqlite3.Connection) -> bool:
    """Create the base tables and full-text index. Returns False if already present."""

    if has_table(conn, "sessions"):
        return False
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS sessions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            created_at TEXT NOT NULL,
            summary TEXT NOT NULL,
            files_touched TEXT NOT NULL DEFAULT '[]',
            tools_used TEXT NOT NULL DEFAULT '',
            topics TEXT NOT NULL DEFAULT ''
        );
        CREATE INDEX IF NOT EXISTS idx_sessions_created ON sessions(created_at DESC);

        CREATE TABLE IF NOT EXISTS knowledge (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            area TEXT NOT NULL UNIQUE,
            summary TEXT NOT NULL,
            patterns TEXT NOT NULL DEFAULT '',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS facts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            fact TEXT NOT NULL,
            category TEXT NOT NULL DEFAULT 'general',
            created_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_facts_category ON facts(category);
        CREATE INDEX IF NOT EXISTS idx_facts_created ON facts(created_at DESC);

        CREATE VIRTUAL TABLE IF NOT EXISTS memory_fts USING fts5(
            content,
            source_type UNINDEXED,
            source_id UNINDEXED
        );

        CREATE TRIGGER IF NOT EXISTS sessions_ai AFTER INSERT ON sessions BEGIN
            INSERT INTO memory_fts(content, source_type, source_id)
            VALUES (trim(new.summary || ' ' || replace(new.topics, ',', ' ')), 'session', new.id);
        END;
        CREATE TRIGGER IF NOT EXISTS sessions_au AFTER UPDATE OF summary, topics ON sessions BEGIN
            DELETE FROM memory_fts WHERE source_type = 'session' AND source_id = old.id;
            INSERT INTO memory_fts(content, source_type, source_id)
            VALUES (trim(new.summary || ' ' || replace(new.topics, ',', ' ')), 'session', new.id);
        END;
        CREATE TRIGGER IF NOT EXISTS sessions_ad AFTER DELETE ON sessions BEGIN
            DELETE FROM memory_fts WHERE source_type = 'session' AND source_id = old.id;
        END;

        CREATE TRIGGER IF NOT EXISTS knowledge_ai AFTER INSERT ON knowledge BEGIN
            INSERT INTO memory_fts(content, source_type, source_id)
            VALUES (trim(new.area || ': ' || new.summary || ' ' || new.patterns), 'knowledge', new.id);
        END;
        CREATE TRIGGER IF NOT EXISTS knowledge_au AFTER UPDATE OF area, summary, patterns ON knowledge BEGIN
            DELETE FROM memory_fts WHERE source_type = 'knowledge' AND source_id = old.id;
            INSERT INTO memory_fts(content, source_type, source_id)
            VALUES (trim(new.area || ': ' || new.summary || ' ' || new.patterns), 'knowledge', new.id);
        END;
        CREATE TRIGGER IF NOT EXISTS knowledge_ad AFTER DELETE ON knowledge BEGIN
            DELETE FROM memory_fts WHERE source_type = 'knowledge' AND source_id = old.id;
        END;

        CREATE TRIGGER IF NOT EXISTS facts_ai AFTER INSERT ON facts BEGIN
            INSERT INTO memory_fts(content, source_type, source_id)
            VALUES (new.fact, 'fact', new.id);
        END;
        CREATE TRIGGER IF NOT EXISTS facts_au AFTER UPDATE OF fact ON facts BEGIN
            DELETE FROM memory_fts WHERE source_type = 'fact' AND source_id = old.id;
            INSERT INTO memory_fts(content, source_type, source_id)
            VALUES (new.fact, 'fact', new.id);
        END;
        CREATE TRIGGER IF NOT EXISTS facts_ad AFTER DELETE ON facts BEGIN
            DELETE FROM memory_fts WHERE source_type = 'fact' AND source_id = old.id;
        END;
        """
    )
    conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
    conn.commit()
    return True


def initialize_metadata_schema(conn: sqlite3.Connection) -> bool:
    """Entity index and entry relations. Bootstraps the base schema first."""

    initialize_schema(conn)
    if has_table(conn, "entity_metadata") and has_table(conn, "entry_relations"):
        return False
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS entity_metadata (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            entity TEXT NOT NULL,
            entity_type TEXT NOT NULL,
            source_type TEXT NOT NULL,
            source_id INTEGER NOT NULL,
            created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f+00:00', 'now')),
            UNIQUE(entity, entity_type, source_type, source_id)
        );

        CREATE TABLE IF NOT EXISTS entry_relations (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            from_type TEXT NOT NULL,
            from_id INTEGER NOT NULL,
            to_type TEXT NOT NULL,
            to_id INTEGER NOT NULL,
            relation TEXT NOT NULL DEFAULT 'related_to',
            created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f+00:00', 'now')),
            UNIQUE(from_type, from_id, to_type, to_id, relation)
        );

        CREATE INDEX IF NOT EXISTS idx_entity_name ON entity_metadata(entity);
        CREATE INDEX IF NOT EXISTS idx_entity_type ON entity_metadata(entity_type);
        CREATE INDEX IF NOT EXISTS idx_entity_source ON entity_metadata(source_type, source_id);
        CREATE INDEX IF NOT EXISTS idx_relation_from ON entry_relations(from_type, from_id);
        CREATE INDEX IF NOT EXISTS idx_relation_to ON entry_relations(to_type, to_id);
        """
    )
    conn.commit()
    return True


def initialize_vector_schema(
    conn: sqlite3.Connection, meta: dict[str, str] | None = None
) -> bool:
    """Embedding columns, queue and the ``vector_meta`` marker table."""

    initialize_schema(conn)
    if has_table(conn, "vector_meta"):
        return False
    for table in SOURCE_TABLES.values():
        _ensure_column(conn, table, "embedding", "BLOB")
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS embedding_queue (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            source_type TEXT NOT NULL,
            source_id INTEGER NOT NULL,
            content TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            error_message TEXT,
            created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f+00:00', 'now')),
            processed_at TEXT,
            UNIQUE(source_type, source_id)
        );
        CREATE INDEX IF NOT EXISTS idx_embed_queue_status ON embedding_queue(status, created_at);

        CREATE TABLE IF NOT EXISTS vector_meta (
            key TEXT PRIMARY KEY,
            value TEXT,
            updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f+00:00', 'now'))
        );
        """
    )
    values = dict(DEFAULT_VECTOR_META)
    values.update(meta or {})
    conn.executemany(
        "INSERT OR IGNORE INTO vector_meta(key, value) VALUES (?, ?)",
        list(values.items()),
    )
    conn.commit()
    return True


def _ensure_column(conn: sqlite3.Connection, table: str, column: str, column_type: str) -> None:
    existing = {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}
    if column in existing:
        return
    conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {column_type}")


def read_vector_meta(conn: sqlite3.Connection) -> dict[str, str]:
    if not has_table(conn, "vector_meta"):
        return {}
    rows = conn.execute("SELECT key, value FROM vector_meta").fetchall()
    return {str(row["key"]): str(row["value"]) for row in rows}


def to_json(data: Any) -> str:
    if data is None:
        payload: Any = {}
    else:
        payload = data
    return json.dumps(payload, ensure_ascii=False)


def rows_to_dicts(rows: Iterable[sqlite3.Row]) -> list[dict[str, Any]]:
    return [dict(r) for r in rows]
