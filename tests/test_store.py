from __future__ import annotations

import json
from pathlib import Path

import pytest

from repomem.config import RepomemConfig
from repomem.store import MemoryStore, MissingStoreError


def _store(root: Path, **kwargs) -> MemoryStore:
    config = RepomemConfig(auto_consolidate=False, embedding_disabled=True)
    return MemoryStore(root, config=config, **kwargs)


def test_store_lives_under_repo_root(tmp_path: Path) -> None:
    store = _store(tmp_path)
    try:
        assert store.db_path == tmp_path / ".repomem" / "memory.db"
        assert not store.exists()
        store.init()
        assert store.exists()
    finally:
        store.close()


def test_init_twice_is_noop(tmp_path: Path) -> None:
    store = _store(tmp_path)
    try:
        assert store.init() is True
        store.add_fact("uses postgres")
        assert store.init() is False
        assert store.stats()["facts"] == 1
    finally:
        store.close()


def test_add_session_normalizes_and_stores_lists(tmp_path: Path) -> None:
    store = _store(tmp_path)
    try:
        session_id = store.add_session(
            "I think the login flow works. I think the login flow works.",
            files='["src/auth/login.ts"]',
            tools=["edit", "bash"],
            topics="auth, login",
        )
        row = store.conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
    finally:
        store.close()

    assert row["summary"] == "the login flow works."
    assert json.loads(row["files_touched"]) == ["src/auth/login.ts"]
    assert row["tools_used"] == "edit,bash"
    assert row["topics"] == "auth,login"


def test_malformed_files_are_stored_as_empty_list(tmp_path: Path) -> None:
    store = _store(tmp_path)
    try:
        session_id = store.add_session("wired cache", files="not-json")
        row = store.conn.execute(
            "SELECT files_touched FROM sessions WHERE id = ?", (session_id,)
        ).fetchone()
    finally:
        store.close()

    assert json.loads(row["files_touched"]) == []


def test_add_knowledge_upserts_by_area(tmp_path: Path) -> None:
    store = _store(tmp_path)
    try:
        first = store.add_knowledge("auth", "session cookies", "middleware guards")
        second = store.add_knowledge("auth", "jwt tokens", "")
        rows = store.conn.execute("SELECT id, summary, patterns FROM knowledge").fetchall()
        hits = store.search("cookies")
    finally:
        store.close()

    assert first == second
    assert len(rows) == 1
    assert rows[0]["summary"] == "jwt tokens"
    assert rows[0]["patterns"] == ""
    assert hits == []


def test_blank_inputs_are_rejected(tmp_path: Path) -> None:
    store = _store(tmp_path)
    try:
        with pytest.raises(ValueError):
            store.add_session("   ")
        with pytest.raises(ValueError):
            store.add_knowledge(" ", "summary")
        with pytest.raises(ValueError):
            store.add_fact("")
    finally:
        store.close()
    assert not store.db_path.exists()


def test_fact_category_defaults_to_general(tmp_path: Path) -> None:
    store = _store(tmp_path)
    try:
        fact_id = store.add_fact("tests run with pytest", category=None)
        row = store.conn.execute("SELECT category FROM facts WHERE id = ?", (fact_id,)).fetchone()
    finally:
        store.close()

    assert row["category"] == "general"


def test_reads_on_missing_store(tmp_path: Path) -> None:
    store = _store(tmp_path)
    try:
        with pytest.raises(MissingStoreError):
            store.search("anything")
        with pytest.raises(MissingStoreError):
            store.recent()
        with pytest.raises(MissingStoreError):
            store.entity_search("anything")
        with pytest.raises(MissingStoreError):
            store.consolidate()
        with pytest.raises(MissingStoreError):
            store.embed()
        assert store.context("anything") == ""
        assert store.stats() is None
    finally:
        store.close()
    assert not store.db_path.exists()


def test_recent_returns_newest_first(tmp_path: Path) -> None:
    store = _store(tmp_path)
    try:
        ids = [store.add_session(f"session number {n}") for n in range(4)]
        recent = store.recent(limit=2)
    finally:
        store.close()

    assert [item["id"] for item in recent] == [ids[3], ids[2]]


def test_non_positive_limits_are_rejected(tmp_path: Path) -> None:
    store = _store(tmp_path)
    try:
        store.add_fact("uses postgres")
        with pytest.raises(ValueError):
            store.search("postgres", limit=0)
        with pytest.raises(ValueError):
            store.recent(limit=-1)
    finally:
        store.close()


def test_entities_indexed_when_metadata_enabled(tmp_path: Path) -> None:
    store = _store(tmp_path)
    try:
        store.init_metadata()
        session_id = store.add_session(
            "see src/auth/middleware.ts and ExpressSession and lodash-es",
            files=["src/auth/session.ts"],
        )
        rows = store.conn.execute(
            "SELECT entity, entity_type FROM entity_metadata WHERE source_id = ?",
            (session_id,),
        ).fetchall()
    finally:
        store.close()

    assert {(row["entity"], row["entity_type"]) for row in rows} == {
        ("src/auth/session.ts", "file"),
        ("src/auth/middleware.ts", "file"),
        ("ExpressSession", "concept"),
        ("lodash-es", "package"),
    }


def test_knowledge_upsert_replaces_entities(tmp_path: Path) -> None:
    store = _store(tmp_path)
    try:
        store.init_metadata()
        store.add_knowledge("ui", "built on react-dom")
        store.add_knowledge("ui", "built on preact-compat")
        names = [
            row["entity"]
            for row in store.conn.execute("SELECT entity FROM entity_metadata").fetchall()
        ]
    finally:
        store.close()

    assert names == ["preact-compat"]


def test_relations_round_trip(tmp_path: Path) -> None:
    store = _store(tmp_path)
    try:
        session_id = store.add_session("moved auth to middleware")
        fact_id = store.add_fact("auth lives in middleware")
        assert store.add_relation("session", session_id, "fact", fact_id) is True
        assert store.add_relation("session", session_id, "fact", fact_id) is False
        relations = store.relations("fact", fact_id)
    finally:
        store.close()

    assert len(relations) == 1
    assert relations[0]["from_type"] == "session"
    assert relations[0]["relation"] == "related_to"


def test_stats_reports_counts(tmp_path: Path) -> None:
    store = _store(tmp_path)
    try:
        store.add_session("wired cache")
        store.add_knowledge("cache", "lru in front of db")
        store.add_fact("uses redis")
        stats = store.stats()
    finally:
        store.close()

    assert stats is not None
    assert (stats["sessions"], stats["knowledge"], stats["facts"]) == (1, 1, 1)
    assert stats["entities"] is None
    assert stats["vector_enabled"] is False
    assert isinstance(stats["size_bytes"], int)


def test_entity_index_failure_keeps_primary_rows(tmp_path: Path, read_only_table) -> None:
    store = _store(tmp_path)
    try:
        store.init_metadata()
        read_only_table(store.conn, "entity_metadata")
        store.add_fact("pinned lodash-es")
        store.add_session("reworked src/auth/middleware.ts")
        store.add_knowledge("ui", "built on react-dom")
        knowledge_id = store.add_knowledge("ui", "built on preact-compat")
        stats = store.stats()
        hits = store.search("preact")
    finally:
        store.close()

    assert stats is not None
    assert (stats["sessions"], stats["knowledge"], stats["facts"]) == (1, 1, 1)
    assert stats["entities"] == 0
    assert [(hit.source_type, hit.source_id) for hit in hits] == [("knowledge", knowledge_id)]


def test_embedding_queue_failure_keeps_primary_rows(tmp_path: Path, read_only_table) -> None:
    store = _store(tmp_path)
    try:
        store.init_vector()
        read_only_table(store.conn, "embedding_queue")
        fact_id = store.add_fact("uses postgres")
        session_id = store.add_session("wired cache")
        fact = store.conn.execute("SELECT fact FROM facts WHERE id = ?", (fact_id,)).fetchone()
        session = store.conn.execute(
            "SELECT summary FROM sessions WHERE id = ?", (session_id,)
        ).fetchone()
    finally:
        store.close()

    assert fact["fact"] == "uses postgres"
    assert session["summary"] == "wired cache"
