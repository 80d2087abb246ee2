from __future__ import annotations

from pathlib import Path

import pytest

from repomem import db
from repomem.entities import Entity, extract_entities, parse_files, store_entities


def test_extracts_file_concept_and_package() -> None:
    entities = extract_entities("see src/auth/middleware.ts and ExpressSession and lodash-es")

    assert sorted(entities, key=lambda e: e.entity_type) == [
        Entity("ExpressSession", "concept"),
        Entity("src/auth/middleware.ts", "file"),
        Entity("lodash-es", "package"),
    ]


def test_listed_files_are_merged_with_inline_paths() -> None:
    entities = extract_entities("touched src/app.ts", ["src/app.ts", "README.md"])

    files = [e.name for e in entities if e.entity_type == "file"]
    assert files == ["src/app.ts", "README.md"]


def test_bare_filenames_without_directory_are_not_files() -> None:
    assert extract_entities("edited setup.py") == []


def test_parse_files_accepts_json_and_lists() -> None:
    assert parse_files('["a.py", "b/c.ts"]') == ["a.py", "b/c.ts"]
    assert parse_files(["a.py", "  "]) == ["a.py"]


@pytest.mark.parametrize("value", ["not json", '{"a": 1}', "", None, "42"])
def test_parse_files_malformed_is_empty(value: str | None) -> None:
    assert parse_files(value) == []


def test_store_entities_skips_without_metadata_schema(tmp_path: Path) -> None:
    conn = db.connect(tmp_path / "mem.db")
    try:
        db.initialize_schema(conn)
        assert store_entities(conn, "fact", 1, "uses lodash-es") == 0
    finally:
        conn.close()


def test_store_entities_ignores_duplicates(tmp_path: Path) -> None:
    conn = db.connect(tmp_path / "mem.db")
    try:
        db.initialize_metadata_schema(conn)
        store_entities(conn, "fact", 1, "uses lodash-es")
        store_entities(conn, "fact", 1, "uses lodash-es")
        count = conn.execute("SELECT COUNT(*) FROM entity_metadata").fetchone()[0]
    finally:
        conn.close()

    assert count == 1


def test_store_entities_rejects_unknown_source(tmp_path: Path) -> None:
    conn = db.connect(tmp_path / "mem.db")
    try:
        with pytest.raises(ValueError, match="unknown source type"):
            store_entities(conn, "memo", 1, "text")
    finally:
        conn.close()
