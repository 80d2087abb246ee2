from __future__ import annotations

from pathlib import Path

from typer.testing import CliRunner

from repomem import __version__
from repomem.cli import app

runner = CliRunner()


def _invoke(root: Path, *args: str):
    return runner.invoke(app, [*args, "--root", str(root)])


def test_root_help_lists_commands() -> None:
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for command in (
        "init",
        "init-metadata",
        "init-vector",
        "add-session",
        "add-knowledge",
        "add-fact",
        "search",
        "vsearch",
        "entity-search",
        "recent",
        "context",
        "consolidate",
        "embed",
        "stats",
    ):
        assert command in result.stdout


def test_version_flag() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_init_with_extensions(tmp_path: Path) -> None:
    result = _invoke(tmp_path, "init", "--metadata", "--vector")
    assert result.exit_code == 0
    assert "Initialized memory database" in result.stdout
    assert (tmp_path / ".repomem" / "memory.db").exists()

    again = _invoke(tmp_path, "init")
    assert again.exit_code == 0
    assert "Found existing" in again.stdout


def test_add_and_search(tmp_path: Path) -> None:
    added = _invoke(tmp_path, "add-fact", "database is postgres", "--category", "infra")
    assert added.exit_code == 0
    assert _invoke(tmp_path, "add-knowledge", "db", "migrations via alembic").exit_code == 0

    result = _invoke(tmp_path, "search", "postgres")

    assert result.exit_code == 0
    assert "fact #1" in result.stdout
    assert "postgres" in result.stdout


def test_search_missing_store_exits_1(tmp_path: Path) -> None:
    result = _invoke(tmp_path, "search", "anything")
    assert result.exit_code == 1
    assert "No memory database found" in result.stdout
    assert not (tmp_path / ".repomem").exists()


def test_recent_missing_store_exits_1(tmp_path: Path) -> None:
    result = _invoke(tmp_path, "recent")
    assert result.exit_code == 1
    assert "No memory database found" in result.stdout


def test_stats_missing_store_is_not_an_error(tmp_path: Path) -> None:
    result = _invoke(tmp_path, "stats")
    assert result.exit_code == 0
    assert "No memory database found" in result.stdout


def test_stats_reports_counts(tmp_path: Path) -> None:
    _invoke(tmp_path, "add-session", "wired the cache", "--topics", "cache")
    result = _invoke(tmp_path, "stats")
    assert result.exit_code == 0
    assert "Sessions: 1" in result.stdout
    assert "Entities: not enabled" in result.stdout


def test_add_session_rejects_blank_summary(tmp_path: Path) -> None:
    result = _invoke(tmp_path, "add-session", "   ")
    assert result.exit_code == 1
    assert "summary is required" in result.stdout


def test_entity_search_without_metadata(tmp_path: Path) -> None:
    _invoke(tmp_path, "add-fact", "pinned lodash-es")
    result = _invoke(tmp_path, "entity-search", "lodash")
    assert result.exit_code == 0
    assert "repomem init-metadata" in result.stdout


def test_entity_search_with_metadata(tmp_path: Path) -> None:
    _invoke(tmp_path, "init-metadata")
    _invoke(tmp_path, "add-fact", "pinned lodash-es")
    result = _invoke(tmp_path, "entity-search", "lodash", "--type", "package")
    assert result.exit_code == 0
    assert "lodash-es (package)" in result.stdout


def test_context_prints_block(tmp_path: Path) -> None:
    _invoke(tmp_path, "add-fact", "tests run with pytest")
    result = _invoke(tmp_path, "context", "pytest", "--token-limit", "200")
    assert result.exit_code == 0
    assert "## Project Facts" in result.stdout


def test_consolidate_reports_counts(tmp_path: Path) -> None:
    _invoke(tmp_path, "add-fact", "uses postgres")
    _invoke(tmp_path, "add-fact", "uses postgres for storage")
    result = _invoke(tmp_path, "consolidate")
    assert result.exit_code == 0
    assert "removed 1 entries" in result.stdout


def test_embed_without_provider_exits_1(tmp_path: Path) -> None:
    _invoke(tmp_path, "add-fact", "uses postgres")
    result = _invoke(tmp_path, "embed")
    assert result.exit_code == 1
    assert "No embedding provider" in result.stdout


def test_vsearch_falls_back_to_keyword(tmp_path: Path) -> None:
    _invoke(tmp_path, "init", "--vector")
    _invoke(tmp_path, "add-fact", "uses postgres")
    result = _invoke(tmp_path, "vsearch", "postgres")
    assert result.exit_code == 0
    assert "fts score" in result.stdout


def test_embed_missing_store_exits_1(tmp_path: Path) -> None:
    result = _invoke(tmp_path, "embed")
    assert result.exit_code == 1
    assert "No memory database found" in result.stdout
    assert not (tmp_path / ".repomem").exists()
