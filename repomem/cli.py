from __future__ import annotations

import logging

import typer

from . import __version__
from .commands.common import store_from_root
from .commands.maintenance_cmds import (
    consolidate_cmd,
    embed_cmd,
    init_cmd,
    init_metadata_cmd,
    init_vector_cmd,
    stats_cmd,
)
from .commands.memory_cmds import (
    add_fact_cmd,
    add_knowledge_cmd,
    add_session_cmd,
    context_cmd,
    entity_search_cmd,
    recent_cmd,
    search_cmd,
    vsearch_cmd,
)
from .store import MemoryStore

app = typer.Typer(help="repomem: persistent per-repository memory for coding assistants")

ROOT_HELP = "Repository root (defaults to the nearest git root)"


def _store(root: str | None) -> MemoryStore:
    return store_from_root(root)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log to stderr"),
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show version"
    ),
) -> None:
    if verbose:
        logging.basicConfig(
            level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
        )


@app.command()
def init(
    metadata: bool = typer.Option(False, help="Also enable entity metadata"),
    vector: bool = typer.Option(False, help="Also enable vector search"),
    root: str = typer.Option(None, help=ROOT_HELP),
) -> None:
    """Create the memory store (no-op if it already exists)."""
    init_cmd(store_from_root=_store, root=root, metadata=metadata, vector=vector)


@app.command("init-metadata")
def init_metadata(root: str = typer.Option(None, help=ROOT_HELP)) -> None:
    """Enable entity metadata and relations."""
    init_metadata_cmd(store_from_root=_store, root=root)


@app.command("init-vector")
def init_vector(root: str = typer.Option(None, help=ROOT_HELP)) -> None:
    """Enable vector search tables."""
    init_vector_cmd(store_from_root=_store, root=root)


@app.command("add-session")
def add_session(
    summary: str,
    files: str = typer.Option(None, help="Files touched, as a JSON array"),
    tools: str = typer.Option(None, help="Comma-separated tools used"),
    topics: str = typer.Option(None, help="Comma-separated topics"),
    root: str = typer.Option(None, help=ROOT_HELP),
) -> None:
    """Record a work session."""
    add_session_cmd(
        store_from_root=_store,
        root=root,
        summary=summary,
        files=files,
        tools=tools,
        topics=topics,
    )


@app.command("add-knowledge")
def add_knowledge(
    area: str,
    summary: str,
    patterns: str = typer.Option("", help="Notable patterns in this area"),
    root: str = typer.Option(None, help=ROOT_HELP),
) -> None:
    """Create or replace knowledge about a code area."""
    add_knowledge_cmd(
        store_from_root=_store, root=root, area=area, summary=summary, patterns=patterns
    )


@app.command("add-fact")
def add_fact(
    fact: str,
    category: str = typer.Option("general", help="Fact category"),
    root: str = typer.Option(None, help=ROOT_HELP),
) -> None:
    """Record a project fact."""
    add_fact_cmd(store_from_root=_store, root=root, fact=fact, category=category)


@app.command()
def search(
    query: str,
    limit: int = typer.Option(10, min=1, help="Max results"),
    root: str = typer.Option(None, help=ROOT_HELP),
) -> None:
    """Keyword search across sessions, knowledge and facts."""
    search_cmd(store_from_root=_store, root=root, query=query, limit=limit)


@app.command()
def vsearch(
    query: str,
    limit: int = typer.Option(5, min=1, help="Max results"),
    root: str = typer.Option(None, help=ROOT_HELP),
) -> None:
    """Semantic search (falls back to keyword search)."""
    vsearch_cmd(store_from_root=_store, root=root, query=query, limit=limit)


@app.command("entity-search")
def entity_search(
    query: str,
    entity_type: str = typer.Option(None, "--type", help="file, package or concept"),
    root: str = typer.Option(None, help=ROOT_HELP),
) -> None:
    """Find entries that mention an entity."""
    entity_search_cmd(store_from_root=_store, root=root, query=query, entity_type=entity_type)


@app.command()
def recent(
    limit: int = typer.Option(5, min=1, help="Max sessions"),
    root: str = typer.Option(None, help=ROOT_HELP),
) -> None:
    """Show recent sessions."""
    recent_cmd(store_from_root=_store, root=root, limit=limit)


@app.command()
def context(
    query: str = typer.Argument("", help="Topic to gather context for"),
    token_limit: int = typer.Option(None, min=1, help="Approx token budget"),
    root: str = typer.Option(None, help=ROOT_HELP),
) -> None:
    """Print a context block for prompt injection."""
    context_cmd(store_from_root=_store, root=root, query=query, token_limit=token_limit)


@app.command()
def consolidate(root: str = typer.Option(None, help=ROOT_HELP)) -> None:
    """Merge overlapping sessions and drop duplicate facts."""
    consolidate_cmd(store_from_root=_store, root=root)


@app.command()
def embed(root: str = typer.Option(None, help=ROOT_HELP)) -> None:
    """Embed every entry that has no embedding yet."""
    embed_cmd(store_from_root=_store, root=root)


@app.command()
def stats(root: str = typer.Option(None, help=ROOT_HELP)) -> None:
    """Show store statistics."""
    stats_cmd(store_from_root=_store, root=root)


if __name__ == "__main__":
    app()
