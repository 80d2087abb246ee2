from __future__ import annotations

import typer
from rich import print
from rich.markup import escape

from repomem.store import MissingStoreError

from .common import compact_line, missing_store_exit


def add_session_cmd(
    *,
    store_from_root,
    root: str | None,
    summary: str,
    files: str | None,
    tools: str | None,
    topics: str | None,
) -> None:
    """Record a work session."""

    store = store_from_root(root)
    try:
        session_id = store.add_session(summary, files=files, tools=tools, topics=topics)
    except ValueError as exc:
        print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        store.close()
    print(f"Stored session {session_id}")


def add_knowledge_cmd(
    *, store_from_root, root: str | None, area: str, summary: str, patterns: str
) -> None:
    """Create or replace knowledge about a code area."""

    store = store_from_root(root)
    try:
        knowledge_id = store.add_knowledge(area, summary, patterns)
    except ValueError as exc:
        print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        store.close()
    print(f"Stored knowledge for {area} ({knowledge_id})")


def add_fact_cmd(*, store_from_root, root: str | None, fact: str, category: str) -> None:
    """Record a project fact."""

    store = store_from_root(root)
    try:
        fact_id = store.add_fact(fact, category)
    except ValueError as exc:
        print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        store.close()
    print(f"Stored fact {fact_id}")


def search_cmd(*, store_from_root, root: str | None, query: str, limit: int) -> None:
    """Keyword search across sessions, knowledge and facts."""

    store = store_from_root(root)
    try:
        results = store.search(query, limit=limit)
    except MissingStoreError as exc:
        raise missing_store_exit(store) from exc
    finally:
        store.close()
    if not results:
        print("No matches")
        return
    for item in results:
        print(
            f"{item.source_type} #{item.source_id}: {escape(item.text)}\n"
            f"score={item.score:.2f}\n"
        )


def vsearch_cmd(*, store_from_root, root: str | None, query: str, limit: int) -> None:
    """Semantic search; falls back to keyword search without embeddings."""

    store = store_from_root(root)
    try:
        results = store.vsearch(query, limit=limit)
    except MissingStoreError as exc:
        raise missing_store_exit(store) from exc
    finally:
        store.close()
    if not results:
        print("No matches")
        return
    for item in results:
        print(
            f"{item.source_type} #{item.source_id}: {escape(item.text)}\n"
            f"{item.method} score={item.score:.3f}\n"
        )


def entity_search_cmd(
    *, store_from_root, root: str | None, query: str, entity_type: str | None
) -> None:
    """Find entries mentioning an entity."""

    store = store_from_root(root)
    try:
        results = store.entity_search(query, entity_type)
    except MissingStoreError as exc:
        raise missing_store_exit(store) from exc
    finally:
        store.close()
    if results is None:
        print("[yellow]Entity metadata is not initialized.[/yellow]")
        print("Run `repomem init-metadata` to enable entity search.")
        return
    if not results:
        print("No matches")
        return
    for item in results:
        print(
            f"{escape(item.entity)} ({item.entity_type}) <- {item.source_type} #{item.source_id}: "
            f"{escape(compact_line(item.context))}"
        )


def recent_cmd(*, store_from_root, root: str | None, limit: int) -> None:
    """Show the most recent sessions."""

    store = store_from_root(root)
    try:
        sessions = store.recent(limit=limit)
    except MissingStoreError as exc:
        raise missing_store_exit(store) from exc
    finally:
        store.close()
    if not sessions:
        print("No sessions recorded yet")
        return
    for item in sessions:
        topics = f" ({item['topics']})" if item["topics"] else ""
        print(f"[{item['id']}] {item['created_at']}{escape(topics)}\n{escape(item['summary'])}\n")


def context_cmd(
    *, store_from_root, root: str | None, query: str, token_limit: int | None
) -> None:
    """Print a token-bounded context block for prompt injection."""

    store = store_from_root(root)
    try:
        text = store.context(query, token_limit=token_limit)
    finally:
        store.close()
    if text:
        typer.echo(text)
