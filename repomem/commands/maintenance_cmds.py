from __future__ import annotations

import typer
from rich import print

from repomem.store import MissingStoreError

from .common import missing_store_exit


def init_cmd(*, store_from_root, root: str | None, metadata: bool, vector: bool) -> None:
    """Create the memory store (no-op for parts that already exist)."""

    store = store_from_root(root)
    try:
        created = store.init()
        if metadata:
            store.init_metadata()
        if vector:
            store.init_vector()
    finally:
        store.close()
    action = "Initialized" if created else "Found existing"
    print(f"{action} memory database at {store.db_path}")
    if metadata:
        print("- Entity metadata enabled")
    if vector:
        print("- Vector search enabled (run `repomem embed` to fill embeddings)")


def init_metadata_cmd(*, store_from_root, root: str | None) -> None:
    """Add entity and relation tables to the store."""

    store = store_from_root(root)
    try:
        created = store.init_metadata()
    finally:
        store.close()
    print("Entity metadata enabled" if created else "Entity metadata already enabled")


def init_vector_cmd(*, store_from_root, root: str | None) -> None:
    """Add embedding columns, queue and metadata to the store."""

    store = store_from_root(root)
    try:
        created = store.init_vector()
    finally:
        store.close()
    print("Vector search enabled" if created else "Vector search already enabled")


def consolidate_cmd(*, store_from_root, root: str | None) -> None:
    """Merge overlapping sessions and remove duplicate facts."""

    store = store_from_root(root)
    try:
        result = store.consolidate()
    except MissingStoreError as exc:
        raise missing_store_exit(store) from exc
    finally:
        store.close()
    print(f"Merged {result.merged} sessions, removed {result.removed} entries")


def embed_cmd(*, store_from_root, root: str | None) -> None:
    """Compute embeddings for every entry that lacks one."""

    store = store_from_root(root)
    try:
        result = store.embed()
    except MissingStoreError as exc:
        raise missing_store_exit(store) from exc
    except RuntimeError as exc:
        print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        store.close()
    print(
        f"Embedded {result['embedded']} entries "
        f"({result['queued']} queued, {result['failed']} failed)"
    )


def _format_bytes(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / 1024 / 1024:.1f} MB"


def stats_cmd(*, store_from_root, root: str | None) -> None:
    store = store_from_root(root)
    try:
        stats_data = store.stats()
    finally:
        store.close()
    if stats_data is None:
        print(f"No memory database found at {store.db_path}")
        return

    print("[bold]Memory store[/bold]")
    print(f"- Path: {stats_data['path']}")
    print(f"- Size: {_format_bytes(int(stats_data['size_bytes']))}")
    print(f"- Sessions: {stats_data['sessions']}")
    print(f"- Knowledge areas: {stats_data['knowledge']}")
    print(f"- Facts: {stats_data['facts']}")
    if stats_data["entities"] is None:
        print("- Entities: not enabled")
    else:
        print(f"- Entities: {stats_data['entities']}")

    if not stats_data["vector_enabled"]:
        print("- Vector search: not enabled")
        return
    coverage = stats_data["embeddings"]
    meta = stats_data["vector_meta"]
    print("\n[bold]Embeddings[/bold]")
    print(f"- Model: {meta.get('model', 'unknown')} ({meta.get('dimension', '?')} dims)")
    print(
        f"- Embedded: {coverage['session']} sessions, {coverage['knowledge']} knowledge, "
        f"{coverage['fact']} facts"
    )
    print(f"- Pending: {coverage['pending']}")
