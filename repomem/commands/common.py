from __future__ import annotations

import os

import typer
from rich import print

from repomem.fs_paths import find_repo_root
from repomem.store import MemoryStore


def store_from_root(root: str | None) -> MemoryStore:
    return MemoryStore(root or find_repo_root(os.getcwd()))


def missing_store_exit(store: MemoryStore) -> typer.Exit:
    print(f"[red]No memory database found at {store.db_path}[/red]")
    print("Run `repomem init` first.")
    return typer.Exit(code=1)


def compact_line(text: str, limit: int = 120) -> str:
    flat = " ".join(text.split())
    if len(flat) <= limit:
        return flat
    return flat[: limit - 3].rstrip() + "..."
