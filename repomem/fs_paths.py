from __future__ import annotations

from pathlib import Path

STORE_FILENAME = "memory.db"
EMBEDDING_CONFIG_FILENAME = "embedding-config.json"


def find_repo_root(start: str | Path) -> Path:
    """Return the nearest ancestor of ``start`` holding a ``.git`` entry.

    Worktrees and submodules carry a ``.git`` file rather than a directory, so
    either counts. Falls back to ``start`` itself when nothing is found.
    """

    origin = Path(start).expanduser().resolve()
    for candidate in (origin, *origin.parents):
        if (candidate / ".git").exists():
            return candidate
    return origin


def memory_dir(repo_root: str | Path, dirname: str = ".repomem") -> Path:
    return Path(repo_root).expanduser() / dirname


def store_path(repo_root: str | Path, dirname: str = ".repomem") -> Path:
    return memory_dir(repo_root, dirname) / STORE_FILENAME


def embedding_config_path(repo_root: str | Path, dirname: str = ".repomem") -> Path:
    return memory_dir(repo_root, dirname) / EMBEDDING_CONFIG_FILENAME
