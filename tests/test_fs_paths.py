from pathlib import Path

from repomem.fs_paths import embedding_config_path, find_repo_root, store_path


def test_find_repo_root_walks_up_to_git(tmp_path: Path) -> None:
    (tmp_path / ".git").mkdir()
    nested = tmp_path / "src" / "pkg"
    nested.mkdir(parents=True)
    assert find_repo_root(nested) == tmp_path.resolve()


def test_find_repo_root_accepts_git_file(tmp_path: Path) -> None:
    (tmp_path / ".git").write_text("gitdir: ../main/.git/worktrees/x\n")
    assert find_repo_root(tmp_path) == tmp_path.resolve()


def test_find_repo_root_falls_back_to_start(tmp_path: Path) -> None:
    start = tmp_path / "plain"
    start.mkdir()
    root = find_repo_root(start)
    # Nothing above tmp_path is expected to be a repository.
    assert root == start.resolve() or (root / ".git").exists()


def test_store_paths(tmp_path: Path) -> None:
    assert store_path(tmp_path) == tmp_path / ".repomem" / "memory.db"
    assert embedding_config_path(tmp_path, ".mem") == tmp_path / ".mem" / "embedding-config.json"
