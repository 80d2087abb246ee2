"""Merge overlapping sessions and drop duplicate facts.

Sessions whose topic sets overlap by more than the configured ratio are folded
together: walking newest-first, the session met first absorbs the other's
summary and the other is deleted. Facts in the same category where one text
contains the other keep only the longer text.

Every merge (summary rewrite plus deletion of the absorbed row) commits as one
transaction, so a concurrent reader sees either both halves or neither.
"""

from __future__ import annotations

import datetime as dt
import logging
import queue
import sqlite3
import threading
import time
from collections import defaultdict
from pathlib import Path
from typing import TYPE_CHECKING

from .. import db
from ..entities import delete_entities, store_entities
from ..normalize import normalize
from .types import ConsolidationResult
from .vectors import delete_queue_items, requeue_source

if TYPE_CHECKING:
    from ..config import RepomemConfig
    from ._store import MemoryStore

logger = logging.getLogger(__name__)


def topic_set(topics: str | None) -> set[str]:
    return {topic.strip() for topic in (topics or "").split(",") if topic.strip()}


def topics_overlap(a: set[str], b: set[str], threshold: float) -> bool:
    if not a or not b:
        return False
    return len(a & b) / min(len(a), len(b)) > threshold


def _drop_secondary(conn: sqlite3.Connection, source_type: str, source_ids: list[int]) -> None:
    try:
        delete_entities(conn, source_type, source_ids)
        if db.has_table(conn, "entry_relations"):
            conn.executemany(
                """
                DELETE FROM entry_relations
                WHERE (from_type = ? AND from_id = ?) OR (to_type = ? AND to_id = ?)
                """,
                [(source_type, sid, source_type, sid) for sid in source_ids],
            )
        delete_queue_items(conn, source_type, source_ids)
    except sqlite3.Error as exc:
        logger.warning("secondary cleanup failed for %s %s", source_type, source_ids, exc_info=exc)


def _apply_merge(conn: sqlite3.Connection, keep_id: int, summary: str, drop_id: int) -> bool:
    with conn:
        cur = conn.execute("DELETE FROM sessions WHERE id = ?", (drop_id,))
        if cur.rowcount == 0:
            # Already gone (another consolidation got there first).
            return False
        conn.execute("UPDATE sessions SET summary = ? WHERE id = ?", (summary, keep_id))
        _drop_secondary(conn, "session", [drop_id])
    return True


def merge_sessions(conn: sqlite3.Connection, threshold: float) -> int:
    rows = conn.execute(
        "SELECT id, summary, topics, files_touched FROM sessions ORDER BY created_at DESC, id DESC"
    ).fetchall()
    sessions = [(int(row["id"]), topic_set(row["topics"])) for row in rows]
    summaries = {int(row["id"]): row["summary"] or "" for row in rows}
    files = {int(row["id"]): row["files_touched"] for row in rows}
    deleted: set[int] = set()
    absorbers: set[int] = set()
    merged = 0
    for index, (id_a, topics_a) in enumerate(sessions):
        if id_a in deleted or not topics_a:
            continue
        for id_b, topics_b in sessions[index + 1 :]:
            if id_b in deleted or not topics_overlap(topics_a, topics_b, threshold):
                continue
            combined = normalize(f"{summaries[id_a]} {summaries[id_b]}")
            if not _apply_merge(conn, id_a, combined, id_b):
                deleted.add(id_b)
                continue
            summaries[id_a] = combined
            deleted.add(id_b)
            absorbers.add(id_a)
            merged += 1
    for session_id in absorbers:
        store_entities(conn, "session", session_id, summaries[session_id], files[session_id])
        requeue_source(conn, "session", session_id)
    return merged


def dedupe_facts(conn: sqlite3.Connection) -> int:
    rows = conn.execute("SELECT id, fact, category FROM facts ORDER BY id ASC").fetchall()
    by_category: dict[str, list[tuple[int, str]]] = defaultdict(list)
    for row in rows:
        by_category[row["category"]].append((int(row["id"]), row["fact"] or ""))
    to_delete: set[int] = set()
    for facts in by_category.values():
        for index, (id_a, text_a) in enumerate(facts):
            for id_b, text_b in facts[index + 1 :]:
                if text_a not in text_b and text_b not in text_a:
                    continue
                to_delete.add(id_b if len(text_a) >= len(text_b) else id_a)
    if not to_delete:
        return 0
    ids = sorted(to_delete)
    with conn:
        conn.executemany("DELETE FROM facts WHERE id = ?", [(fact_id,) for fact_id in ids])
        _drop_secondary(conn, "fact", ids)
    return len(ids)


def consolidate(conn: sqlite3.Connection, config: RepomemConfig) -> ConsolidationResult:
    merged = merge_sessions(conn, config.topic_overlap_threshold)
    facts_removed = dedupe_facts(conn)
    logger.info("consolidation: %s sessions merged, %s facts removed", merged, facts_removed)
    # Each merge deletes exactly one session.
    return ConsolidationResult(merged=merged, removed=merged + facts_removed)


def should_consolidate(conn: sqlite3.Connection, config: RepomemConfig) -> bool:
    cutoff = dt.datetime.now(dt.UTC) - dt.timedelta(days=config.consolidate_window_days)
    row = conn.execute(
        "SELECT COUNT(*) FROM sessions WHERE created_at > ?",
        (cutoff.isoformat(),),
    ).fetchone()
    return bool(row) and int(row[0]) >= config.consolidate_min_sessions


class ConsolidationWorker:
    """Runs consolidation jobs on a daemon thread; callers never wait on it.

    At most one job per store file is queued at a time. Each job opens its own
    connection, since SQLite connections stay on the thread that made them.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._jobs: queue.Queue[tuple[Path, Path, RepomemConfig]] = queue.Queue()
        self._pending: set[Path] = set()
        self._thread: threading.Thread | None = None

    def submit(self, store: MemoryStore) -> bool:
        key = store.db_path.resolve()
        with self._lock:
            if key in self._pending:
                return False
            self._pending.add(key)
            self._jobs.put((key, store.repo_root, store.config))
            if self._thread is None or not self._thread.is_alive():
                self._thread = threading.Thread(
                    target=self._run, name="repomem-consolidate", daemon=True
                )
                self._thread.start()
        return True

    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def wait(self, timeout: float | None = None) -> bool:
        deadline = None if timeout is None else time.monotonic() + timeout
        while self.pending():
            if deadline is not None and time.monotonic() >= deadline:
                return False
            time.sleep(0.02)
        return True

    def _run(self) -> None:
        while True:
            try:
                key, repo_root, config = self._jobs.get(timeout=1.0)
            except queue.Empty:
                with self._lock:
                    if self._jobs.empty():
                        self._thread = None
                        return
                continue
            try:
                self._consolidate(repo_root, config)
            except Exception as exc:
                logger.exception("background consolidation failed for %s", key, exc_info=exc)
            finally:
                with self._lock:
                    self._pending.discard(key)
                self._jobs.task_done()

    @staticmethod
    def _consolidate(repo_root: Path, config: RepomemConfig) -> None:
        from ._store import MemoryStore

        store = MemoryStore(repo_root, config=config)
        try:
            store.consolidate()
        finally:
            store.close()


CONSOLIDATION_WORKER = ConsolidationWorker()
