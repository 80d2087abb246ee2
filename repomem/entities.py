from __future__ import annotations

import json
import logging
import re
import sqlite3
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass

from . import db

logger = logging.getLogger(__name__)

SOURCE_TYPES = ("session", "knowledge", "fact")

_PATH_RE = re.compile(r"[A-Za-z0-9_./-]+\.[A-Za-z]{1,6}")
_CONCEPT_RE = re.compile(r"\b[A-Z][a-z]+(?:[A-Z][a-z]+)+\b")
_PACKAGE_RE = re.compile(r"\b[a-z][a-z0-9]+-[a-z][a-z0-9-]+\b")


@dataclass(frozen=True)
class Entity:
    name: str
    entity_type: str


Matcher = Callable[[str, Sequence[str]], Iterable[Entity]]


def parse_files(value: str | Sequence[str] | None) -> list[str]:
    """Accept a list of paths or a JSON array string; anything else is empty."""

    if not value:
        return []
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return []
    else:
        parsed = value
    if not isinstance(parsed, list | tuple):
        return []
    items: list[str] = []
    for item in parsed:
        if isinstance(item, str) and item.strip():
            items.append(item.strip())
    return items


def _listed_files(text: str, files: Sequence[str]) -> Iterable[Entity]:
    return (Entity(path, "file") for path in files)


def _inline_paths(text: str, files: Sequence[str]) -> Iterable[Entity]:
    return (Entity(match, "file") for match in _PATH_RE.findall(text) if "/" in match)


def _concepts(text: str, files: Sequence[str]) -> Iterable[Entity]:
    return (Entity(match, "concept") for match in _CONCEPT_RE.findall(text))


def _packages(text: str, files: Sequence[str]) -> Iterable[Entity]:
    return (Entity(match, "package") for match in _PACKAGE_RE.findall(text))


MATCHERS: tuple[Matcher, ...] = (_listed_files, _inline_paths, _concepts, _packages)


def extract_entities(text: str, files: Sequence[str] = ()) -> list[Entity]:
    seen: set[Entity] = set()
    entities: list[Entity] = []
    for matcher in MATCHERS:
        for entity in matcher(text or "", files):
            if entity in seen:
                continue
            seen.add(entity)
            entities.append(entity)
    return entities


def store_entities(
    conn: sqlite3.Connection,
    source_type: str,
    source_id: int,
    text: str,
    files: str | Sequence[str] | None = None,
) -> int:
    """Index entities for one source row; silently skipped without the entity schema.

    Failures are logged and swallowed: the source row is already committed and
    the index can always be rebuilt from it.
    """

    if source_type not in SOURCE_TYPES:
        raise ValueError(f"unknown source type: {source_type}")
    try:
        if not db.has_table(conn, "entity_metadata"):
            return 0
        entities = extract_entities(text, parse_files(files))
        if not entities:
            return 0
        with conn:
            conn.executemany(
                """
                INSERT OR IGNORE INTO entity_metadata(entity, entity_type, source_type, source_id)
                VALUES (?, ?, ?, ?)
                """,
                [(e.name, e.entity_type, source_type, source_id) for e in entities],
            )
        return len(entities)
    except sqlite3.Error as exc:
        logger.debug("entity extraction failed for %s %s", source_type, source_id, exc_info=exc)
        return 0


def delete_entities(conn: sqlite3.Connection, source_type: str, source_ids: Iterable[int]) -> None:
    """Drop the entity rows of deleted sources. Caller owns the transaction."""

    ids = [int(source_id) for source_id in source_ids]
    if not ids or not db.has_table(conn, "entity_metadata"):
        return
    conn.executemany(
        "DELETE FROM entity_metadata WHERE source_type = ? AND source_id = ?",
        [(source_type, source_id) for source_id in ids],
    )
