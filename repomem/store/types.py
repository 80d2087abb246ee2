from __future__ import annotations

from dataclasses import dataclass


@dataclass
class SearchResult:
    source_type: str
    source_id: int
    text: str
    score: float
    method: str = "fts"


@dataclass
class EntityResult:
    entity: str
    entity_type: str
    source_type: str
    source_id: int
    context: str
    created_at: str


@dataclass
class ConsolidationResult:
    merged: int = 0
    removed: int = 0
