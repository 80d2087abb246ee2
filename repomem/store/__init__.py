from __future__ import annotations

from ._store import MemoryStore, MissingStoreError
from .consolidate import CONSOLIDATION_WORKER, ConsolidationWorker
from .types import ConsolidationResult, EntityResult, SearchResult

__all__ = [
    "CONSOLIDATION_WORKER",
    "ConsolidationResult",
    "ConsolidationWorker",
    "EntityResult",
    "MemoryStore",
    "MissingStoreError",
    "SearchResult",
]
