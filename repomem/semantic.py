from __future__ import annotations

import json
import logging
import math
import struct
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Protocol

import sqlite_vec

from .config import RepomemConfig

logger = logging.getLogger(__name__)


class EmbeddingClient(Protocol):
    model: str

    def embed(self, texts: Iterable[str]) -> list[list[float]]: ...


class _FastEmbedClient:
    provider = "fastembed"

    def __init__(self, model: str) -> None:
        try:
            from fastembed import TextEmbedding
        except Exception as exc:  # pragma: no cover
            raise RuntimeError("fastembed is required for semantic search") from exc
        self.model = model
        self._embedder = TextEmbedding(model_name=model)

    def embed(self, texts: Iterable[str]) -> list[list[float]]:
        embeddings = self._embedder.embed(list(texts))
        return [[float(x) for x in vec] for vec in embeddings]


_CLIENTS: dict[str, _FastEmbedClient] = {}


def get_embedding_client(config: RepomemConfig) -> EmbeddingClient | None:
    if config.embedding_disabled:
        return None
    client = _CLIENTS.get(config.embedding_model)
    if client is not None:
        return client
    try:
        client = _FastEmbedClient(model=config.embedding_model)
    except Exception as exc:
        logger.warning("embedding client unavailable", exc_info=exc)
        return None
    _CLIENTS[config.embedding_model] = client
    return client


def setup_embeddings(config_path: Path, client: EmbeddingClient) -> dict[str, object]:
    """One-time provider setup: probe the model and record what it produces."""

    probe = client.embed(["repomem embedding probe"])
    dimension = len(probe[0]) if probe else 0
    settings: dict[str, object] = {
        "provider": getattr(client, "provider", type(client).__name__),
        "model": client.model,
        "dimension": dimension,
    }
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(settings, indent=2) + "\n")
    return settings


def serialize_vector(vector: Sequence[float]) -> bytes:
    return sqlite_vec.serialize_float32(list(vector))


def deserialize_vector(blob: bytes | None) -> list[float] | None:
    if not blob or len(blob) % 4:
        return None
    return list(struct.unpack(f"<{len(blob) // 4}f", blob))


def cosine_similarity(a: Sequence[float] | None, b: Sequence[float] | None) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)
