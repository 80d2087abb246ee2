from __future__ import annotations

from typing import TYPE_CHECKING

from . import search as store_search

if TYPE_CHECKING:
    from ._store import MemoryStore

CHARS_PER_TOKEN = 4
FACT_LIMIT = 5
KNOWLEDGE_LIMIT = 3
SESSION_LIMIT = 3
SNIPPET_LIMIT = 5


def _section(title: str, lines: list[str]) -> str:
    return f"## {title}\n" + "\n".join(lines) + "\n"


def build_context(store: MemoryStore, query: str, token_limit: int = 1500) -> str:
    """Assemble facts, matching code areas, recent work and search hits.

    Sections appear in that priority order and empty ones are skipped. The
    result is cut at ``token_limit * 4`` characters without regard to words.
    """

    conn = store.conn
    query = (query or "").strip()
    sections: list[str] = []

    facts = conn.execute(
        "SELECT fact FROM facts ORDER BY created_at DESC, id DESC LIMIT ?",
        (FACT_LIMIT,),
    ).fetchall()
    if facts:
        sections.append(_section("Project Facts", [f"- {row['fact']}" for row in facts]))

    if query:
        pattern = store_search.like_pattern(query)
        areas = conn.execute(
            """
            SELECT area, summary FROM knowledge
            WHERE area LIKE ? ESCAPE '\\' OR summary LIKE ? ESCAPE '\\'
            ORDER BY updated_at DESC
            LIMIT ?
            """,
            (pattern, pattern, KNOWLEDGE_LIMIT),
        ).fetchall()
        if areas:
            sections.append(
                _section(
                    "Relevant Code Areas",
                    [f"- {row['area']}: {row['summary']}" for row in areas],
                )
            )

    sessions = conn.execute(
        "SELECT summary FROM sessions ORDER BY created_at DESC, id DESC LIMIT ?",
        (SESSION_LIMIT,),
    ).fetchall()
    if sessions:
        sections.append(_section("Recent Work", [f"- {row['summary']}" for row in sessions]))

    if query:
        hits = store_search.search(store, query, limit=SNIPPET_LIMIT, highlight=("", ""))
        if hits:
            sections.append(_section("Related Context", [hit.text for hit in hits]))

    text = "\n".join(sections)
    return text[: max(0, token_limit) * CHARS_PER_TOKEN]
