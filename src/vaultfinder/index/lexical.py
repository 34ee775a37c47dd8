"""Full-text search over chunk content (SQLite FTS5, BM25 ranking)."""

from __future__ import annotations

import logging
import sqlite3
from typing import List, Optional

from vaultfinder.index.storage import VaultStore
from vaultfinder.models import HighlightedCandidate, SearchCandidate

LOGGER = logging.getLogger(__name__)

_BASE_QUERY = """
    SELECT mc.id, mc.path, mc.chunk_index, mc.content,
           bm25(chunks_fts) AS fts_score{extra}
    FROM chunks_fts
    JOIN markdown_chunks mc ON mc.id = chunks_fts.rowid
    WHERE chunks_fts MATCH ?{path_filter}
    ORDER BY bm25(chunks_fts), mc.id
    LIMIT ?
"""


def escape_fts_query(query: str) -> str:
    """Quote every whitespace-separated term so FTS operators are matched literally."""
    terms = query.replace('"', '""').split()
    return " ".join(f'"{term}"' for term in terms)


def _to_candidate(row: sqlite3.Row) -> SearchCandidate:
    # bm25() is lower-is-better; flip it so higher is better like every other score.
    score = -float(row["fts_score"])
    return SearchCandidate(
        id=row["id"],
        path=row["path"],
        chunk_index=row["chunk_index"],
        text=row["content"],
        lexical_score=score,
        combined_score=score,
    )


class LexicalSearcher:
    """BM25-ranked keyword search. Bad or empty queries yield no results."""

    def __init__(self, store: VaultStore) -> None:
        self.store = store

    def _run(self, query: str, limit: int, path: Optional[str] = None, highlight: bool = False) -> List[sqlite3.Row]:
        escaped = escape_fts_query(query)
        if not escaped or limit <= 0:
            return []
        sql = _BASE_QUERY.format(
            extra=",\n           highlight(chunks_fts, 0, '<mark>', '</mark>') AS highlighted" if highlight else "",
            path_filter=" AND mc.path = ?" if path is not None else "",
        )
        params = (escaped, path, limit) if path is not None else (escaped, limit)
        try:
            return self.store.connection.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            LOGGER.debug("Lexical query %r failed: %s", query, exc)
            return []

    def search(self, query: str, limit: int = 20) -> List[SearchCandidate]:
        return [_to_candidate(row) for row in self._run(query, limit)]

    def search_by_path(self, query: str, path: str, limit: int = 20) -> List[SearchCandidate]:
        return [_to_candidate(row) for row in self._run(query, limit, path=path)]

    def highlight(self, query: str, limit: int = 20) -> List[HighlightedCandidate]:
        return [
            HighlightedCandidate(candidate=_to_candidate(row), highlighted=row["highlighted"])
            for row in self._run(query, limit, highlight=True)
        ]
