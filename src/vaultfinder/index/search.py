"""Hybrid search interface: lexical + vector retrieval, fusion, decay and MMR."""

from __future__ import annotations

import logging
import re
from dataclasses import replace
from datetime import date
from typing import List, Optional

import numpy as np

from vaultfinder.config import SearchConfig
from vaultfinder.embedding.encoder import EmbeddingProvider
from vaultfinder.index.lexical import LexicalSearcher
from vaultfinder.index.storage import VaultStore
from vaultfinder.index.vector import VectorSearcher
from vaultfinder.models import CitedSearchResult, Provenance, SearchCandidate
from vaultfinder.ranking.decay import apply_temporal_decay
from vaultfinder.ranking.fusion import HybridScorer
from vaultfinder.ranking.mmr import mmr_rerank

LOGGER = logging.getLogger(__name__)

DATE_IN_PATH_RE = re.compile(r"(\d{4}[-/]\d{2}[-/]\d{2})")
QUOTE_LENGTH = 200


def extract_source_date(path: str, today: Optional[date] = None) -> str:
    """First ``YYYY-MM-DD`` (or ``YYYY/MM/DD``) in ``path``, else today's date."""
    match = DATE_IN_PATH_RE.search(path)
    if match:
        return match.group(1).replace("/", "-")
    return (today or date.today()).isoformat()


def quote_excerpt(text: str, length: int = QUOTE_LENGTH) -> str:
    return f"{text[:length]}..." if len(text) > length else text


class HybridSearcher:
    """High-level API to query the vault.

    ``search`` never raises: lexical failures yield no lexical candidates,
    embedding failures degrade to lexical-only ranking, and anything else
    results in an empty list.
    """

    def __init__(
        self,
        store: VaultStore,
        lexical: LexicalSearcher,
        vector: Optional[VectorSearcher] = None,
        embedder: Optional[EmbeddingProvider] = None,
        config: Optional[SearchConfig] = None,
    ) -> None:
        self.store = store
        self.lexical = lexical
        self.vector = vector
        self.embedder = embedder
        self.config = config or SearchConfig()
        self.scorer = HybridScorer(self.config.fts_weight, self.config.vec_weight)

    def _lexical_candidates(self, query: str, path: Optional[str], limit: int) -> List[SearchCandidate]:
        try:
            if path:
                return self.lexical.search_by_path(query, path, limit)
            return self.lexical.search(query, limit)
        except Exception as exc:
            LOGGER.warning("Lexical search failed: %s", exc)
            return []

    def _vector_candidates(
        self, query: str, path: Optional[str], limit: int
    ) -> tuple[List[SearchCandidate], Optional[np.ndarray]]:
        if self.embedder is None or self.vector is None:
            return [], None
        try:
            query_embedding = self.embedder.embed_query(query)
            if path:
                results = self.vector.search_by_path(query_embedding, path, limit)
            else:
                results = self.vector.search(query_embedding, limit)
            return results, query_embedding
        except Exception as exc:
            LOGGER.warning("Vector search unavailable, using lexical results only: %s", exc)
            return [], None

    def _hydrate(self, candidates: List[SearchCandidate]) -> List[SearchCandidate]:
        missing = [candidate.id for candidate in candidates if not candidate.text]
        if not missing:
            return candidates
        chunks = self.store.get_chunks_by_ids(missing)
        hydrated = []
        for candidate in candidates:
            chunk = chunks.get(candidate.id)
            if chunk is not None and not candidate.text:
                candidate = replace(candidate, text=chunk.text, chunk_index=chunk.chunk_index)
            hydrated.append(candidate)
        return hydrated

    def search(self, query: str, *, limit: int = 10, path: Optional[str] = None) -> List[SearchCandidate]:
        try:
            limit = max(0, limit)
            max_candidates = max(1, self.config.max_candidates)

            lexical = self._lexical_candidates(query, path, max_candidates)
            vector, query_embedding = self._vector_candidates(query, path, max_candidates)
            candidates = self.scorer.fuse(lexical, vector)
            if not candidates:
                return []

            if self.config.temporal_decay:
                metadata = self.store.get_chunk_metadata(c.id for c in candidates)
                candidates = apply_temporal_decay(
                    candidates,
                    metadata,
                    self.config.decay_half_life_days,
                    self.config.decay_floor,
                )

            if query_embedding is not None and self.vector is not None:
                embeddings = self.vector.get_embeddings([c.id for c in candidates])
                candidates = mmr_rerank(candidates, embeddings, self.config.mmr_lambda, limit)
            else:
                candidates = candidates[:limit]

            return self._hydrate(candidates)
        except Exception:
            LOGGER.exception("Search failed for query %r", query)
            return []

    def search_with_citations(
        self, query: str, *, limit: int = 10, path: Optional[str] = None
    ) -> List[CitedSearchResult]:
        today = date.today()
        return [
            CitedSearchResult(
                candidate=candidate,
                provenance=Provenance(
                    source_file=candidate.path,
                    source_date=extract_source_date(candidate.path, today),
                    original_quote=quote_excerpt(candidate.text),
                ),
            )
            for candidate in self.search(query, limit=limit, path=path)
        ]
