"""Brute-force nearest-neighbour search over stored embeddings."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np

from vaultfinder.embedding.serialization import deserialize_embedding
from vaultfinder.index.storage import VaultStore
from vaultfinder.models import SearchCandidate
from vaultfinder.ranking.similarity import cosine_similarities


@dataclass(slots=True)
class _Snapshot:
    ids: np.ndarray
    paths: List[str]
    chunk_indexes: List[int]
    matrix: np.ndarray


class VectorSearcher:
    """Cosine-similarity search against every stored vector.

    With ``enable_cache`` the decoded vectors are kept in memory until
    :meth:`invalidate` is called; writes to the store are not noticed
    automatically.
    """

    def __init__(self, store: VaultStore, dimension: int, *, enable_cache: bool = True) -> None:
        self.store = store
        self.dimension = dimension
        self.enable_cache = enable_cache
        self._snapshot: Optional[_Snapshot] = None

    def _load(self) -> _Snapshot:
        rows = self.store.get_all_embeddings_for_search()
        matrix = np.zeros((len(rows), self.dimension), dtype=np.float32)
        for position, row in enumerate(rows):
            matrix[position] = deserialize_embedding(row.embedding, self.dimension)
        return _Snapshot(
            ids=np.array([row.id for row in rows], dtype=np.int64),
            paths=[row.path for row in rows],
            chunk_indexes=[row.chunk_index for row in rows],
            matrix=matrix,
        )

    def _get_snapshot(self) -> _Snapshot:
        if not self.enable_cache:
            return self._load()
        if self._snapshot is None:
            self._snapshot = self._load()
        return self._snapshot

    def invalidate(self) -> None:
        self._snapshot = None

    def get_embeddings(self, ids: List[int]) -> Dict[int, np.ndarray]:
        """Vectors for the given chunk ids (ids without a vector are omitted)."""
        snapshot = self._get_snapshot()
        wanted = set(ids)
        return {
            int(chunk_id): snapshot.matrix[position]
            for position, chunk_id in enumerate(snapshot.ids)
            if int(chunk_id) in wanted
        }

    def _rank(self, query: np.ndarray, snapshot: _Snapshot, mask: Optional[np.ndarray], limit: int) -> List[SearchCandidate]:
        query = np.asarray(query, dtype=np.float32).reshape(-1)
        if query.shape[0] != self.dimension:
            raise ValueError(f"Vector length mismatch: {query.shape[0]} vs {self.dimension}")
        positions = np.arange(len(snapshot.ids)) if mask is None else np.flatnonzero(mask)
        if limit <= 0 or positions.size == 0:
            return []

        scores = cosine_similarities(query, snapshot.matrix[positions])
        # Similarity descending, then row id ascending for equal scores.
        order = np.lexsort((snapshot.ids[positions], -scores))[:limit]
        results: List[SearchCandidate] = []
        for rank_position in order:
            position = int(positions[rank_position])
            similarity = float(scores[rank_position])
            results.append(
                SearchCandidate(
                    id=int(snapshot.ids[position]),
                    path=snapshot.paths[position],
                    chunk_index=snapshot.chunk_indexes[position],
                    text="",
                    vector_score=similarity,
                    combined_score=similarity,
                )
            )
        return results

    def search(self, query_embedding: np.ndarray, limit: int = 20) -> List[SearchCandidate]:
        return self._rank(query_embedding, self._get_snapshot(), None, limit)

    def search_by_path(self, query_embedding: np.ndarray, path: str, limit: int = 20) -> List[SearchCandidate]:
        snapshot = self._get_snapshot()
        mask = np.array([item == path for item in snapshot.paths], dtype=bool)
        return self._rank(query_embedding, snapshot, mask, limit)
