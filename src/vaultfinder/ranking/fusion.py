"""Reciprocal rank fusion of lexical and vector result lists."""

from __future__ import annotations

from dataclasses import replace
from typing import Dict, List, Sequence

from vaultfinder.models import SearchCandidate

RRF_K = 60


class HybridScorer:
    """Each list position ``r`` (1-based) contributes ``weight / (RRF_K + r)``."""

    def __init__(self, fts_weight: float = 0.3, vec_weight: float = 0.7) -> None:
        self.fts_weight = fts_weight
        self.vec_weight = vec_weight

    def fuse(
        self,
        lexical: Sequence[SearchCandidate],
        vector: Sequence[SearchCandidate],
    ) -> List[SearchCandidate]:
        merged: Dict[int, SearchCandidate] = {}
        scores: Dict[int, float] = {}

        for rank, candidate in enumerate(lexical, start=1):
            existing = merged.get(candidate.id)
            if existing is None:
                merged[candidate.id] = replace(candidate, vector_score=0.0)
            else:
                merged[candidate.id] = replace(existing, lexical_score=candidate.lexical_score)
            scores[candidate.id] = scores.get(candidate.id, 0.0) + self.fts_weight / (RRF_K + rank)

        for rank, candidate in enumerate(vector, start=1):
            existing = merged.get(candidate.id)
            if existing is None:
                merged[candidate.id] = replace(candidate, lexical_score=0.0)
            else:
                merged[candidate.id] = replace(
                    existing,
                    vector_score=candidate.vector_score,
                    text=existing.text or candidate.text,
                )
            scores[candidate.id] = scores.get(candidate.id, 0.0) + self.vec_weight / (RRF_K + rank)

        fused = [replace(candidate, combined_score=scores[chunk_id]) for chunk_id, candidate in merged.items()]
        fused.sort(key=lambda candidate: (-candidate.combined_score, candidate.id))
        return fused
