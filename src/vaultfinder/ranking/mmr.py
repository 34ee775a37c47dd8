"""Maximal marginal relevance reranking."""

from __future__ import annotations

from typing import List, Mapping, Sequence

import numpy as np

from vaultfinder.models import SearchCandidate
from vaultfinder.ranking.similarity import cosine_similarity


def mmr_rerank(
    candidates: Sequence[SearchCandidate],
    embeddings: Mapping[int, np.ndarray],
    lambda_: float = 0.7,
    limit: int = 10,
) -> List[SearchCandidate]:
    """Greedily pick ``limit`` candidates trading relevance against redundancy.

    Relevance is the combined score divided by the best combined score. Each
    pick after the first maximises
    ``lambda_ * relevance - (1 - lambda_) * max_similarity_to_selected``.
    A candidate without an embedding is scored on relevance alone.
    """
    if not candidates or limit <= 0:
        return []

    target = min(limit, len(candidates))
    best_score = max(0.0, max(candidate.combined_score for candidate in candidates))
    relevance = {
        candidate.id: 0.0 if best_score == 0 else candidate.combined_score / best_score
        for candidate in candidates
    }

    remaining = list(candidates)
    first = 0
    for index in range(1, len(remaining)):
        if relevance[remaining[index].id] > relevance[remaining[first].id]:
            first = index
    selected = [remaining.pop(first)]

    while len(selected) < target and remaining:
        best_index = 0
        best_mmr = float("-inf")
        for index, candidate in enumerate(remaining):
            score = relevance[candidate.id]
            vector = embeddings.get(candidate.id)
            if vector is not None:
                similarities = [
                    cosine_similarity(vector, embeddings[chosen.id])
                    for chosen in selected
                    if chosen.id in embeddings
                ]
                max_similarity = max(similarities) if similarities else 0.0
                score = lambda_ * score - (1 - lambda_) * max_similarity
            if score > best_mmr:
                best_mmr = score
                best_index = index
        selected.append(remaining.pop(best_index))

    return selected
