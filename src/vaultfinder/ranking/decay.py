"""Exponential recency decay with an evergreen exemption."""

from __future__ import annotations

import math
from dataclasses import replace
from datetime import datetime
from typing import List, Mapping, Sequence

from vaultfinder.models import ChunkMetadata, SearchCandidate
from vaultfinder.utils.timeutil import age_in_days, utc_now

DEFAULT_HALF_LIFE_DAYS = 30.0
DEFAULT_FLOOR = 0.1


def decay_multiplier(
    age_days: float,
    half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
    floor: float = DEFAULT_FLOOR,
) -> float:
    """``max(floor, exp(-ln 2 * age / half_life))`` with negative ages clamped to 0."""
    age_days = max(0.0, age_days)
    return max(floor, math.exp(-math.log(2) * age_days / half_life_days))


def apply_temporal_decay(
    candidates: Sequence[SearchCandidate],
    metadata: Mapping[int, ChunkMetadata],
    half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
    floor: float = DEFAULT_FLOOR,
    now: datetime | None = None,
) -> List[SearchCandidate]:
    """Scale combined scores by content age and re-sort.

    Candidates without metadata, with an unparsable timestamp, or flagged
    evergreen keep a multiplier of exactly 1.
    """
    reference = now or utc_now()
    decayed: List[SearchCandidate] = []
    for candidate in candidates:
        multiplier = 1.0
        info = metadata.get(candidate.id)
        if info is not None and not info.is_evergreen:
            age = age_in_days(info.updated_at, reference)
            if age is not None:
                multiplier = decay_multiplier(age, half_life_days, floor)
        decayed.append(
            replace(
                candidate,
                temporal_score=multiplier,
                combined_score=candidate.combined_score * multiplier,
            )
        )
    decayed.sort(key=lambda candidate: -candidate.combined_score)
    return decayed
