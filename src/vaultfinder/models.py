"""Core VaultFinder data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(slots=True)
class ChunkInsert:
    """Chunk produced by the chunker, not yet persisted."""

    text: str
    chunk_index: int
    content_hash: str
    is_evergreen: bool = False


@dataclass(slots=True)
class ChunkRecord:
    """Persisted slice of a vault document."""

    id: int
    path: str
    chunk_index: int
    text: str
    content_hash: str
    created_at: str
    updated_at: str
    is_evergreen: bool = False


@dataclass(slots=True)
class FileIndexState:
    """Bookkeeping for the last indexed version of a document."""

    hash: str
    mtime: float
    chunk_count: int
    last_indexed: str


@dataclass(slots=True)
class EmbeddingRow:
    """Stored embedding plus the metadata needed for ranking."""

    id: int
    path: str
    chunk_index: int
    embedding: bytes
    created_at: str
    updated_at: str
    is_evergreen: bool


@dataclass(slots=True)
class ChunkMetadata:
    """Age and evergreen information for a chunk."""

    created_at: str
    updated_at: str
    is_evergreen: bool


@dataclass(slots=True)
class SearchCandidate:
    """Query-scoped retrieval result.

    Signals that did not produce the candidate keep their neutral value:
    0 for the lexical and vector scores, 1 for the temporal multiplier.
    """

    id: int
    path: str
    chunk_index: int
    text: str
    lexical_score: float = 0.0
    vector_score: float = 0.0
    temporal_score: float = 1.0
    combined_score: float = 0.0


@dataclass(slots=True)
class HighlightedCandidate:
    candidate: SearchCandidate
    highlighted: str


@dataclass(slots=True)
class Provenance:
    source_file: str
    source_date: str
    original_quote: str


@dataclass(slots=True)
class CitedSearchResult:
    candidate: SearchCandidate
    provenance: Provenance


@dataclass(slots=True)
class Entity:
    """A named person, topic or project tracked in the entity graph."""

    id: str
    type: str
    name: str
    aliases: List[str] = field(default_factory=list)
    path: Optional[str] = None
    first_seen: str = ""
    last_seen: str = ""
    interaction_count: int = 0


@dataclass(slots=True)
class EntityEvent:
    entity_id: str
    event_id: str
    role: str
    created_at: str


@dataclass(slots=True)
class RelationRow:
    """Raw relation joined with the entity on the other end of the edge."""

    entity_a_id: str
    entity_b_id: str
    co_occurrence_count: int
    last_updated: str
    related: Entity


@dataclass(slots=True)
class RelatedEntity:
    entity: Entity
    co_occurrence_count: int
    decayed_weight: float


@dataclass(slots=True)
class DatabaseStats:
    total_chunks: int
    total_files: int
    embedded_chunks: int
    db_size_bytes: int
