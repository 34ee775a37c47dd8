"""Incremental markdown indexing pipeline."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence

from vaultfinder.embedding.encoder import EmbeddingProvider
from vaultfinder.embedding.serialization import serialize_embedding
from vaultfinder.errors import EmbeddingUnavailableError
from vaultfinder.index.storage import VaultStore
from vaultfinder.models import FileIndexState
from vaultfinder.utils.files import DEFAULT_PATTERNS, compute_sha256, iter_vault_paths, to_relative
from vaultfinder.utils.text import (
    DEFAULT_EVERGREEN_TAGS,
    DEFAULT_MAX_CHUNK_SIZE,
    split_markdown_chunks,
)
from vaultfinder.utils.timeutil import utc_now_iso

LOGGER = logging.getLogger(__name__)

SCHEMA_VERSION = 1
BACKFILL_BATCH_SIZE = 32


@dataclass(slots=True)
class IndexFileResult:
    path: str
    chunks: int
    skipped: bool
    reason: Optional[str] = None


@dataclass(slots=True)
class FullScanResult:
    indexed: int = 0
    skipped: int = 0
    removed: int = 0
    embedded: int = 0
    errors: List[str] = field(default_factory=list)

    def record(self, result: IndexFileResult) -> None:
        if result.skipped:
            self.skipped += 1
        else:
            self.indexed += 1


@dataclass(slots=True)
class IndexState:
    files: Dict[str, FileIndexState]
    last_full_scan: Optional[str]
    schema_version: int = SCHEMA_VERSION


class MarkdownIndexer:
    """Keeps the store in step with the markdown files under ``root``.

    Unchanged files (same content hash as the stored file state) are never
    re-chunked or re-embedded. Embedding is best-effort: a failing provider
    leaves the document indexed for lexical search only.
    """

    def __init__(
        self,
        store: VaultStore,
        root: Path,
        embedder: EmbeddingProvider | None = None,
        *,
        max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE,
        evergreen_tags: Sequence[str] = DEFAULT_EVERGREEN_TAGS,
        exclude: Sequence[str] = (),
    ) -> None:
        self.store = store
        self.root = Path(root).resolve()
        self.embedder = embedder
        self.max_chunk_size = max_chunk_size
        self.evergreen_tags = tuple(evergreen_tags)
        self.exclude = tuple(exclude)
        self._last_full_scan: Optional[str] = None

    def _absolute(self, path: Path | str) -> Path:
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self.root / candidate
        return candidate.resolve()

    def index_file(self, path: Path | str) -> IndexFileResult:
        """Index a single document, skipping it when its content is unchanged."""
        absolute = self._absolute(path)
        rel_path = to_relative(self.root, absolute)

        if not absolute.is_file():
            return IndexFileResult(path=rel_path, chunks=0, skipped=True, reason="file not found")

        file_hash = compute_sha256(absolute)
        existing = self.store.get_file_state(rel_path)
        if existing is not None and existing.hash == file_hash:
            LOGGER.debug("Unchanged: %s", rel_path)
            return IndexFileResult(
                path=rel_path, chunks=existing.chunk_count, skipped=True, reason="unchanged"
            )

        content = absolute.read_text(encoding="utf-8")
        chunks = split_markdown_chunks(
            content,
            self.max_chunk_size,
            evergreen_tags=self.evergreen_tags,
        )

        with self.store.transaction():
            if chunks:
                self.store.upsert_chunks(rel_path, chunks)
                self.store.set_file_state(
                    rel_path,
                    FileIndexState(
                        hash=file_hash,
                        mtime=absolute.stat().st_mtime,
                        chunk_count=len(chunks),
                        last_indexed=utc_now_iso(),
                    ),
                )
            else:
                # No retrievable text left: drop stale chunks and state together.
                self.store.remove_file(rel_path)

        LOGGER.info("Indexed %s (%d chunks)", rel_path, len(chunks))
        if chunks and self.embedder is not None:
            self._embed_document(rel_path)
        return IndexFileResult(path=rel_path, chunks=len(chunks), skipped=False)

    def _embed_document(self, rel_path: str) -> None:
        try:
            stored = self.store.get_chunks(rel_path)
            vectors = self.embedder.embed([chunk.text for chunk in stored])
            self.store.set_embeddings(
                [(chunk.id, serialize_embedding(vector)) for chunk, vector in zip(stored, vectors)],
                self.embedder.model_id,
            )
        except EmbeddingUnavailableError as exc:
            LOGGER.debug("Skipping embeddings for %s: %s", rel_path, exc)
        except Exception as exc:
            LOGGER.warning("Embedding failed for %s, indexed lexically only: %s", rel_path, exc)

    def remove_file(self, path: Path | str) -> None:
        rel_path = to_relative(self.root, self._absolute(path))
        self.store.remove_file(rel_path)
        LOGGER.info("Removed %s from index", rel_path)

    def full_scan(
        self,
        root: Path | None = None,
        patterns: Sequence[str] = DEFAULT_PATTERNS,
    ) -> FullScanResult:
        """Index every matching file, drop vanished ones, then backfill embeddings."""
        scan_root = Path(root).resolve() if root is not None else self.root
        result = FullScanResult()
        scanned: set[str] = set()

        for path in iter_vault_paths(scan_root, patterns, exclude=self.exclude):
            try:
                rel_path = to_relative(self.root, path)
            except ValueError:
                result.errors.append(f"{path}: outside vault root {self.root}")
                continue
            scanned.add(rel_path)
            try:
                result.record(self.index_file(path))
            except Exception as exc:
                LOGGER.error("Failed to index %s: %s", rel_path, exc)
                result.errors.append(f"{rel_path}: {exc}")

        result.removed = self.remove_missing_files(scanned)

        if self.embedder is not None:
            result.embedded = self.backfill_embeddings()

        self._last_full_scan = utc_now_iso()
        return result

    def remove_missing_files(self, keep: Iterable[str] = ()) -> int:
        """Drop indexed documents that no longer exist under the vault root."""
        keep = set(keep)
        removed = 0
        for rel_path in self.store.get_all_file_states():
            if rel_path in keep or (self.root / rel_path).exists():
                continue
            self.store.remove_file(rel_path)
            removed += 1
            LOGGER.info("Removed vanished file %s", rel_path)
        return removed

    def iter_backfill_batches(self, batch_size: int = BACKFILL_BATCH_SIZE) -> Iterator[int]:
        """Embed chunks lacking a vector from the current model, one batch per step.

        Each yielded value is the number of chunks persisted by that batch, so
        a caller can stop iterating at any point without losing finished work.
        """
        if self.embedder is None:
            return
        model_id = self.embedder.model_id
        pending = self.store.get_chunks_needing_embedding(model_id)
        for start in range(0, len(pending), batch_size):
            batch = pending[start : start + batch_size]
            vectors = self.embedder.embed([text for _, text in batch])
            self.store.set_embeddings(
                [(chunk_id, serialize_embedding(vector)) for (chunk_id, _), vector in zip(batch, vectors)],
                model_id,
            )
            yield len(batch)

    def backfill_embeddings(self, batch_size: int = BACKFILL_BATCH_SIZE) -> int:
        embedded = 0
        try:
            for count in self.iter_backfill_batches(batch_size):
                embedded += count
        except EmbeddingUnavailableError as exc:
            LOGGER.debug("Embedding backfill skipped: %s", exc)
        except Exception as exc:
            LOGGER.warning("Embedding backfill stopped after %d chunks: %s", embedded, exc)
        return embedded

    def get_state(self) -> IndexState:
        return IndexState(
            files=self.store.get_all_file_states(),
            last_full_scan=self._last_full_scan,
        )
