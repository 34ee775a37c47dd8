"""Shared fixtures: a throwaway store and a deterministic embedding provider."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Iterable, List, Sequence
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from vaultfinder.embedding.encoder import EmbeddingProvider
from vaultfinder.errors import EmbeddingProviderError
from vaultfinder.index.storage import VaultStore

# Each axis of the fake vector space counts words from one topic.
TOPICS = (
    {"telescope", "observatory", "stars", "astronomy", "galaxy"},
    {"recipe", "cooking", "oven", "flour", "bake", "bread"},
    {"garden", "soil", "plants", "seeds"},
)
WORD_RE = re.compile(r"[a-z]+")


class KeywordEmbeddingProvider(EmbeddingProvider):
    """Maps text to topic word counts plus a small constant bias component."""

    def __init__(self) -> None:
        self.calls: List[List[str]] = []

    @property
    def dimension(self) -> int:
        return len(TOPICS) + 1

    @property
    def model_id(self) -> str:
        return "fake:keywords"

    def embed(self, texts: Sequence[str] | Iterable[str]) -> np.ndarray:
        batch = list(texts)
        self.calls.append(batch)
        vectors = np.zeros((len(batch), self.dimension), dtype="float32")
        for row, text in enumerate(batch):
            words = WORD_RE.findall(text.lower())
            for axis, topic in enumerate(TOPICS):
                vectors[row, axis] = sum(1 for word in words if word in topic)
            vectors[row, -1] = 0.1
        return vectors

    @property
    def embedded_texts(self) -> List[str]:
        return [text for batch in self.calls for text in batch]


class FailingEmbeddingProvider(KeywordEmbeddingProvider):
    """Behaves like a remote API that is down."""

    def embed(self, texts: Sequence[str] | Iterable[str]) -> np.ndarray:
        raise EmbeddingProviderError("Remote embedding API error (503): unavailable")


@pytest.fixture
def store(tmp_path: Path):
    """A fresh store in a temporary directory."""
    vault_store = VaultStore(tmp_path / "vault.db")
    yield vault_store
    vault_store.close()


@pytest.fixture
def keyword_embedder() -> KeywordEmbeddingProvider:
    return KeywordEmbeddingProvider()


@pytest.fixture
def failing_embedder() -> FailingEmbeddingProvider:
    return FailingEmbeddingProvider()


@pytest.fixture
def vault(tmp_path: Path) -> Path:
    root = tmp_path / "vault"
    root.mkdir()
    return root


def write_note(root: Path, rel_path: str, content: str) -> Path:
    path = root / rel_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


@pytest.fixture
def sentence_transformers_stub():
    """Installs a ``sentence_transformers`` module whose model emits keyword vectors.

    The model reports its real dimension (4), which differs from the default
    configured 384.
    """
    keywords = KeywordEmbeddingProvider()
    model = MagicMock()
    model.get_sentence_embedding_dimension.return_value = keywords.dimension
    model.encode.side_effect = lambda batch, **kwargs: keywords.embed(batch)
    module = MagicMock()
    module.SentenceTransformer.return_value = model
    with patch.dict("sys.modules", {"sentence_transformers": module}), patch(
        "vaultfinder.embedding.encoder._local_backend_available", return_value=True
    ):
        yield model
