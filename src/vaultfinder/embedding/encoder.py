"""Embedding providers.

Every backend implements :class:`EmbeddingProvider`. When a backend cannot be
set up (missing local dependency, missing API key) the factory hands back a
:class:`NullEmbeddingProvider` instead, so callers never special-case ``None``
and simply fall back to lexical search when ``embed`` raises.
"""

from __future__ import annotations

import importlib.util
import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Iterable, Sequence

import numpy as np
import requests

from vaultfinder.config import EmbeddingConfig
from vaultfinder.errors import (
    ConfigurationError,
    EmbeddingProviderError,
    EmbeddingUnavailableError,
)

DEFAULT_LOCAL_MODEL = "sentence-transformers/all-MiniLM-L6-v2"
OPENAI_ENDPOINT = "https://api.openai.com/v1/embeddings"
VOYAGE_ENDPOINT = "https://api.voyageai.com/v1/embeddings"

LOCAL_MISSING_DEP_MESSAGE = (
    "Local embedding provider requires sentence-transformers. "
    "Install with: pip install 'vaultfinder[local]'"
)

logger = logging.getLogger(__name__)


def _local_backend_available() -> bool:
    return importlib.util.find_spec("sentence_transformers") is not None


class EmbeddingProvider(ABC):
    """Turns texts into fixed-size float32 vectors."""

    batch_size: int = 32

    @property
    @abstractmethod
    def dimension(self) -> int: ...

    @property
    @abstractmethod
    def model_id(self) -> str:
        """Stable identifier stored next to each vector to detect model changes."""

    @abstractmethod
    def embed(self, texts: Sequence[str] | Iterable[str]) -> np.ndarray:
        """Return a ``(len(texts), dimension)`` float32 array."""

    def resolve_dimension(self) -> int:
        """Dimension of the vectors :meth:`embed` will actually return."""
        return self.dimension

    def embed_query(self, text: str) -> np.ndarray:
        """Convenience wrapper for single-query embedding."""
        return self.embed([text])[0]

    def iter_batches(self, texts: Sequence[str]) -> Iterable[Sequence[str]]:
        size = max(1, self.batch_size)
        for start in range(0, len(texts), size):
            yield texts[start : start + size]


class NullEmbeddingProvider(EmbeddingProvider):
    """Stand-in for a backend that could not be configured."""

    def __init__(self, reason: str) -> None:
        self.reason = reason

    @property
    def dimension(self) -> int:
        return 0

    @property
    def model_id(self) -> str:
        return "null"

    def embed(self, texts: Sequence[str] | Iterable[str]) -> np.ndarray:
        raise EmbeddingUnavailableError(f"Embedding provider unavailable: {self.reason}")


class LocalEmbeddingProvider(EmbeddingProvider):
    """In-process ``SentenceTransformer`` feature extraction.

    The model is loaded on first use so constructing the provider stays cheap.
    """

    def __init__(
        self,
        model_name: str = DEFAULT_LOCAL_MODEL,
        *,
        dimensions: int = 384,
        batch_size: int = 32,
        device: str | None = None,
    ) -> None:
        self.model_name = model_name
        self.batch_size = max(1, batch_size)
        self.device = device
        self._dimension = dimensions
        self._model: Any = None

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model_id(self) -> str:
        return f"local:{self.model_name}"

    def _load_model(self) -> Any:
        if self._model is not None:
            return self._model
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError as exc:
            raise EmbeddingProviderError(LOCAL_MISSING_DEP_MESSAGE) from exc
        try:
            self._model = SentenceTransformer(self.model_name, device=self.device)
        except Exception as exc:
            raise EmbeddingProviderError(
                f"Failed to load local embedding model {self.model_name!r}: {exc}"
            ) from exc
        loaded_dimension = int(self._model.get_sentence_embedding_dimension())
        if loaded_dimension != self._dimension:
            logger.warning(
                "Model %s produces %d dimensions, configured %d; using the model's",
                self.model_name,
                loaded_dimension,
                self._dimension,
            )
            self._dimension = loaded_dimension
        logger.info("Loaded local embedding model %s (%d dims)", self.model_name, self._dimension)
        return self._model

    def resolve_dimension(self) -> int:
        # The configured size is only a hint until the model is loaded.
        self._load_model()
        return self._dimension

    def embed(self, texts: Sequence[str] | Iterable[str]) -> np.ndarray:
        sentences = list(texts)
        model = self._load_model()
        if not sentences:
            return np.zeros((0, self._dimension), dtype="float32")
        parts = []
        for batch in self.iter_batches(sentences):
            encoded = model.encode(
                list(batch),
                batch_size=self.batch_size,
                show_progress_bar=False,
                convert_to_numpy=True,
                normalize_embeddings=True,
            )
            parts.append(np.asarray(encoded, dtype="float32"))
        return np.vstack(parts)


class RemoteEmbeddingProvider(EmbeddingProvider):
    """OpenAI-style ``/embeddings`` HTTP API.

    Each batch is one POST of ``{model, input, dimensions}``; the response must
    be ``{"data": [{"embedding": [...]}, ...]}`` in input order.
    """

    def __init__(
        self,
        *,
        api_key: str,
        endpoint: str,
        model: str,
        dimensions: int,
        batch_size: int = 32,
        timeout: float = 30.0,
        label: str = "Remote",
        session: requests.Session | None = None,
    ) -> None:
        self.api_key = api_key
        self.endpoint = endpoint
        self.model = model
        self.batch_size = max(1, batch_size)
        self.timeout = timeout
        self.label = label
        self._dimension = dimensions
        self._session = session or requests.Session()

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model_id(self) -> str:
        return f"{self.label.lower()}:{self.model}"

    def _post_batch(self, batch: Sequence[str]) -> np.ndarray:
        try:
            response = self._session.post(
                self.endpoint,
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {self.api_key}",
                },
                json={"model": self.model, "input": list(batch), "dimensions": self._dimension},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise EmbeddingProviderError(f"{self.label} embedding request failed: {exc}") from exc

        if not response.ok:
            raise EmbeddingProviderError(
                f"{self.label} embedding API error ({response.status_code}): {response.text}"
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise EmbeddingProviderError(
                f"{self.label} embedding API returned invalid JSON"
            ) from exc

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list) or len(data) != len(batch):
            raise EmbeddingProviderError(f"{self.label} embedding API returned invalid payload shape")

        vectors = []
        for item in data:
            embedding = item.get("embedding") if isinstance(item, dict) else None
            if not isinstance(embedding, list) or not all(
                isinstance(value, (int, float)) and not isinstance(value, bool) for value in embedding
            ):
                raise EmbeddingProviderError(
                    f"{self.label} embedding API returned invalid payload shape"
                )
            if len(embedding) != self._dimension:
                raise EmbeddingProviderError(
                    f"{self.label} embedding API returned {len(embedding)} dimensions, "
                    f"expected {self._dimension}"
                )
            vectors.append(embedding)
        return np.asarray(vectors, dtype="float32")

    def embed(self, texts: Sequence[str] | Iterable[str]) -> np.ndarray:
        sentences = list(texts)
        if not sentences:
            return np.zeros((0, self._dimension), dtype="float32")
        parts = [self._post_batch(batch) for batch in self.iter_batches(sentences)]
        return np.vstack(parts)


def _remote_provider(
    config: EmbeddingConfig,
    *,
    label: str,
    endpoint: str,
    default_model: str,
    default_env: str,
) -> EmbeddingProvider:
    env_name = config.api_key_env or default_env
    api_key = os.environ.get(env_name)
    if not api_key:
        logger.warning("%s embeddings disabled: %s is not set", label, env_name)
        return NullEmbeddingProvider(
            f"{label} embedding provider requires API key. Set {env_name} environment variable."
        )
    return RemoteEmbeddingProvider(
        api_key=api_key,
        endpoint=endpoint,
        model=config.model or default_model,
        dimensions=config.dimensions,
        batch_size=config.batch_size,
        timeout=config.timeout,
        label=label,
    )


def create_embedding_provider(config: EmbeddingConfig | None = None) -> EmbeddingProvider:
    """Build the provider described by ``config``.

    Raises :class:`ConfigurationError` for an unknown provider or invalid
    dimensions. A backend that is merely unavailable yields the null provider.
    """
    config = config or EmbeddingConfig()
    if config.dimensions <= 0:
        raise ConfigurationError(f"Embedding dimensions must be positive, got {config.dimensions}")

    if config.provider == "local":
        if not _local_backend_available():
            logger.warning("Local embeddings disabled: sentence-transformers is not installed")
            return NullEmbeddingProvider(LOCAL_MISSING_DEP_MESSAGE)
        return LocalEmbeddingProvider(
            config.model or DEFAULT_LOCAL_MODEL,
            dimensions=config.dimensions,
            batch_size=config.batch_size,
            device=config.device,
        )
    if config.provider == "openai":
        return _remote_provider(
            config,
            label="OpenAI",
            endpoint=OPENAI_ENDPOINT,
            default_model="text-embedding-3-small",
            default_env="OPENAI_API_KEY",
        )
    if config.provider == "voyage":
        return _remote_provider(
            config,
            label="Voyage",
            endpoint=VOYAGE_ENDPOINT,
            default_model="voyage-3-lite",
            default_env="VOYAGE_API_KEY",
        )
    raise ConfigurationError(f"Unsupported embedding provider: {config.provider!r}")
