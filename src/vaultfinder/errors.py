"""Exception hierarchy for VaultFinder."""

from __future__ import annotations


class VaultFinderError(Exception):
    """Base class for all VaultFinder errors."""


class ConfigurationError(VaultFinderError, ValueError):
    """Invalid configuration (bad dimensions, unknown provider, out-of-range values)."""


class EmbeddingError(VaultFinderError, RuntimeError):
    """An embedding could not be produced."""


class EmbeddingUnavailableError(EmbeddingError):
    """Raised by the null provider when no real backend could be set up."""


class EmbeddingProviderError(EmbeddingError):
    """A configured backend failed at runtime (HTTP error, bad payload, model load)."""


class EmbeddingFormatError(VaultFinderError, ValueError):
    """A stored embedding BLOB is corrupt or has the wrong dimensionality."""
