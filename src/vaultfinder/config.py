"""Application configuration defaults."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, List, Mapping, Optional

from vaultfinder.errors import ConfigurationError

SUPPORTED_PROVIDERS = ("local", "openai", "voyage")
DB_ENV_VAR = "VAULTFINDER_DB"


def _get_default_db_path() -> Path:
    """Get the default database path for the current execution context."""
    override = os.environ.get(DB_ENV_VAR)
    if override:
        return Path(override).expanduser()

    # When running from a checkout, prefer local data/ if it exists
    local_db = Path("data/vaultfinder.db")
    if local_db.exists():
        return local_db

    return Path.home() / ".vaultfinder" / "vaultfinder.db"


def _check_range(name: str, value: float, low: float, high: float) -> None:
    if not low <= value <= high:
        raise ConfigurationError(f"{name} must be between {low} and {high}, got {value}")


@dataclass(slots=True)
class EmbeddingConfig:
    provider: str = "local"
    model: Optional[str] = None
    dimensions: int = 384
    api_key_env: Optional[str] = None
    batch_size: int = 32
    timeout: float = 30.0
    device: Optional[str] = None

    def __post_init__(self) -> None:
        if self.provider not in SUPPORTED_PROVIDERS:
            raise ConfigurationError(
                f"Unsupported embedding provider: {self.provider!r} "
                f"(expected one of {', '.join(SUPPORTED_PROVIDERS)})"
            )
        if self.dimensions <= 0:
            raise ConfigurationError(f"Embedding dimensions must be positive, got {self.dimensions}")
        _check_range("batch_size", self.batch_size, 1, 256)
        if self.timeout <= 0:
            raise ConfigurationError(f"timeout must be positive, got {self.timeout}")


@dataclass(slots=True)
class SearchConfig:
    fts_weight: float = 0.3
    vec_weight: float = 0.7
    mmr_lambda: float = 0.7
    temporal_decay: bool = True
    max_candidates: int = 50
    decay_half_life_days: float = 30.0
    decay_floor: float = 0.1

    def __post_init__(self) -> None:
        _check_range("fts_weight", self.fts_weight, 0.0, 1.0)
        _check_range("vec_weight", self.vec_weight, 0.0, 1.0)
        _check_range("mmr_lambda", self.mmr_lambda, 0.0, 1.0)
        _check_range("decay_half_life_days", self.decay_half_life_days, 1.0, 365.0)
        _check_range("decay_floor", self.decay_floor, 0.0, 1.0)
        if self.max_candidates < 1:
            raise ConfigurationError(f"max_candidates must be >= 1, got {self.max_candidates}")


@dataclass(slots=True)
class AppConfig:
    db_path: Path | None = None
    vault_path: Path | None = None
    patterns: List[str] = field(default_factory=lambda: ["**/*.md"])
    exclude: List[str] = field(default_factory=list)
    max_chunk_size: int = 800
    evergreen_tags: List[str] = field(default_factory=lambda: ["evergreen", "permanent", "core"])
    embedding: EmbeddingConfig | None = field(default_factory=EmbeddingConfig)
    search: SearchConfig = field(default_factory=SearchConfig)

    def __post_init__(self) -> None:
        if self.db_path is None:
            self.db_path = _get_default_db_path()
        if self.max_chunk_size < 100:
            raise ConfigurationError(f"max_chunk_size must be >= 100, got {self.max_chunk_size}")

    def resolve_db_path(self, base_dir: Path | None = None) -> Path:
        if self.db_path is None:
            self.db_path = _get_default_db_path()
        if Path(self.db_path).is_absolute() or base_dir is None:
            return Path(self.db_path)
        return base_dir / self.db_path

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "AppConfig":
        """Build a config from a parsed mapping such as a TOML document.

        ``[embedding]`` and ``[search]`` tables map onto their dataclasses;
        ``embedding = false`` disables embeddings entirely.
        """
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        kwargs: dict[str, Any] = {}
        try:
            for key, value in data.items():
                if key in ("db_path", "vault_path"):
                    kwargs[key] = Path(value).expanduser()
                elif key == "embedding":
                    kwargs[key] = EmbeddingConfig(**value) if value else None
                elif key == "search":
                    kwargs[key] = SearchConfig(**value)
                else:
                    kwargs[key] = value
            return cls(**kwargs)
        except TypeError as exc:
            raise ConfigurationError(str(exc)) from exc


def load_config(path: Path) -> AppConfig:
    """Load an :class:`AppConfig` from a TOML file."""
    try:
        with Path(path).open("rb") as handle:
            data = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"Invalid configuration file {path}: {exc}") from exc
    return AppConfig.from_mapping(data)
