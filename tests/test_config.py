"""Tests for application configuration."""

from __future__ import annotations

from pathlib import Path

import pytest

from vaultfinder.config import (
    DB_ENV_VAR,
    AppConfig,
    EmbeddingConfig,
    SearchConfig,
    load_config,
)
from vaultfinder.errors import ConfigurationError


class TestAppConfig:
    """Test AppConfig dataclass."""

    def test_default_config(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        """Should create config with default values."""
        monkeypatch.delenv(DB_ENV_VAR, raising=False)
        monkeypatch.chdir(tmp_path)

        config = AppConfig()

        assert config.db_path == Path.home() / ".vaultfinder" / "vaultfinder.db"
        assert config.patterns == ["**/*.md"]
        assert config.max_chunk_size == 800
        assert config.evergreen_tags == ["evergreen", "permanent", "core"]
        assert config.embedding.provider == "local"
        assert config.search.fts_weight == 0.3
        assert config.search.vec_weight == 0.7
        assert config.search.mmr_lambda == 0.7
        assert config.search.max_candidates == 50

    def test_env_var_overrides_db_path(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(DB_ENV_VAR, "/tmp/custom/vault.db")

        assert AppConfig().db_path == Path("/tmp/custom/vault.db")

    def test_local_data_dir_preferred(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.delenv(DB_ENV_VAR, raising=False)
        monkeypatch.chdir(tmp_path)
        (tmp_path / "data").mkdir()
        (tmp_path / "data" / "vaultfinder.db").write_bytes(b"")

        assert AppConfig().db_path == Path("data/vaultfinder.db")

    def test_resolve_db_path_absolute(self) -> None:
        """Should return absolute path as-is."""
        config = AppConfig(db_path=Path("/absolute/path/db.db"))

        assert config.resolve_db_path(Path("/base")) == Path("/absolute/path/db.db")

    def test_resolve_db_path_relative_with_base(self) -> None:
        """Should resolve relative path against base_dir."""
        config = AppConfig(db_path=Path("relative/db.db"))

        assert config.resolve_db_path(Path("/base")) == Path("/base/relative/db.db")
        assert config.resolve_db_path() == Path("relative/db.db")

    def test_chunk_size_floor(self) -> None:
        with pytest.raises(ConfigurationError, match="max_chunk_size"):
            AppConfig(db_path=Path("x.db"), max_chunk_size=50)


class TestSectionValidation:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"fts_weight": 1.5},
            {"vec_weight": -0.1},
            {"mmr_lambda": 2.0},
            {"decay_half_life_days": 0.5},
            {"decay_floor": 1.2},
            {"max_candidates": 0},
        ],
    )
    def test_invalid_search_values(self, kwargs: dict) -> None:
        with pytest.raises(ConfigurationError):
            SearchConfig(**kwargs)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"provider": "bogus"},
            {"dimensions": 0},
            {"batch_size": 0},
            {"batch_size": 1000},
            {"timeout": 0},
        ],
    )
    def test_invalid_embedding_values(self, kwargs: dict) -> None:
        with pytest.raises(ConfigurationError):
            EmbeddingConfig(**kwargs)

    def test_configuration_error_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            EmbeddingConfig(provider="bogus")


class TestFromMapping:
    def test_nested_tables(self) -> None:
        config = AppConfig.from_mapping(
            {
                "db_path": "/data/vault.db",
                "exclude": ["templates"],
                "embedding": {"provider": "openai", "dimensions": 1536},
                "search": {"fts_weight": 0.5, "temporal_decay": False},
            }
        )

        assert config.db_path == Path("/data/vault.db")
        assert config.exclude == ["templates"]
        assert config.embedding.provider == "openai"
        assert config.embedding.dimensions == 1536
        assert config.search.fts_weight == 0.5
        assert config.search.temporal_decay is False
        assert config.search.vec_weight == 0.7

    def test_embedding_disabled(self) -> None:
        config = AppConfig.from_mapping({"db_path": "x.db", "embedding": False})

        assert config.embedding is None

    def test_unknown_top_level_key(self) -> None:
        with pytest.raises(ConfigurationError, match="Unknown configuration keys: colour"):
            AppConfig.from_mapping({"colour": "blue"})

    def test_unknown_nested_key(self) -> None:
        with pytest.raises(ConfigurationError):
            AppConfig.from_mapping({"search": {"speed": "fast"}})


class TestLoadConfig:
    def test_load_toml(self, tmp_path: Path) -> None:
        path = tmp_path / "vaultfinder.toml"
        path.write_text(
            'db_path = "index.db"\n'
            'patterns = ["**/*.md", "**/*.markdown"]\n'
            "\n"
            "[embedding]\n"
            'provider = "voyage"\n'
            "dimensions = 512\n"
            "\n"
            "[search]\n"
            "decay_half_life_days = 14\n",
            encoding="utf-8",
        )

        config = load_config(path)

        assert config.db_path == Path("index.db")
        assert config.patterns == ["**/*.md", "**/*.markdown"]
        assert config.embedding.provider == "voyage"
        assert config.search.decay_half_life_days == 14

    def test_invalid_toml(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.toml"
        path.write_text("db_path = \n", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="Invalid configuration file"):
            load_config(path)
