"""Tests for application configuration."""

from __future__ import annotations

from pathlib import Path

import pytest

from vaultrag.config import AppConfig
from vaultrag.embedding.encoder import DEFAULT_MODEL
from vaultrag.index.search import RAGOptions


class TestAppConfig:
    """Test AppConfig dataclass."""

    def test_default_config(self) -> None:
        """Should create config with default values."""
        config = AppConfig()

        assert config.db_path is not None
        assert config.db_path.name == "vaultrag.db"
        assert config.model_name == DEFAULT_MODEL
        assert config.chunk_size == 1000
        assert config.min_similarity == 0.0
        assert config.limit == 10
        assert config.concurrency == 8
        assert config.include_patterns == []
        assert config.exclude_patterns == []

    def test_custom_config(self) -> None:
        config = AppConfig(
            db_path=Path("/custom/path.db"),
            model_name="custom-model",
            chunk_size=500,
            limit=3,
        )

        assert config.db_path == Path("/custom/path.db")
        assert config.model_name == "custom-model"
        assert config.chunk_size == 500
        assert config.limit == 3

    def test_resolve_db_path_absolute(self) -> None:
        config = AppConfig(db_path=Path("/absolute/path/db.db"))
        assert config.resolve_db_path(Path("/base")) == Path("/absolute/path/db.db")

    def test_resolve_db_path_relative_no_base(self) -> None:
        config = AppConfig(db_path=Path("relative/db.db"))
        assert config.resolve_db_path(base_dir=None) == Path("relative/db.db")

    def test_resolve_db_path_relative_with_base(self) -> None:
        config = AppConfig(db_path=Path("relative/db.db"))
        assert config.resolve_db_path(base_dir=Path("/base/directory")) == Path(
            "/base/directory/relative/db.db"
        )

    @pytest.mark.parametrize("field,value", [("chunk_size", 0), ("limit", -1)])
    def test_invalid_values(self, field: str, value: int) -> None:
        with pytest.raises(ValueError, match=field):
            AppConfig(**{field: value})

    def test_rag_options(self) -> None:
        config = AppConfig(
            chunk_size=400,
            min_similarity=0.25,
            limit=5,
            include_patterns=["notes/**"],
            exclude_patterns=["*.draft.md"],
        )

        options = config.rag_options()

        assert options == RAGOptions(
            chunk_size=400,
            min_similarity=0.25,
            limit=5,
            include_patterns=["notes/**"],
            exclude_patterns=["*.draft.md"],
        )
        options.include_patterns.append("other")
        assert config.include_patterns == ["notes/**"]
