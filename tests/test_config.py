"""
Tests for store configuration.
"""

from pathlib import Path

import pytest

from perch.config import (
    CONFIG_FILENAME,
    DEFAULT_EMBEDDING_MODEL,
    DEFAULT_EXCLUDED_ROOTS,
    StoreConfig,
    get_default_store_path,
    load_config,
    load_or_create_config,
    save_config,
)


class TestStoreConfig:

    def test_defaults(self, tmp_path):
        config = StoreConfig(path=tmp_path)

        assert config.embedding.name == "sentence-transformers"
        assert config.embedding.params == {"model": DEFAULT_EMBEDDING_MODEL}
        assert config.content.name == "http"
        assert config.concurrency == 3
        assert config.min_content_chars == 3
        assert config.tree_path is None
        assert config.excluded_roots == DEFAULT_EXCLUDED_ROOTS
        assert config.config_path == tmp_path / CONFIG_FILENAME
        assert config.database_path == tmp_path / "embeddings.db"

    def test_load_or_create_writes_file(self, tmp_path):
        store = tmp_path / "store"
        config = load_or_create_config(store)

        assert config.exists()
        assert (store / CONFIG_FILENAME).exists()

    def test_round_trip(self, tmp_path):
        config = StoreConfig(path=tmp_path)
        config.concurrency = 5
        config.min_content_chars = 10
        config.tree_path = tmp_path / "bookmarks.json"
        config.excluded_roots = ("menu________",)
        config.content.params["timeout"] = 2.5
        save_config(config)

        loaded = load_config(tmp_path)

        assert loaded.concurrency == 5
        assert loaded.min_content_chars == 10
        assert loaded.tree_path == tmp_path / "bookmarks.json"
        assert loaded.excluded_roots == ("menu________",)
        assert loaded.content.params == {"timeout": 2.5}
        assert loaded.created == config.created

    def test_missing_sections_use_defaults(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text('[store]\nversion = 1\n')

        loaded = load_config(tmp_path)

        assert loaded.concurrency == 3
        assert loaded.embedding.name == "sentence-transformers"
        assert loaded.excluded_roots == DEFAULT_EXCLUDED_ROOTS

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path)

    def test_newer_version_rejected(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text('[store]\nversion = 99\n')
        with pytest.raises(ValueError, match="newer"):
            load_config(tmp_path)

    def test_invalid_concurrency_rejected(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text('[sync]\nconcurrency = 0\n')
        with pytest.raises(ValueError, match="concurrency"):
            load_config(tmp_path)


class TestStorePath:

    def test_env_var(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PERCH_STORE_PATH", str(tmp_path / "custom"))
        assert get_default_store_path() == (tmp_path / "custom").resolve()

    def test_home_default(self, monkeypatch):
        monkeypatch.delenv("PERCH_STORE_PATH", raising=False)
        assert get_default_store_path() == Path.home() / ".perch"
