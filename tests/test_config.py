"""Tests for store configuration."""

import pytest

from corta.config import (
    CONFIG_FILENAME,
    ProviderConfig,
    StoreConfig,
    apply_env_overrides,
    create_default_config,
    detect_default_providers,
    get_store_path,
    load_config,
    load_or_create_config,
    save_config,
)


class TestDetection:
    def test_no_keys(self):
        providers = detect_default_providers()
        assert providers["index"].name == "local"
        assert providers["generator"] is None

    def test_supermemory_and_anthropic(self, monkeypatch):
        monkeypatch.setenv("SUPERMEMORY_API_KEY", "sm-key")
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant")
        monkeypatch.setenv("OPENAI_API_KEY", "sk-openai")

        providers = detect_default_providers()

        assert providers["index"].name == "supermemory"
        assert providers["generator"].name == "anthropic"

    def test_openai_fallback(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-openai")
        assert detect_default_providers()["generator"].name == "openai"


class TestStorePath:
    def test_explicit_wins(self, tmp_path):
        assert get_store_path(tmp_path / "x") == tmp_path / "x"

    def test_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CORTA_STORE_PATH", str(tmp_path / "env"))
        assert get_store_path() == tmp_path / "env"

    def test_home_default(self, monkeypatch, tmp_path):
        monkeypatch.delenv("CORTA_STORE_PATH")
        monkeypatch.setenv("HOME", str(tmp_path))
        assert get_store_path() == tmp_path / ".corta"


class TestPersistence:
    def test_save_and_load(self, tmp_path):
        config = StoreConfig(
            path=tmp_path,
            index=ProviderConfig("supermemory", {"base_url": "https://api.supermemory.ai"}),
            generator=ProviderConfig("openai", {"model": "gpt-4o-mini"}),
        )
        config.sync.batch_size = 5
        config.cache.stale_pending_seconds = 12.5
        save_config(config)

        loaded = load_config(tmp_path)

        assert loaded.index == config.index
        assert loaded.generator == config.generator
        assert loaded.sync.batch_size == 5
        assert loaded.sync.batch_delay == 0.5
        assert loaded.cache.stale_pending_seconds == 12.5
        assert loaded.created == config.created

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path)

    def test_newer_version_rejected(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text("[store]\nversion = 99\n")
        with pytest.raises(ValueError, match="newer"):
            load_config(tmp_path)

    def test_invalid_values_rejected(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text("[sync]\nbatch_size = 0\n")
        with pytest.raises(ValueError, match="batch_size"):
            load_config(tmp_path)

    def test_load_or_create_writes_defaults(self, tmp_path):
        config = load_or_create_config(tmp_path / "store")

        assert config.exists()
        assert config.index.name == "local"
        assert config.sync.batch_size == 3
        assert config.cache.stale_pending_seconds == 30.0


class TestEnvOverrides:
    def test_overrides_apply(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CORTA_SYNC_BATCH_SIZE", "4")
        monkeypatch.setenv("CORTA_SYNC_BATCH_DELAY", "0")
        monkeypatch.setenv("CORTA_STALE_PENDING_SECONDS", "90")

        config = apply_env_overrides(create_default_config(tmp_path))

        assert config.sync.batch_size == 4
        assert config.sync.batch_delay == 0.0
        assert config.cache.stale_pending_seconds == 90.0

    def test_bad_number(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CORTA_SYNC_BATCH_SIZE", "three")
        with pytest.raises(ValueError, match="CORTA_SYNC_BATCH_SIZE"):
            apply_env_overrides(create_default_config(tmp_path))

    def test_out_of_range(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CORTA_SYNC_BATCH_DELAY", "-1")
        with pytest.raises(ValueError, match="batch_delay"):
            apply_env_overrides(create_default_config(tmp_path))
