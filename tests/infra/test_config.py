"""
Tests for infra/config/ module.

Tests the library configuration system:
- Config loading/saving
- Env var expansion
- Backend and placement validation

All tests use temporary directories - no production data touched.
"""

import pytest
import yaml
from pydantic import ValidationError

from infra.config import (
    BackendConfig,
    BatchConfig,
    ConfigManager,
    FolioConfig,
    PlacementConfig,
    ResilienceConfig,
    get_storage_root,
    load_config,
    resolve_env_vars,
    save_config,
)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def tmp_storage(tmp_path):
    """Create a temporary storage root directory."""
    storage = tmp_path / "folio"
    storage.mkdir()
    return storage


@pytest.fixture
def manager(tmp_storage):
    return ConfigManager(tmp_storage)


@pytest.fixture
def no_env_file(tmp_path):
    """An empty .env so load_config never picks up a developer's real one."""
    env_file = tmp_path / "empty.env"
    env_file.write_text("")
    return env_file


# =============================================================================
# Schema Tests
# =============================================================================

class TestResolveEnvVars:
    """Test environment variable resolution."""

    def test_resolves_single_var(self, monkeypatch):
        """${VAR} should be replaced with env value."""
        monkeypatch.setenv("TEST_KEY", "secret123")
        assert resolve_env_vars("${TEST_KEY}") == "secret123"

    def test_resolves_multiple_vars(self, monkeypatch):
        monkeypatch.setenv("FOLIO_USER", "alice")
        monkeypatch.setenv("FOLIO_HOST", "example.com")
        assert resolve_env_vars("${FOLIO_USER}@${FOLIO_HOST}") == "alice@example.com"

    def test_missing_var_becomes_empty(self, monkeypatch):
        monkeypatch.delenv("FOLIO_MISSING", raising=False)
        assert resolve_env_vars("key-${FOLIO_MISSING}") == "key-"

    def test_literal_passthrough(self):
        assert resolve_env_vars("plain") == "plain"
        assert resolve_env_vars(None) is None


class TestBackendConfig:

    def test_defaults(self):
        config = BackendConfig()
        assert config.engine == "tesseract"
        assert config.lang == "eng"
        assert config.model is None

    def test_engine_normalized(self):
        assert BackendConfig(engine=" OpenAI ").engine == "openai"

    def test_unknown_engine_rejected(self):
        with pytest.raises(ValidationError):
            BackendConfig(engine="abbyy")

    def test_default_model_filled(self):
        assert BackendConfig(engine="openai").model == "gpt-4o-mini"
        assert BackendConfig(engine="local-vision").model == "qwen2.5vl:7b"
        assert BackendConfig(engine="openai", model="gpt-4o").model == "gpt-4o"

    def test_resolved_api_key(self, monkeypatch):
        monkeypatch.setenv("FOLIO_TEST_KEY", "sk-test")
        assert BackendConfig(api_key="${FOLIO_TEST_KEY}").resolved_api_key() == "sk-test"

        monkeypatch.delenv("FOLIO_TEST_KEY")
        assert BackendConfig(api_key="${FOLIO_TEST_KEY}").resolved_api_key() is None
        assert BackendConfig().resolved_api_key() is None


class TestOtherSchemas:

    def test_resilience_defaults(self):
        config = ResilienceConfig()
        assert config.max_retries == 3
        assert config.base_delay == 1.0
        assert config.failure_threshold == 5
        assert config.reset_timeout == 60.0

    def test_batch_rejects_zero_workers(self):
        with pytest.raises(ValidationError):
            BatchConfig(concurrency=0)

    def test_placement_ranges_checked(self):
        with pytest.raises(ValidationError):
            PlacementConfig(min_block_font=20, max_block_font=10)
        with pytest.raises(ValidationError):
            PlacementConfig(min_word_font=80)


# =============================================================================
# Manager Tests
# =============================================================================

class TestConfigManager:

    def test_defaults_when_missing(self, manager):
        assert not manager.exists()
        config = manager.load()
        assert config.backend.api_key == "${OPENAI_API_KEY}"

    def test_save_creates_file(self, manager):
        path = manager.save(FolioConfig())
        assert path.exists()
        assert manager.exists()

    def test_round_trip(self, manager):
        config = FolioConfig(
            backend=BackendConfig(engine="openai", api_key="${OPENAI_API_KEY}", lang="deu"),
            resilience=ResilienceConfig(max_retries=1),
            batch=BatchConfig(concurrency=8),
        )
        manager.save(config)

        loaded = manager.load()
        assert loaded == config

    def test_env_refs_not_expanded_on_disk(self, manager, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-secret")
        manager.save(manager.load())

        raw = manager.config_path.read_text()
        assert "sk-secret" not in raw
        assert "${OPENAI_API_KEY}" in raw

    def test_partial_file_gets_defaults(self, manager, tmp_storage):
        (tmp_storage / "config.yaml").write_text(yaml.dump({"backend": {"engine": "livetext"}}))

        config = manager.load()
        assert config.backend.engine == "livetext"
        assert config.resilience.failure_threshold == 5

    def test_empty_file(self, manager, tmp_storage):
        (tmp_storage / "config.yaml").write_text("")
        assert manager.load().backend.engine == "tesseract"


class TestLoadConfig:

    def test_resolves_api_key(self, tmp_storage, monkeypatch, no_env_file):
        monkeypatch.setenv("MY_OCR_KEY", "sk-abc")
        save_config(FolioConfig(backend=BackendConfig(engine="openai", api_key="${MY_OCR_KEY}")), tmp_storage)

        config = load_config(tmp_storage, env_file=no_env_file)
        assert config.backend.api_key == "sk-abc"

    def test_openai_key_fallback(self, tmp_storage, monkeypatch, no_env_file):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-fallback")
        save_config(FolioConfig(backend=BackendConfig(engine="openai")), tmp_storage)

        assert load_config(tmp_storage, env_file=no_env_file).backend.api_key == "sk-fallback"

    def test_no_fallback_for_local_engines(self, tmp_storage, monkeypatch, no_env_file):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-fallback")
        save_config(FolioConfig(backend=BackendConfig(engine="tesseract")), tmp_storage)

        assert load_config(tmp_storage, env_file=no_env_file).backend.api_key is None

    def test_dotenv_file(self, tmp_storage, tmp_path, monkeypatch):
        monkeypatch.delenv("FOLIO_DOTENV_KEY", raising=False)
        env_file = tmp_path / ".env"
        env_file.write_text("FOLIO_DOTENV_KEY=from-dotenv\n")
        save_config(FolioConfig(backend=BackendConfig(api_key="${FOLIO_DOTENV_KEY}")), tmp_storage)

        try:
            assert load_config(tmp_storage, env_file=env_file).backend.api_key == "from-dotenv"
        finally:
            monkeypatch.delenv("FOLIO_DOTENV_KEY", raising=False)

    def test_storage_root_from_env(self, tmp_storage, monkeypatch):
        monkeypatch.setenv("FOLIO_STORAGE_ROOT", str(tmp_storage))
        assert get_storage_root() == tmp_storage.resolve()
