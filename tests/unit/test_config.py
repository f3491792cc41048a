"""Unit tests for configuration loading."""

import pytest

from lesefluss.config import ServerConfig, get_config, load_config, reset_config, set_config
from lesefluss.log_system.correlation import (
    clear_initialization_correlation_id,
    get_correlation_id,
    set_correlation_id,
    set_initialization_correlation_id,
)
from lesefluss.log_system.unified_logger import UnifiedLogger


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in ("LESEFLUSS_CONFIG", "LESEFLUSS_DB_PATH", "LESEFLUSS_LOG_LEVEL", "LESEFLUSS_SYNC_DELAY"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr("lesefluss.config.DEFAULT_HOME", tmp_path / "home")
    yield
    reset_config()


class TestLoadConfig:
    """Tests for layered configuration."""

    def test_defaults(self):
        """Test defaults apply without a file or environment."""
        config = load_config()

        assert config.fetch_max_attempts == 3
        assert config.max_items_per_feed == 50
        assert config.image_cache_url == "http://127.0.0.1:3001/cached-images"

    def test_yaml_file(self, tmp_path):
        """Test values from a YAML file, with unknown keys ignored."""
        path = tmp_path / "config.yaml"
        path.write_text(
            "public_base_url: https://reader.example/\n"
            "sync_delay_seconds: 2\n"
            "unknown_key: 1\n"
        )

        config = load_config(str(path))

        assert config.public_base_url == "https://reader.example/"
        assert config.image_cache_url == "https://reader.example/cached-images"
        assert config.sync_delay_seconds == 2.0

    def test_environment_overrides_file(self, tmp_path, monkeypatch):
        """Test environment variables win over the file."""
        path = tmp_path / "config.yaml"
        path.write_text("log_level: DEBUG\nsync_delay_seconds: 2\n")
        monkeypatch.setenv("LESEFLUSS_CONFIG", str(path))
        monkeypatch.setenv("LESEFLUSS_SYNC_DELAY", "0.5")

        config = load_config()

        assert config.log_level == "DEBUG"
        assert config.sync_delay_seconds == 0.5

    def test_missing_explicit_file(self, tmp_path):
        """Test an explicitly requested file must exist."""
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "missing.yaml"))

    def test_process_config(self):
        """Test the process-wide config can be replaced and reset."""
        custom = ServerConfig(name="custom")
        set_config(custom)
        assert get_config() is custom

        reset_config()
        assert get_config() is not custom


class TestLogging:
    """Tests for the unified logger and correlation ids."""

    def test_records_carry_correlation_id(self):
        """Test the filter stamps records with the current correlation id."""
        UnifiedLogger.initialize_default(ServerConfig(log_level="DEBUG"))
        logger = UnifiedLogger.get_logger("tests")
        handler = UnifiedLogger._handlers[0]
        records = []
        handler.emit = records.append

        set_correlation_id("req_abc")
        try:
            logger.info("hello")
        finally:
            set_correlation_id(None)
            UnifiedLogger.close()

        assert logger.name == "lesefluss.tests"
        assert not UnifiedLogger.is_initialized()
        assert records[0].correlation_id == "req_abc"

    def test_startup_correlation_id_fallback(self):
        """Test the startup id is used until a request id is set."""
        set_initialization_correlation_id("startup_123")
        try:
            assert get_correlation_id() == "startup_123"
        finally:
            clear_initialization_correlation_id()

        assert get_correlation_id() is None
