"""
Tests for configuration management

Tests cover:
- Configuration loading and defaults
- Dot-path reads and validated writes
- Persistence and recovery from bad files
"""
import json

import pytest

from src.utils.config import AppConfig, ConfigManager, SyncConfig
from src.utils.errors import InvalidConfigError


@pytest.fixture
def config_path(tmp_path):
    return tmp_path / "config.json"


class TestConfigManagerInitialization:
    """Tests for ConfigManager initialization"""

    def test_creates_default_file(self, config_path):
        manager = ConfigManager(config_path)

        assert config_path.exists()
        assert json.loads(config_path.read_text())["sync"]["metadata_batch_size"] == 100
        assert manager.config == AppConfig()

    def test_loads_existing_file(self, config_path):
        config_path.write_text(json.dumps({"sync": {"auto_sync_interval": 15}}))

        manager = ConfigManager(config_path)

        assert manager.get_config("sync.auto_sync_interval") == 15
        assert manager.get_config("send.default_send_delay") == 10

    def test_invalid_json(self, config_path):
        config_path.write_text("{not json")

        with pytest.raises(InvalidConfigError):
            ConfigManager(config_path)

    def test_schema_mismatch(self, config_path):
        config_path.write_text(json.dumps({"sync": {"metadata_batch_size": "lots"}}))

        with pytest.raises(InvalidConfigError):
            ConfigManager(config_path)


class TestConfigurationDefaults:
    """Tests for default configuration values"""

    def test_sync_defaults(self):
        sync = SyncConfig()

        assert sync.metadata_batch_size == 100
        assert sync.pool_max_size == 3
        assert sync.connect_attempts == 3
        assert sync.reindex_max_passes == 10
        assert sync.snippet_length == 150

    def test_send_delay_default(self):
        assert AppConfig().send.default_send_delay == 10

    def test_positive_values_enforced(self):
        with pytest.raises(ValueError):
            SyncConfig(metadata_batch_size=0)


class TestConfigurationUpdates:
    """Tests for reading and writing keys"""

    def test_set_and_persist(self, config_path):
        manager = ConfigManager(config_path)

        manager.set_config("send.default_send_delay", 30)

        assert manager.get_config("send.default_send_delay") == 30
        assert ConfigManager(config_path).get_config("send.default_send_delay") == 30

    def test_set_without_persist(self, config_path):
        manager = ConfigManager(config_path)

        manager.set_config("sync.auto_sync", False, persist=False)

        assert manager.get_config("sync.auto_sync") is False
        assert ConfigManager(config_path).get_config("sync.auto_sync") is True

    def test_invalid_value_is_rejected(self, config_path):
        manager = ConfigManager(config_path)

        with pytest.raises(InvalidConfigError):
            manager.set_config("sync.pool_max_size", 0)

        assert manager.get_config("sync.pool_max_size") == 3

    def test_unknown_keys(self, config_path):
        manager = ConfigManager(config_path)

        with pytest.raises(InvalidConfigError):
            manager.get_config("sync.nope")
        with pytest.raises(InvalidConfigError):
            manager.set_config("nope.value", 1)

    def test_reset_to_defaults(self, config_path):
        manager = ConfigManager(config_path)
        manager.set_config("sync.auto_sync_interval", 60)

        manager.reset_to_defaults()

        assert manager.get_config("sync.auto_sync_interval") == 5
