"""Tests for config modules."""

from pathlib import Path

from src.filewatcher.config import WatcherConfig
from src.watchhub.config import HubConfig


class TestWatcherConfig:
    """Tests for WatcherConfig class."""

    def test_default_values(self):
        config = WatcherConfig()
        assert config.server_url == "http://localhost:9090"
        assert config.db_path == Path("filewatcher.db")
        assert config.poll_interval_ms == 500
        assert config.retry_interval_ms == 100
        assert config.backoff_min_ms == 500
        assert config.backoff_factor == 1.5
        assert config.backoff_max_ms == 30000
        assert config.native_events is True

    def test_custom_values(self, tmp_path):
        config = WatcherConfig(
            db_path=tmp_path / "custom.db",
            poll_interval_ms=100,
            native_events=False,
        )
        assert config.db_path == tmp_path / "custom.db"
        assert config.poll_interval_ms == 100
        assert config.native_events is False


class TestHubConfig:
    """Tests for HubConfig class."""

    def test_default_values(self):
        config = HubConfig()
        assert config.host == "127.0.0.1"
        assert config.port == 9090
        assert config.strict_violations is False
