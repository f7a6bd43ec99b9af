"""Tests for centralized configuration."""

import logging
from pathlib import Path

import pytest

from config import NovelAIConfig, PathConfig, Settings, configure_logging, paths


class TestConfig:
    """Tests for centralized configuration."""

    def test_default_settings(self):
        """Test that default settings are loaded correctly."""
        settings = Settings()

        assert settings.novelai.base_url == "https://image.novelai.net"
        assert settings.novelai.api_key is None
        assert settings.generation.default_delay_ms == 500
        assert settings.generation.timing_window == 10
        assert settings.server.sse_queue_size == 100
        assert settings.image.thumbnail_size == 300

    def test_settings_from_env(self, monkeypatch):
        """Test that settings can be loaded from environment variables."""
        monkeypatch.setenv("SCENE_QUEUE_NAI_API_KEY", "env-key")
        monkeypatch.setenv("SCENE_QUEUE_DELAY_MS", "1200")
        monkeypatch.setenv("SCENE_QUEUE_PORT", "9000")

        settings = Settings.from_env()

        assert settings.novelai.api_key == "env-key"
        assert settings.generation.default_delay_ms == 1200
        assert settings.server.port == 9000

    def test_empty_api_key_env_is_none(self, monkeypatch):
        """Test that an empty key variable counts as unset."""
        monkeypatch.setenv("SCENE_QUEUE_NAI_API_KEY", "")
        assert Settings.from_env().novelai.api_key is None

    def test_immutable_config(self):
        """Test that config dataclasses are immutable."""
        config = NovelAIConfig()
        with pytest.raises(Exception):  # FrozenInstanceError
            config.base_url = "http://changed"

    def test_path_config(self):
        """Test that path configuration provides correct paths."""
        assert isinstance(paths.root_dir, Path)
        assert paths.images_dir == paths.data_dir / "images"
        assert paths.thumbnails_dir == paths.data_dir / "thumbnails"
        assert paths.projects_dir == paths.data_dir / "projects"
        assert paths.queue_path == paths.data_dir / "queue.json"
        assert paths.settings_path == paths.data_dir / "settings.json"

    def test_data_dir_override(self, monkeypatch, temp_dir):
        """Test relocating all state with an environment variable."""
        monkeypatch.setenv("SCENE_QUEUE_DATA_DIR", str(temp_dir))

        assert PathConfig().data_dir == temp_dir
        assert PathConfig().queue_path == temp_dir / "queue.json"


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_installs_rotating_file_handler(self, temp_dir):
        """Test that log records reach the file under the log directory."""
        root = logging.getLogger()
        before = list(root.handlers)
        try:
            configure_logging(log_dir=temp_dir, level="WARNING")
            configure_logging(log_dir=temp_dir, level="WARNING")

            ours = [h for h in root.handlers if getattr(h, "_scene_queue", False)]
            assert len(ours) == 2

            logging.getLogger("scene.test").debug("written to file")
            for handler in ours:
                handler.flush()
            assert "written to file" in (temp_dir / "app.log").read_text()
        finally:
            for handler in list(root.handlers):
                if handler not in before:
                    root.removeHandler(handler)
                    handler.close()
