"""Runtime settings provider (API key and generation delay)."""

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from filelock import FileLock

from config import settings


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationSettings:
    """Settings read by the queue processor before each job."""
    api_key: str | None
    generation_delay_ms: int


class SettingsService:
    """Stores user-editable settings in a JSON file.

    Values missing from the file fall back to the environment
    configuration.
    """

    def __init__(self, settings_path: Path):
        """Initialize the service.

        Args:
            settings_path: Path to settings.json
        """
        self.settings_path = settings_path
        self._lock_path = settings_path.with_suffix(".lock")

    def _read(self) -> dict:
        if not self.settings_path.exists():
            return {}
        try:
            data = json.loads(self.settings_path.read_text())
        except json.JSONDecodeError as e:
            logger.warning(f"Corrupted settings file, using defaults: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def load(self) -> GenerationSettings:
        """Read the current settings."""
        data = self._read()
        delay = data.get("generation_delay_ms")
        try:
            delay = int(delay) if delay is not None else settings.generation.default_delay_ms
        except (TypeError, ValueError):
            logger.warning(f"Invalid generation delay {delay!r}, using default")
            delay = settings.generation.default_delay_ms

        return GenerationSettings(
            api_key=data.get("api_key") or settings.novelai.api_key,
            generation_delay_ms=max(0, delay),
        )

    def update(self, api_key: str | None = None, generation_delay_ms: int | None = None) -> GenerationSettings:
        """Change stored settings; arguments left as None are kept.

        An empty api_key string removes the stored key.
        """
        self.settings_path.parent.mkdir(parents=True, exist_ok=True)
        with FileLock(self._lock_path, timeout=10):
            data = self._read()
            if api_key is not None:
                if api_key:
                    data["api_key"] = api_key
                else:
                    data.pop("api_key", None)
            if generation_delay_ms is not None:
                data["generation_delay_ms"] = generation_delay_ms
            tmp_path = self.settings_path.with_suffix(".tmp")
            tmp_path.write_text(json.dumps(data, indent=2))
            tmp_path.replace(self.settings_path)

        logger.info("Settings updated")
        return self.load()
