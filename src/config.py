"""Centralized configuration for the scene batch generator."""

import logging
import os
from dataclasses import dataclass, field
from logging.handlers import RotatingFileHandler
from pathlib import Path


@dataclass(frozen=True)
class NovelAIConfig:
    """Configuration for the image generation API."""
    base_url: str = "https://image.novelai.net"
    model: str = "nai-diffusion-4-full"
    api_key: str | None = None
    timeout: float = 120.0  # seconds per request


@dataclass(frozen=True)
class GenerationConfig:
    """Defaults for the generation queue."""
    default_delay_ms: int = 500
    timing_window: int = 10  # images in the rolling average
    idle_poll_interval: float = 0.5  # seconds


@dataclass(frozen=True)
class ServerConfig:
    """Configuration for the web server."""
    host: str = "127.0.0.1"
    port: int = 8000
    sse_queue_size: int = 100
    sse_timeout: float = 5.0  # seconds between keepalives


@dataclass(frozen=True)
class ImageConfig:
    """Configuration for stored images."""
    thumbnail_size: int = 300


@dataclass(frozen=True)
class LoggingConfig:
    """Configuration for application logging."""
    level: str = "INFO"
    max_bytes: int = 5 * 1024 * 1024
    backup_count: int = 4


@dataclass(frozen=True)
class PathConfig:
    """Centralized path configuration for the application."""

    @property
    def root_dir(self) -> Path:
        """Project root directory."""
        return Path(__file__).parent.parent

    @property
    def data_dir(self) -> Path:
        """Directory for all persisted state and output."""
        override = os.environ.get("SCENE_QUEUE_DATA_DIR")
        if override:
            return Path(override)
        return self.root_dir / "data"

    @property
    def images_dir(self) -> Path:
        """Directory for full-size generated images."""
        return self.data_dir / "images"

    @property
    def thumbnails_dir(self) -> Path:
        """Directory for image thumbnails."""
        return self.data_dir / "thumbnails"

    @property
    def projects_dir(self) -> Path:
        """Directory for project prompt sources."""
        return self.data_dir / "projects"

    @property
    def queue_path(self) -> Path:
        """Path to the job queue JSON file."""
        return self.data_dir / "queue.json"

    @property
    def settings_path(self) -> Path:
        """Path to the runtime settings JSON file."""
        return self.data_dir / "settings.json"

    @property
    def logs_dir(self) -> Path:
        """Directory for rotated log files."""
        return self.data_dir / "logs"


# Singleton path configuration instance
paths = PathConfig()


@dataclass
class Settings:
    """Application settings, can be overridden via environment variables."""
    novelai: NovelAIConfig = field(default_factory=NovelAIConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    image: ImageConfig = field(default_factory=ImageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables with SCENE_QUEUE_ prefix."""
        novelai = NovelAIConfig(
            base_url=os.environ.get("SCENE_QUEUE_NAI_URL", NovelAIConfig.base_url),
            model=os.environ.get("SCENE_QUEUE_NAI_MODEL", NovelAIConfig.model),
            api_key=os.environ.get("SCENE_QUEUE_NAI_API_KEY") or None,
            timeout=float(os.environ.get("SCENE_QUEUE_NAI_TIMEOUT", NovelAIConfig.timeout)),
        )
        generation = GenerationConfig(
            default_delay_ms=int(os.environ.get("SCENE_QUEUE_DELAY_MS", GenerationConfig.default_delay_ms)),
            timing_window=int(os.environ.get("SCENE_QUEUE_TIMING_WINDOW", GenerationConfig.timing_window)),
            idle_poll_interval=float(os.environ.get("SCENE_QUEUE_IDLE_POLL", GenerationConfig.idle_poll_interval)),
        )
        server = ServerConfig(
            host=os.environ.get("SCENE_QUEUE_HOST", ServerConfig.host),
            port=int(os.environ.get("SCENE_QUEUE_PORT", ServerConfig.port)),
            sse_queue_size=int(os.environ.get("SCENE_QUEUE_SSE_QUEUE_SIZE", ServerConfig.sse_queue_size)),
            sse_timeout=float(os.environ.get("SCENE_QUEUE_SSE_TIMEOUT", ServerConfig.sse_timeout)),
        )
        image = ImageConfig(
            thumbnail_size=int(os.environ.get("SCENE_QUEUE_THUMBNAIL_SIZE", ImageConfig.thumbnail_size)),
        )
        logging_config = LoggingConfig(
            level=os.environ.get("SCENE_QUEUE_LOG_LEVEL", LoggingConfig.level),
        )
        return cls(
            novelai=novelai,
            generation=generation,
            server=server,
            image=image,
            logging=logging_config,
        )


# Global settings instance - use from_env() for environment-aware settings
settings = Settings.from_env()


def configure_logging(log_dir: Path | None = None, level: str | None = None) -> None:
    """Install console and rotating file handlers on the root logger.

    The console shows INFO and above; the file under ``log_dir`` keeps
    DEBUG and rotates at ``settings.logging.max_bytes``.
    """
    log_dir = log_dir or paths.logs_dir
    log_dir.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    console = logging.StreamHandler()
    console.setLevel(level or settings.logging.level)
    console.setFormatter(formatter)

    file_handler = RotatingFileHandler(
        log_dir / "app.log",
        maxBytes=settings.logging.max_bytes,
        backupCount=settings.logging.backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for handler in list(root.handlers):
        if getattr(handler, "_scene_queue", False):
            root.removeHandler(handler)
            handler.close()
    for handler in (console, file_handler):
        handler._scene_queue = True
        root.addHandler(handler)
