"""Persistence of generated images and their thumbnails."""

import io
import json
import time
from dataclasses import dataclass
from pathlib import Path

from PIL import Image
from PIL.PngImagePlugin import PngInfo

from config import settings


QUICK_DIR_NAME = "quick"


@dataclass
class StoredImage:
    """Locations of a stored image and its thumbnail."""
    file_path: Path
    thumbnail_path: Path


class ImageStore:
    """Writes generated images under per-project directories."""

    def __init__(self, images_dir: Path, thumbnails_dir: Path, thumbnail_size: int | None = None):
        """Initialize the store.

        Args:
            images_dir: Root directory for full-size images
            thumbnails_dir: Root directory for thumbnails
            thumbnail_size: Maximum thumbnail edge in pixels
        """
        self.images_dir = images_dir
        self.thumbnails_dir = thumbnails_dir
        self.thumbnail_size = thumbnail_size or settings.image.thumbnail_size

    def save(
        self,
        image_data: bytes,
        project_id: int | None,
        job_id: str,
        seed: int,
        metadata: dict | None = None,
        extension: str = "png",
    ) -> StoredImage:
        """
        Write an image and its thumbnail.

        The original bytes are written untouched. The thumbnail is a PNG
        carrying the generation metadata in its text chunks.

        Args:
            image_data: Encoded image returned by the API
            project_id: Owning project, or None for quick jobs
            job_id: Job the image belongs to
            seed: Seed used for the image
            metadata: Prompts and parameters to embed in the thumbnail
            extension: Suffix of the original file, matching its encoding

        Returns:
            Paths of the written files

        Raises:
            OSError: If a file cannot be written
            PIL.UnidentifiedImageError: If the bytes are not an image
        """
        folder = str(project_id) if project_id is not None else QUICK_DIR_NAME
        stem = f"{job_id}_{seed}_{int(time.time() * 1000)}"
        suffix = extension.lower().lstrip(".") or "png"

        file_path = self.images_dir / folder / f"{stem}.{suffix}"
        # Thumbnails are always PNG so they can carry text chunks
        thumbnail_path = self.thumbnails_dir / folder / f"{stem}.png"
        file_path.parent.mkdir(parents=True, exist_ok=True)
        thumbnail_path.parent.mkdir(parents=True, exist_ok=True)

        file_path.write_bytes(image_data)

        try:
            self._write_thumbnail(image_data, thumbnail_path, job_id, seed, metadata or {})
        except Exception:
            file_path.unlink(missing_ok=True)
            raise

        return StoredImage(file_path=file_path, thumbnail_path=thumbnail_path)

    def _write_thumbnail(
        self,
        image_data: bytes,
        thumbnail_path: Path,
        job_id: str,
        seed: int,
        metadata: dict,
    ) -> None:
        """Render a bounded PNG thumbnail with embedded metadata."""
        with Image.open(io.BytesIO(image_data)) as img:
            thumb = img.copy()
        if thumb.mode not in ("RGB", "RGBA", "L", "LA", "P"):
            thumb = thumb.convert("RGB")
        thumb.thumbnail((self.thumbnail_size, self.thumbnail_size))

        png_info = PngInfo()
        png_info.add_text("job_id", job_id)
        png_info.add_text("seed", str(seed))
        prompts = metadata.get("prompts", {})
        png_info.add_text("prompt", prompts.get("general_prompt", ""))
        png_info.add_text("negative_prompt", prompts.get("negative_prompt", ""))
        if metadata:
            png_info.add_text("metadata", json.dumps(metadata))

        thumb.save(thumbnail_path, format="PNG", pnginfo=png_info)
