"""Rolling per-image timing and ETA for the active batch."""

from collections import deque
from datetime import datetime

from .models import BatchTiming


class BatchTimingTracker:
    """Tracks how long images take within the current batch.

    A batch opens when images are added while none is active, grows when
    more jobs are enqueued before it drains, and closes on reset().
    """

    def __init__(self, window: int = 10):
        """Initialize the tracker.

        Args:
            window: Number of recent durations in the moving average
        """
        self.window = window
        self._started_at: datetime | None = None
        self._total_images = 0
        self._completed_images = 0
        self._durations: deque[float] = deque(maxlen=window)

    @property
    def active(self) -> bool:
        return self._started_at is not None

    def add_images(self, count: int) -> None:
        """Add images to the batch, opening a new batch if none is active."""
        if count <= 0:
            return
        if self._started_at is None:
            self._started_at = datetime.now()
            self._total_images = 0
            self._completed_images = 0
            self._durations.clear()
        self._total_images += count

    def remove_images(self, count: int) -> None:
        """Drop images that will no longer be generated (cancelled jobs)."""
        if self._started_at is None or count <= 0:
            return
        self._total_images = max(self._completed_images, self._total_images - count)

    def record_image(self, duration_ms: float) -> None:
        """Record one finished image and its wall-clock duration."""
        if self._started_at is None:
            return
        self._durations.append(duration_ms)
        self._completed_images = min(self._completed_images + 1, self._total_images)

    @property
    def avg_image_duration_ms(self) -> float | None:
        if not self._durations:
            return None
        return sum(self._durations) / len(self._durations)

    @property
    def eta_ms(self) -> float | None:
        """Estimated time left, or None until the first image finishes."""
        avg = self.avg_image_duration_ms
        if avg is None:
            return None
        return avg * (self._total_images - self._completed_images)

    def snapshot(self) -> BatchTiming | None:
        """Current timing, or None when no batch is active."""
        if self._started_at is None:
            return None
        return BatchTiming(
            started_at=self._started_at,
            total_images=self._total_images,
            completed_images=self._completed_images,
            avg_image_duration_ms=self.avg_image_duration_ms,
            eta_ms=self.eta_ms,
        )

    def reset(self) -> None:
        """Close the active batch."""
        self._started_at = None
        self._total_images = 0
        self._completed_images = 0
        self._durations.clear()
