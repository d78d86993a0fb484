from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Protocol


logger = logging.getLogger(__name__)

FUSION_END = 75.0
POST_PROCESS_END = 95.0


class ProgressListener(Protocol):
    def on_progress_update(self, progress: int) -> None:
        ...

    def on_preview_saved(self, output_path: str) -> str:
        """Called once the preview is on disk; returns metadata JSON for the capture."""
        ...

    def on_error(self, error: str) -> None:
        ...

    def on_completed(self) -> None:
        ...


class LoggingProgressListener:
    """Listener that only logs; used by the CLI."""

    def __init__(self) -> None:
        self.errors: list[str] = []
        self.completed = False

    def on_progress_update(self, progress: int) -> None:
        logger.info("progress %d%%", progress)

    def on_preview_saved(self, output_path: str) -> str:
        logger.info("preview saved to %s", output_path)
        return json.dumps({"preview": Path(output_path).name})

    def on_error(self, error: str) -> None:
        self.errors.append(error)
        logger.error("processing failed: %s", error)

    def on_completed(self) -> None:
        self.completed = True
        logger.info("processing completed")


class ImageProgressHelper:
    """Maps pipeline milestones to percentages: fusion up to 75, post-process 95, saved 100."""

    def __init__(self, listener: ProgressListener, num_images: int, start: int = 0) -> None:
        self._listener = listener
        self._start = float(start)
        self._per_image = (FUSION_END - self._start) / max(1, num_images)

    def next_fused_image(self, current: int) -> None:
        self._listener.on_progress_update(int(self._start + self._per_image * current))

    def denoise_completed(self) -> None:
        self._listener.on_progress_update(int(FUSION_END))

    def post_process_completed(self) -> None:
        self._listener.on_progress_update(int(POST_PROCESS_END))

    def image_saved(self) -> None:
        self._listener.on_progress_update(100)
        self._listener.on_completed()
