from __future__ import annotations

import json

from burstfuse.progress import ImageProgressHelper, LoggingProgressListener


class _Recorder:
    def __init__(self) -> None:
        self.progress: list[int] = []
        self.completed = 0

    def on_progress_update(self, progress: int) -> None:
        self.progress.append(progress)

    def on_preview_saved(self, output_path: str) -> str:
        return ""

    def on_error(self, error: str) -> None:
        raise AssertionError(error)

    def on_completed(self) -> None:
        self.completed += 1


def test_progress_milestones() -> None:
    listener = _Recorder()
    helper = ImageProgressHelper(listener, num_images=3)
    for i in (1, 2, 3):
        helper.next_fused_image(i)
    helper.denoise_completed()
    helper.post_process_completed()
    helper.image_saved()

    assert listener.progress == [25, 50, 75, 75, 95, 100]
    assert listener.completed == 1


def test_progress_with_no_companion_frames() -> None:
    listener = _Recorder()
    helper = ImageProgressHelper(listener, num_images=0, start=10)
    helper.denoise_completed()
    assert listener.progress == [75]


def test_logging_listener_records_outcome() -> None:
    listener = LoggingProgressListener()
    assert json.loads(listener.on_preview_saved("/tmp/PREVIEW_x.jpg")) == {"preview": "PREVIEW_x.jpg"}
    listener.on_error("boom")
    listener.on_completed()
    assert listener.errors == ["boom"]
    assert listener.completed
