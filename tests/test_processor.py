from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
import json
from pathlib import Path
import zipfile

import numpy as np
from PIL import Image
import tifffile

from burstfuse.config import AppConfig
from burstfuse.kernels import default_kernels
from burstfuse.kernels.render import postprocess, srgb_gamma
from burstfuse.processor import ImageProcessor, PreviewMetadata
from burstfuse.settings import PostProcessSettings

from conftest import make_metadata


GRAY = 400
NEUTRAL_SETTINGS = PostProcessSettings(shadows=1.0, blacks=0.0, white_point=1.0)


class _Recorder:
    def __init__(self) -> None:
        self.progress: list[int] = []
        self.previews: list[str] = []
        self.errors: list[str] = []
        self.completed = 0

    def on_progress_update(self, progress: int) -> None:
        self.progress.append(progress)

    def on_preview_saved(self, output_path: str) -> str:
        self.previews.append(output_path)
        return json.dumps({"faces": [{"left": 1, "top": 2, "right": 3, "bottom": 4}]})

    def on_error(self, error: str) -> None:
        self.errors.append(error)

    def on_completed(self) -> None:
        self.completed += 1


def _gray_burst(count: int = 3) -> list[np.ndarray]:
    return [np.full((96, 128), GRAY, dtype=np.uint16) for _ in range(count)]


def test_process_constant_burst(tmp_path: Path, burst_writer: Callable[..., Path]) -> None:
    container = burst_writer(_gray_burst(), settings=NEUTRAL_SETTINGS)
    output = tmp_path / "out" / "IMG_0001.jpg"
    listener = _Recorder()

    result = ImageProcessor().process(container, output, listener)

    assert result is not None
    assert listener.errors == []
    assert listener.completed == 1
    assert listener.progress[0] == 0
    assert listener.progress[-1] == 100
    assert listener.progress == sorted(listener.progress)
    assert 75 in listener.progress and 95 in listener.progress
    assert listener.previews == [str(output.with_name("PREVIEW_IMG_0001.jpg"))]

    assert result.fused_frames == 3
    assert not result.hdr_applied
    assert result.dng_path is None
    assert result.preview_path is not None and result.preview_path.exists()

    with Image.open(output) as img:
        pixels = np.asarray(img.convert("RGB"))
        orientation = img.getexif()[274]
    expected = round(255 * float(srgb_gamma(np.float32(GRAY / 1023))))
    assert pixels.shape == (96, 128, 3)
    assert np.all(np.abs(pixels.astype(np.int32) - expected) <= 2)
    assert orientation == 1

    record = json.loads(output.with_suffix(".json").read_text(encoding="utf-8"))
    assert record["fused_frame_count"] == 3
    assert record["reference_frame"] == "frame_0000.raw"
    assert record["exposure_time"] == "1/100"
    assert record["settings"]["shadows"] == 1.0
    assert len(record["pipeline_hash"]) == 16


def test_process_writes_dng_when_requested(tmp_path: Path, burst_writer: Callable[..., Path]) -> None:
    container = burst_writer(_gray_burst(2), settings=NEUTRAL_SETTINGS)
    output = tmp_path / "IMG_0002.jpg"

    result = ImageProcessor().process(container, output, _Recorder(), settings=replace(NEUTRAL_SETTINGS, dng=True))

    assert result is not None
    assert result.dng_path == output.with_suffix(".dng")
    with tifffile.TiffFile(result.dng_path) as tif:
        page = tif.pages[0]
        assert page.shape == (96, 128)
        assert page.tags[50717].value == 16384
        data = page.asarray()
    assert np.all(np.abs(data.astype(np.int32) - round(GRAY / 1023 * 16384)) <= 1)


def test_process_passes_padding_to_renderer(tmp_path: Path, burst_writer: Callable[..., Path]) -> None:
    crops: list[tuple[int, int, int, int]] = []

    def _recording(*args: object) -> np.ndarray:
        crops.append(args[6])  # type: ignore[arg-type]
        return postprocess(*args)  # type: ignore[arg-type]

    kernels = replace(default_kernels(), postprocess=_recording)
    container = burst_writer(_gray_burst(1), settings=NEUTRAL_SETTINGS)
    config = AppConfig()
    config.output.write_preview = False
    config.output.emit_processing_record = False

    result = ImageProcessor(config, kernels=kernels).process(container, tmp_path / "x.jpg", _Recorder())
    assert result is not None
    assert result.fused_frames == 1
    assert result.preview_path is None
    assert result.record_path is None
    # 48 quad rows are padded to 64, split evenly above and below.
    assert crops == [(0, 8, 0, 8)]


def test_hdr_frames_are_kept_out_of_fusion(tmp_path: Path, burst_writer: Callable[..., Path]) -> None:
    metadata = [make_metadata(timestamp_ns=i) for i in range(3)]
    metadata.append(make_metadata(timestamp_ns=3, exposure_time_ns=2_500_000))
    mosaics = _gray_burst(3) + [np.full((96, 128), GRAY // 4, dtype=np.uint16)]
    container = burst_writer(mosaics, metadata=metadata, settings=NEUTRAL_SETTINGS, is_hdr=True)
    listener = _Recorder()

    result = ImageProcessor().process(container, tmp_path / "hdr.jpg", listener)

    assert result is not None
    assert result.fused_frames == 3
    assert listener.completed == 1


def test_empty_container_reports_no_frames(tmp_path: Path, burst_writer: Callable[..., Path]) -> None:
    container = burst_writer([])
    output = tmp_path / "empty.jpg"
    listener = _Recorder()

    assert ImageProcessor().process(container, output, listener) is None
    assert listener.errors == ["No frames found"]
    assert listener.completed == 1
    assert not output.exists()


def test_unreadable_reference_is_fatal(tmp_path: Path, burst_writer: Callable[..., Path]) -> None:
    container = burst_writer(_gray_burst(2))
    broken = tmp_path / "broken.zip"
    with zipfile.ZipFile(container) as src, zipfile.ZipFile(broken, "w") as dst:
        for name in src.namelist():
            dst.writestr(name, b"garbage" if name == "frame_0000.raw" else src.read(name))
    listener = _Recorder()

    assert ImageProcessor().process(broken, tmp_path / "broken.jpg", listener) is None
    assert listener.errors == ["Invalid reference frames"]
    assert listener.completed == 1


def test_zero_white_balance_is_fatal(tmp_path: Path, burst_writer: Callable[..., Path]) -> None:
    metadata = [make_metadata(timestamp_ns=i, as_shot_neutral=(0.0, 0.0, 0.0)) for i in range(2)]
    container = burst_writer(_gray_burst(2), metadata=metadata, settings=NEUTRAL_SETTINGS)
    listener = _Recorder()

    assert ImageProcessor().process(container, tmp_path / "wb.jpg", listener) is None
    assert listener.errors == ["Camera white balance vector is zero"]
    assert listener.completed == 1


def test_preview_metadata_parse() -> None:
    assert PreviewMetadata.parse(None).faces == []
    assert PreviewMetadata.parse("{not json").faces == []
    parsed = PreviewMetadata.parse('{"faces": [{"left": 1, "top": 2, "right": 3, "bottom": 4}, {"left": 1}]}')
    assert parsed.faces == [(1, 2, 3, 4)]


def test_bad_gps_settings_do_not_abort_the_job(tmp_path: Path, burst_writer: Callable[..., Path]) -> None:
    container = burst_writer(_gray_burst(2), settings=NEUTRAL_SETTINGS)
    output = tmp_path / "IMG_0004.jpg"
    listener = _Recorder()
    settings = replace(NEUTRAL_SETTINGS, gps_latitude=float("nan"), gps_time="2024-01-01T00:00:00")

    result = ImageProcessor().process(container, output, listener, settings=settings)

    assert result is not None
    assert listener.errors == []
    assert listener.completed == 1
    with Image.open(output) as img:
        exif = img.getexif()
    assert exif[274] == 1
    assert 0x8825 not in exif
