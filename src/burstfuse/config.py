from __future__ import annotations

from dataclasses import dataclass, field
import math
from pathlib import Path
from typing import Any


@dataclass
class PipelineConfig:
    denoise_levels: int = 4
    extend_edge_amount: int = 6
    expanded_range: int = 16384
    spatial_weight: float = 1.0 / (2.0 * math.sqrt(2.0))
    motion_threshold: float = 4.0
    registration_levels: int = 5
    registration_iterations: int = 50
    registration_epsilon: float = 0.001
    hdr_ev_threshold: float = 1.0
    max_hdr_error: float = 0.0001
    hdr_clip_threshold: float = 16.0
    hdr_interior_margin: int = 32
    hdr_headroom_gain: bool = False
    preview_downscale: int = 2


@dataclass
class OutputConfig:
    write_preview: bool = True
    thumbnail_width: int = 320
    dng_shading_map: bool = True
    emit_processing_record: bool = True
    write_debug_tiff: bool = False


@dataclass
class AppConfig:
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    log_level: str = "INFO"
    log_file: Path | None = None
    buffer_pool_bytes: int | None = None


def _expand_path(value: str | None, base: Path) -> Path | None:
    if value in (None, ""):
        return None
    path = Path(value)
    if not path.is_absolute():
        path = (base / path).resolve()
    return path


def _validate(pipeline: PipelineConfig, output: OutputConfig) -> None:
    if pipeline.denoise_levels < 1:
        raise ValueError("pipeline.denoise_levels must be >= 1")
    if pipeline.extend_edge_amount < pipeline.denoise_levels:
        raise ValueError("pipeline.extend_edge_amount must be >= pipeline.denoise_levels")
    if not 0 < pipeline.expanded_range <= 65535:
        raise ValueError("pipeline.expanded_range must be in (0, 65535]")
    if pipeline.registration_levels < 1:
        raise ValueError("pipeline.registration_levels must be >= 1")
    if pipeline.preview_downscale not in (2, 4, 8):
        raise ValueError("pipeline.preview_downscale must be one of 2, 4, 8")
    if output.thumbnail_width < 16:
        raise ValueError("output.thumbnail_width must be >= 16")


def load_config(path: str | Path) -> AppConfig:
    try:
        import yaml  # type: ignore
    except Exception as exc:
        raise RuntimeError("PyYAML is required for config loading. Install with: pip install PyYAML") from exc

    cfg_path = Path(path).expanduser().resolve()
    with cfg_path.open("r", encoding="utf-8") as f:
        raw: dict[str, Any] = yaml.safe_load(f) or {}

    base = cfg_path.parent
    pipeline_raw = raw.get("pipeline", {}) or {}
    output_raw = raw.get("output", {}) or {}
    defaults = PipelineConfig()

    pipeline = PipelineConfig(
        denoise_levels=int(pipeline_raw.get("denoise_levels", defaults.denoise_levels)),
        extend_edge_amount=int(pipeline_raw.get("extend_edge_amount", defaults.extend_edge_amount)),
        expanded_range=int(pipeline_raw.get("expanded_range", defaults.expanded_range)),
        spatial_weight=float(pipeline_raw.get("spatial_weight", defaults.spatial_weight)),
        motion_threshold=float(pipeline_raw.get("motion_threshold", defaults.motion_threshold)),
        registration_levels=int(pipeline_raw.get("registration_levels", defaults.registration_levels)),
        registration_iterations=int(pipeline_raw.get("registration_iterations", defaults.registration_iterations)),
        registration_epsilon=float(pipeline_raw.get("registration_epsilon", defaults.registration_epsilon)),
        hdr_ev_threshold=float(pipeline_raw.get("hdr_ev_threshold", defaults.hdr_ev_threshold)),
        max_hdr_error=float(pipeline_raw.get("max_hdr_error", defaults.max_hdr_error)),
        hdr_clip_threshold=float(pipeline_raw.get("hdr_clip_threshold", defaults.hdr_clip_threshold)),
        hdr_interior_margin=int(pipeline_raw.get("hdr_interior_margin", defaults.hdr_interior_margin)),
        hdr_headroom_gain=bool(pipeline_raw.get("hdr_headroom_gain", False)),
        preview_downscale=int(pipeline_raw.get("preview_downscale", defaults.preview_downscale)),
    )

    output = OutputConfig(
        write_preview=bool(output_raw.get("write_preview", True)),
        thumbnail_width=int(output_raw.get("thumbnail_width", 320)),
        dng_shading_map=bool(output_raw.get("dng_shading_map", True)),
        emit_processing_record=bool(output_raw.get("emit_processing_record", True)),
        write_debug_tiff=bool(output_raw.get("write_debug_tiff", False)),
    )
    _validate(pipeline, output)

    pool_bytes = raw.get("buffer_pool_bytes")
    return AppConfig(
        pipeline=pipeline,
        output=output,
        log_level=str(raw.get("log_level", "INFO")),
        log_file=_expand_path(raw.get("log_file"), base),
        buffer_pool_bytes=int(pool_bytes) if pool_bytes is not None else None,
    )
