from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
import json
from pathlib import Path
from typing import Any


@dataclass
class ProcessingRecord:
    container: str
    output: str
    reference_frame: str
    fused_frame_count: int
    exposure_time: str | None
    iso: int
    ev: float
    noise: float
    denoise_weights: list[list[float]]
    hdr_applied: bool
    hdr_error: float | None
    dng_written: bool
    settings: dict[str, Any]
    pipeline_hash: str
    tool_version: str
    created_at_utc: str


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def write_processing_record(path: Path, record: ProcessingRecord) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(asdict(record), f, indent=2, sort_keys=True)
        f.write("\n")
