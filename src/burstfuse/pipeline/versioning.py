from __future__ import annotations

from dataclasses import asdict
import hashlib
import json
from typing import Any

from burstfuse.config import PipelineConfig
from burstfuse.settings import PostProcessSettings


def stable_pipeline_hash(payload: dict[str, Any]) -> str:
    blob = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8")
    return hashlib.sha256(blob).hexdigest()[:16]


def pipeline_fingerprint(config: PipelineConfig, settings: PostProcessSettings, kernel_variant: str) -> str:
    """Hash of everything that changes the rendered pixels for a given container."""
    return stable_pipeline_hash(
        {
            "pipeline": asdict(config),
            "settings": settings.to_dict(),
            "kernel": kernel_variant,
        }
    )
