from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
import logging

import numpy as np

from burstfuse.config import PipelineConfig
from burstfuse.decode.types import RawCameraMetadata, RawFrame
from burstfuse.kernels import FusionKernel, Kernels, default_kernels

from .estimation import calc_ev
from .loader import Padding, RawData, load_raw_image, normalize_quad
from .registration import estimate_flow


logger = logging.getLogger(__name__)


class SignalBucket(str, Enum):
    LOW = "low"
    MID = "mid"
    HIGH = "high"

    @classmethod
    def from_signal(cls, signal: float) -> SignalBucket:
        if signal < 0.02:
            return cls.LOW
        if signal < 0.04:
            return cls.MID
        return cls.HIGH


# Less light -> wider difference window.
KERNEL_BY_BUCKET: dict[SignalBucket, FusionKernel] = {
    SignalBucket.LOW: FusionKernel.K7X7,
    SignalBucket.MID: FusionKernel.K5X5,
    SignalBucket.HIGH: FusionKernel.K3X3,
}


@dataclass
class NoiseProfile:
    noise: np.ndarray  # per channel, native units
    signal: np.ndarray  # per channel, ISO 100 equivalent
    signal_level: float  # mean signal / white level

    @property
    def bucket(self) -> SignalBucket:
        return SignalBucket.from_signal(self.signal_level)


@dataclass
class FusionResult:
    quad: np.ndarray  # (4, h, w) uint16 in [0, expanded_range]
    pad: Padding
    frame_count: int
    noise_profile: NoiseProfile


def flow_patch_size(ev: float) -> int:
    return 8 if int(0.5 + ev) >= 8 else 16


def measure_noise_profile(
    reference: RawData,
    camera: RawCameraMetadata,
    patch_size: int,
    kernels: Kernels,
) -> NoiseProfile:
    noise, signal = kernels.measure_noise(reference.quad, patch_size)
    signal = np.asarray(signal, dtype=np.float32) / np.float32(max(reference.metadata.iso, 1) / 100.0)
    white = camera.get_white_level(reference.metadata)
    return NoiseProfile(
        noise=np.asarray(noise, dtype=np.float32),
        signal=signal,
        signal_level=float(np.mean(signal)) / white,
    )


class TemporalFuser:
    """Motion-compensated running average of a burst onto its reference frame."""

    def __init__(self, camera: RawCameraMetadata, config: PipelineConfig, kernels: Kernels | None = None) -> None:
        self.camera = camera
        self.config = config
        self.kernels = kernels or default_kernels()

    def fuse(
        self,
        reference: RawData,
        frames: Sequence[str],
        load_frame: Callable[[str], RawFrame | None],
        on_frame_fused: Callable[[int], None] | None = None,
    ) -> FusionResult:
        """Fold every loadable frame in ``frames`` into ``reference``.

        Frames are loaded one at a time and released right after they are folded in.
        """
        ev = calc_ev(self.camera, reference.metadata)
        patch_size = flow_patch_size(ev)
        profile = measure_noise_profile(reference, self.camera, patch_size, self.kernels)
        kernel = KERNEL_BY_BUCKET[profile.bucket]
        logger.info(
            "fusing %d frames: ev=%.2f patch=%d signal=%.4f kernel=%s",
            len(frames),
            ev,
            patch_size,
            profile.signal_level,
            kernel.name,
        )

        ref_quad = reference.quad.astype(np.float32)
        accumulator = ref_quad.copy()
        fused = 0

        for index, name in enumerate(frames, start=1):
            frame = load_frame(name)
            if frame is None:
                logger.warning("skipping unreadable frame %s", name)
                continue
            try:
                current = load_raw_image(
                    frame,
                    self.camera,
                    extend=True,
                    extend_edge_amount=self.config.extend_edge_amount,
                    kernels=self.kernels,
                )
            finally:
                frame.release()

            if current.quad.shape != reference.quad.shape:
                logger.warning("skipping frame %s with shape %s", name, current.quad.shape)
                continue

            # A flow field that finds nothing is indistinguishable from a still scene.
            flow = estimate_flow(reference.preview, current.preview, patch_size)
            logger.debug("frame %s mean flow (%.2f, %.2f)", name, flow.mean_x, flow.mean_y)

            self.kernels.fuse_denoise(
                ref_quad,
                current.quad,
                flow.flow,
                accumulator,
                profile.noise,
                self.config.spatial_weight,
                self.config.motion_threshold,
                kernel,
            )
            fused += 1
            if on_frame_fused is not None:
                on_frame_fused(index)

        mean = accumulator / np.float32(fused + 1) if fused else ref_quad
        black = self.camera.get_black_level(reference.metadata)
        white = self.camera.get_white_level(reference.metadata)
        quad = normalize_quad(mean, black, white, self.config.expanded_range)
        return FusionResult(quad=quad, pad=reference.pad, frame_count=fused + 1, noise_profile=profile)
