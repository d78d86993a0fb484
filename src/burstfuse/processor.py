from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
from pathlib import Path

from burstfuse import __version__
from burstfuse.config import AppConfig
from burstfuse.container import ContainerError, RawContainer
from burstfuse.decode.base import InvalidStateError
from burstfuse.decode.buffers import InMemoryBufferPool, RawBufferPool
from burstfuse.decode.types import RawCameraMetadata, RawFrame, RawImageMetadata
from burstfuse.kernels import Kernels, default_kernels
from burstfuse.pipeline.compositor import create_preview, post_process
from burstfuse.pipeline.estimation import calc_ev, fill_unset_settings, get_min_ev
from burstfuse.pipeline.hdr import HdrLayer, prepare_hdr
from burstfuse.pipeline.loader import load_raw_image
from burstfuse.pipeline.spatial import DenoiseResult, WaveletDenoiser
from burstfuse.pipeline.temporal import FusionResult, TemporalFuser
from burstfuse.pipeline.versioning import pipeline_fingerprint
from burstfuse.progress import ImageProgressHelper, ProgressListener
from burstfuse.settings import PostProcessSettings
from burstfuse.utils.formatting import exposure_ns_to_fraction
from burstfuse.utils.logging_utils import Measure
from burstfuse.write import (
    DngWriteError,
    ExifWriteError,
    ProcessingRecord,
    add_exif_metadata,
    build_raw_image,
    make_thumbnail,
    preview_path,
    write_dng,
    write_jpeg,
    write_processing_record,
    write_quad_debug_tiff,
)
from burstfuse.write.manifests import utc_now_iso


logger = logging.getLogger(__name__)


@dataclass
class PreviewMetadata:
    """Capture metadata the caller returns once the preview exists."""

    faces: list[tuple[int, int, int, int]] = field(default_factory=list)

    @classmethod
    def parse(cls, text: str | None) -> PreviewMetadata:
        if not text:
            return cls()
        try:
            doc = json.loads(text)
        except json.JSONDecodeError:
            logger.warning("ignoring malformed preview metadata")
            return cls()
        faces = []
        for face in doc.get("faces", []) if isinstance(doc, dict) else []:
            try:
                faces.append((int(face["left"]), int(face["top"]), int(face["right"]), int(face["bottom"])))
            except (KeyError, TypeError, ValueError):
                continue
        return cls(faces=faces)


@dataclass
class ProcessingResult:
    output_path: Path
    preview_path: Path | None
    dng_path: Path | None
    record_path: Path | None
    fused_frames: int
    hdr_applied: bool
    noise: float
    settings: PostProcessSettings


@dataclass
class _DenoiseOutput:
    fusion: FusionResult
    spatial: DenoiseResult


class ImageProcessor:
    """Runs one capture job: fusion, denoise, optional HDR, rendering and encoding.

    Every outcome is reported through the listener; fatal input problems produce
    ``on_error`` followed by ``on_completed`` and no output.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        kernels: Kernels | None = None,
        pool: RawBufferPool | None = None,
    ) -> None:
        self.config = config or AppConfig()
        self.kernels = kernels or default_kernels()
        self.pool: RawBufferPool = pool if pool is not None else InMemoryBufferPool(self.config.buffer_pool_bytes)

    def process(
        self,
        container_path: Path,
        output_path: Path,
        listener: ProgressListener,
        settings: PostProcessSettings | None = None,
    ) -> ProcessingResult | None:
        """Process one container; ``settings`` replaces the settings stored in it."""
        try:
            return self._process(Path(container_path), Path(output_path), listener, settings)
        except (InvalidStateError, ContainerError) as exc:
            logger.error("cannot process %s: %s", container_path, exc)
            listener.on_error(str(exc))
        except Exception as exc:
            logger.exception("processing failed for %s", container_path)
            listener.on_error(str(exc))
        listener.on_completed()
        return None

    def _split_underexposed(self, container: RawContainer) -> list[RawFrame]:
        camera = container.get_camera_metadata()
        min_ev = get_min_ev(container)
        underexposed: list[RawFrame] = []
        for name in container.get_frames():
            ev = calc_ev(camera, container.get_frame(name).metadata)
            if ev - min_ev > self.config.pipeline.hdr_ev_threshold:
                frame = container.load_frame(name)
                if frame is not None:
                    underexposed.append(frame)
                container.remove_frame(name)
        logger.info("found %d underexposed frames", len(underexposed))
        return underexposed

    def _process(
        self,
        container_path: Path,
        output_path: Path,
        listener: ProgressListener,
        settings_override: PostProcessSettings | None,
    ) -> ProcessingResult:
        cfg = self.config
        listener.on_progress_update(0)

        container = RawContainer.open(container_path, pool=self.pool)
        camera = container.get_camera_metadata()
        if settings_override is not None:
            container.set_post_process_settings(settings_override)

        underexposed: list[RawFrame] = []
        reference: RawFrame | None = None
        try:
            if container.is_hdr() and container.get_frames():
                underexposed = self._split_underexposed(container)

            frames = container.get_frames()
            if not frames:
                raise InvalidStateError("No frames found")

            reference = container.load_frame(frames[0])
            if reference is None:
                raise InvalidStateError("Invalid reference frames")
            container.remove_frame(reference.name)

            settings = fill_unset_settings(reference, camera, container.get_post_process_settings(), self.kernels)
            container.set_post_process_settings(settings)

            preview_file = None
            if cfg.output.write_preview:
                preview_file = preview_path(output_path)
                with Measure("preview"):
                    preview = create_preview(reference, camera, settings, cfg.pipeline.preview_downscale, self.kernels)
                write_jpeg(preview_file, preview, settings.jpeg_quality)
                preview_meta = PreviewMetadata.parse(listener.on_preview_saved(str(preview_file)))
                logger.info("preview metadata: %d faces", len(preview_meta.faces))

            hdr: HdrLayer | None = None
            if underexposed:
                with Measure("prepare hdr"):
                    hdr = prepare_hdr(camera, settings, reference, underexposed[0], cfg.pipeline, self.kernels)
            for frame in underexposed:
                frame.release()
            underexposed = []

            progress = ImageProgressHelper(listener, len(container.get_frames()), 0)
            with Measure("denoise"):
                denoised = self._denoise(reference, container, camera, settings, progress)
            reference_meta = reference.metadata
            reference_name = reference.name
            reference.release()
            progress.denoise_completed()

            dng_file = None
            if settings.dng:
                dng_file = self._write_dng(output_path, denoised, camera, reference_meta)

            with Measure("post process"):
                image = post_process(
                    denoised.spatial.planes,
                    denoised.fusion.pad,
                    denoised.spatial.noise,
                    reference_meta,
                    camera,
                    settings,
                    cfg.pipeline.expanded_range,
                    hdr=hdr,
                    kernels=self.kernels,
                )
            progress.post_process_completed()

            write_jpeg(output_path, image, settings.jpeg_quality)
            try:
                thumbnail = make_thumbnail(image, cfg.output.thumbnail_width)
                add_exif_metadata(output_path, reference_meta, camera, settings, thumbnail)
            except (OSError, ExifWriteError) as exc:
                logger.error("failed to write exif metadata to %s: %s", output_path, exc)

            if cfg.output.write_debug_tiff:
                try:
                    write_quad_debug_tiff(output_path.with_suffix(".quad.tiff"), denoised.spatial.planes)
                except (OSError, RuntimeError) as exc:
                    logger.error("failed to write debug tiff: %s", exc)

            record_file = None
            if cfg.output.emit_processing_record:
                record_file = self._write_record(
                    container_path,
                    output_path,
                    reference_name,
                    reference_meta,
                    camera,
                    settings,
                    denoised,
                    hdr,
                    dng_file is not None,
                )

            progress.image_saved()
            return ProcessingResult(
                output_path=output_path,
                preview_path=preview_file,
                dng_path=dng_file,
                record_path=record_file,
                fused_frames=denoised.fusion.frame_count,
                hdr_applied=hdr is not None,
                noise=denoised.spatial.noise,
                settings=settings,
            )
        finally:
            for frame in underexposed:
                frame.release()
            if reference is not None:
                reference.release()

    def _denoise(
        self,
        reference: RawFrame,
        container: RawContainer,
        camera: RawCameraMetadata,
        settings: PostProcessSettings,
        progress: ImageProgressHelper,
    ) -> _DenoiseOutput:
        cfg = self.config.pipeline
        ref_data = load_raw_image(reference, camera, True, 1.0, cfg.extend_edge_amount, self.kernels)

        fuser = TemporalFuser(camera, cfg, self.kernels)
        fusion = fuser.fuse(ref_data, container.get_frames(), container.load_frame, progress.next_fused_image)

        denoiser = WaveletDenoiser(cfg.denoise_levels, cfg.expanded_range, self.kernels)
        spatial = denoiser.denoise(fusion.quad, settings.spatial_denoise_level)
        logger.info("fused %d frames, normalized noise %.5f", fusion.frame_count, spatial.noise)
        return _DenoiseOutput(fusion=fusion, spatial=spatial)

    def _write_dng(
        self,
        output_path: Path,
        denoised: _DenoiseOutput,
        camera: RawCameraMetadata,
        metadata: RawImageMetadata,
    ) -> Path | None:
        dng_file = output_path.with_suffix(".dng")
        try:
            mosaic = build_raw_image(denoised.spatial.planes, denoised.fusion.pad, self.kernels.build_bayer)
            write_dng(
                dng_file,
                mosaic,
                camera,
                metadata,
                metadata.screen_orientation,
                black_level=(0.0, 0.0, 0.0, 0.0),
                white_level=self.config.pipeline.expanded_range,
                save_shading_map=self.config.output.dng_shading_map,
            )
        except (OSError, RuntimeError, ValueError) as exc:
            logger.error("failed to write dng %s: %s", dng_file, exc)
            return None
        return dng_file

    def _write_record(
        self,
        container_path: Path,
        output_path: Path,
        reference_name: str,
        metadata: RawImageMetadata,
        camera: RawCameraMetadata,
        settings: PostProcessSettings,
        denoised: _DenoiseOutput,
        hdr: HdrLayer | None,
        dng_written: bool,
    ) -> Path | None:
        record_file = output_path.with_suffix(".json")
        record = ProcessingRecord(
            container=str(container_path),
            output=str(output_path),
            reference_frame=reference_name,
            fused_frame_count=denoised.fusion.frame_count,
            exposure_time=exposure_ns_to_fraction(metadata.exposure_time_ns),
            iso=int(metadata.iso),
            ev=calc_ev(camera, metadata),
            noise=denoised.spatial.noise,
            denoise_weights=[list(w) for w in denoised.spatial.weights],
            hdr_applied=hdr is not None,
            hdr_error=hdr.error if hdr is not None else None,
            dng_written=dng_written,
            settings=settings.to_dict(),
            pipeline_hash=pipeline_fingerprint(
                self.config.pipeline, settings, denoised.fusion.noise_profile.bucket.value
            ),
            tool_version=__version__,
            created_at_utc=utc_now_iso(),
        )
        try:
            write_processing_record(record_file, record)
        except OSError as exc:
            logger.error("failed to write processing record %s: %s", record_file, exc)
            return None
        return record_file
