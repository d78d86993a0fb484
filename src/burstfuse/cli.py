from __future__ import annotations

import argparse
from dataclasses import replace
import json
import logging
from pathlib import Path
import sys

from burstfuse.config import AppConfig, load_config
from burstfuse.utils.logging_utils import configure_logging


logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="burstfuse")
    sub = parser.add_subparsers(dest="command", required=True)

    process = sub.add_parser("process", help="Fuse a burst container into a JPEG (and optional DNG)")
    process.add_argument("container", help="Burst container path")
    process.add_argument("--out", required=True, help="Output JPEG path")
    process.add_argument("--config", default=None, help="Optional YAML config")
    process.add_argument("--dng", action="store_true", help="Also write a fused DNG next to the JPEG")
    process.add_argument("--denoise-level", type=int, default=None, help="Spatial denoise level (-1 auto, 0 off, 1-5)")
    process.add_argument("--json", action="store_true", help="Emit machine-readable JSON summary")

    inspect = sub.add_parser("inspect", help="List frames and settings stored in a container")
    inspect.add_argument("container", help="Burst container path")
    inspect.add_argument("--json", action="store_true", help="Emit machine-readable JSON")

    estimate = sub.add_parser("estimate", help="Estimate post-process settings from the reference frame")
    estimate.add_argument("container", help="Burst container path")
    estimate.add_argument("--json", action="store_true", help="Emit machine-readable JSON")

    pack = sub.add_parser("pack", help="Pack camera RAW files into a burst container")
    pack.add_argument("inputs", nargs="+", help="RAW files, capture order")
    pack.add_argument("--out", required=True, help="Output container path")
    pack.add_argument("--hdr", action="store_true", help="Mark the burst as containing underexposed HDR frames")

    return parser


def _load(args: argparse.Namespace) -> AppConfig:
    config_path = getattr(args, "config", None)
    config = load_config(config_path) if config_path else AppConfig()
    configure_logging(config.log_level, config.log_file)
    return config


def _cmd_process(args: argparse.Namespace) -> int:
    from burstfuse.container import RawContainer
    from burstfuse.decode.buffers import InMemoryBufferPool
    from burstfuse.processor import ImageProcessor
    from burstfuse.progress import LoggingProgressListener

    config = _load(args)
    container_path = Path(args.container).expanduser().resolve()
    output_path = Path(args.out).expanduser().resolve()

    pool = InMemoryBufferPool(config.buffer_pool_bytes)
    processor = ImageProcessor(config, pool=pool)

    settings = None
    if args.dng or args.denoise_level is not None:
        settings = RawContainer.open(container_path).get_post_process_settings()
        if args.dng:
            settings = replace(settings, dng=True)
        if args.denoise_level is not None:
            settings = replace(settings, spatial_denoise_level=int(args.denoise_level))

    listener = LoggingProgressListener()
    result = processor.process(container_path, output_path, listener, settings=settings)
    if result is None:
        print(f"error: {'; '.join(listener.errors) or 'processing failed'}", file=sys.stderr)
        return 1

    payload = {
        "output": str(result.output_path),
        "preview": str(result.preview_path) if result.preview_path else None,
        "dng": str(result.dng_path) if result.dng_path else None,
        "record": str(result.record_path) if result.record_path else None,
        "fused_frames": result.fused_frames,
        "hdr_applied": result.hdr_applied,
        "noise": result.noise,
    }
    if args.json:
        print(json.dumps(payload, indent=2))
        return 0

    print(str(result.output_path))
    if result.dng_path:
        print(str(result.dng_path))
    return 0


def _cmd_inspect(args: argparse.Namespace) -> int:
    from burstfuse.container import RawContainer
    from burstfuse.pipeline.estimation import calc_ev
    from burstfuse.utils.formatting import exposure_ns_to_fraction

    _load(args)
    container = RawContainer.open(Path(args.container).expanduser().resolve())
    camera = container.get_camera_metadata()

    frames = []
    for name in container.get_frames():
        entry = container.get_frame(name)
        frames.append(
            {
                "name": name,
                "size": [entry.width, entry.height],
                "format": entry.pixel_format.value,
                "iso": entry.metadata.iso,
                "exposure": exposure_ns_to_fraction(entry.metadata.exposure_time_ns),
                "ev": round(calc_ev(camera, entry.metadata), 3),
                "timestamp_ns": entry.metadata.timestamp_ns,
            }
        )

    payload = {
        "container": str(container.path),
        "is_hdr": container.is_hdr(),
        "arrangement": camera.sensor_arrangement.value,
        "black_level": list(camera.black_level),
        "white_level": camera.white_level,
        "frames": frames,
        "settings": container.get_post_process_settings().to_dict(),
    }

    if args.json:
        print(json.dumps(payload, indent=2))
        return 0

    print(f"Container: {payload['container']}")
    print(f"Sensor: {payload['arrangement']} black={payload['black_level']} white={payload['white_level']}")
    print(f"HDR: {payload['is_hdr']}")
    print("Frames:")
    for f in frames:
        print(f"  {f['name']:<24} {f['format']} iso={f['iso']} exposure={f['exposure']} ev={f['ev']}")
    return 0


def _cmd_estimate(args: argparse.Namespace) -> int:
    from burstfuse.container import RawContainer
    from burstfuse.pipeline.estimation import estimate_settings

    _load(args)
    container = RawContainer.open(Path(args.container).expanduser().resolve())
    frames = container.get_frames()
    if not frames:
        raise ValueError("container has no frames")

    frame = container.load_frame(frames[0])
    if frame is None:
        raise ValueError(f"reference frame {frames[0]} is unreadable")
    try:
        settings = estimate_settings(frame, container.get_camera_metadata())
    finally:
        frame.release()

    payload = settings.to_dict()
    if args.json:
        print(json.dumps(payload, indent=2))
        return 0

    for key in ("temperature", "tint", "shadows", "exposure", "blacks", "white_point", "clipped_lows", "clipped_highs"):
        print(f"{key:>12}: {payload[key]:.4f}")
    return 0


def _cmd_pack(args: argparse.Namespace) -> int:
    from burstfuse.container import RawContainerWriter
    from burstfuse.decode.base import Decoder
    from burstfuse.decode.libraw_decoder import LibRawDecoder

    _load(args)
    decoder: Decoder = LibRawDecoder()
    out = Path(args.out).expanduser().resolve()

    writer: RawContainerWriter | None = None
    try:
        for index, raw_path in enumerate(args.inputs):
            decoded = decoder.decode(Path(raw_path).expanduser().resolve(), timestamp_ns=index)
            frame = decoded.frame
            try:
                if writer is None:
                    writer = RawContainerWriter(out, decoded.camera, is_hdr=bool(args.hdr))
                writer.add_frame(
                    f"frame_{index:04d}.raw",
                    frame.payload.tobytes(),
                    frame.width,
                    frame.height,
                    frame.row_stride,
                    frame.pixel_format,
                    frame.metadata,
                )
            finally:
                frame.release()
    finally:
        if writer is not None:
            writer.close()

    print(str(out))
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        if args.command == "process":
            return _cmd_process(args)
        if args.command == "inspect":
            return _cmd_inspect(args)
        if args.command == "estimate":
            return _cmd_estimate(args)
        if args.command == "pack":
            return _cmd_pack(args)

        parser.error(f"unknown command: {args.command}")
        return 2
    except Exception as exc:
        logger.exception("fatal error")
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
