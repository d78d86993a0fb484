from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from pathlib import Path
from typing import Any
import zipfile

import numpy as np
import zstandard

from burstfuse.decode.buffers import InMemoryBufferPool, RawBufferPool
from burstfuse.decode.types import PixelFormat, RawCameraMetadata, RawFrame, RawImageMetadata
from burstfuse.settings import PostProcessSettings


logger = logging.getLogger(__name__)

CONTAINER_VERSION = 1
METADATA_ENTRY = "metadata"


class ContainerError(RuntimeError):
    pass


@dataclass
class FrameEntry:
    name: str
    width: int
    height: int
    row_stride: int
    pixel_format: PixelFormat
    metadata: RawImageMetadata

    @property
    def nbytes(self) -> int:
        return self.row_stride * self.height

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "width": self.width,
            "height": self.height,
            "row_stride": self.row_stride,
            "pixel_format": self.pixel_format.value,
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> FrameEntry:
        return cls(
            name=str(raw["name"]),
            width=int(raw["width"]),
            height=int(raw["height"]),
            row_stride=int(raw["row_stride"]),
            pixel_format=PixelFormat(raw["pixel_format"]),
            metadata=RawImageMetadata.from_dict(raw["metadata"]),
        )


class RawContainer:
    """Read side of a burst archive: zip of zstd frame payloads plus one JSON document.

    ``remove_frame`` and ``set_post_process_settings`` only affect this in-memory view.
    """

    def __init__(
        self,
        path: Path,
        camera: RawCameraMetadata,
        frames: list[FrameEntry],
        settings: PostProcessSettings,
        is_hdr: bool,
        pool: RawBufferPool | None = None,
    ) -> None:
        self.path = path
        self._camera = camera
        self._frames = {f.name: f for f in sorted(frames, key=lambda f: (f.metadata.timestamp_ns, f.name))}
        self._settings = settings
        self._is_hdr = is_hdr
        self._pool: RawBufferPool = pool if pool is not None else InMemoryBufferPool()

    @classmethod
    def open(cls, path: str | Path, pool: RawBufferPool | None = None) -> RawContainer:
        container_path = Path(path)
        try:
            with zipfile.ZipFile(container_path, "r") as zf:
                doc = json.loads(zf.read(METADATA_ENTRY).decode("utf-8"))
        except (OSError, KeyError, zipfile.BadZipFile, json.JSONDecodeError) as exc:
            raise ContainerError(f"cannot read container {container_path}: {exc}") from exc

        version = int(doc.get("version", 0))
        if version != CONTAINER_VERSION:
            raise ContainerError(f"unsupported container version {version} in {container_path}")

        try:
            camera = RawCameraMetadata.from_dict(doc["camera"])
            frames = [FrameEntry.from_dict(f) for f in doc.get("frames", [])]
        except (KeyError, TypeError, ValueError) as exc:
            raise ContainerError(f"invalid metadata in {container_path}: {exc}") from exc

        return cls(
            path=container_path,
            camera=camera,
            frames=frames,
            settings=PostProcessSettings.from_dict(doc.get("post_process_settings")),
            is_hdr=bool(doc.get("is_hdr", False)),
            pool=pool,
        )

    def get_camera_metadata(self) -> RawCameraMetadata:
        return self._camera

    def is_hdr(self) -> bool:
        return self._is_hdr

    def get_frames(self) -> list[str]:
        """Frame names in capture order."""
        return list(self._frames)

    def get_frame(self, name: str) -> FrameEntry:
        try:
            return self._frames[name]
        except KeyError as exc:
            raise ContainerError(f"no frame named {name}") from exc

    def remove_frame(self, name: str) -> None:
        self._frames.pop(name, None)

    def get_post_process_settings(self) -> PostProcessSettings:
        return self._settings

    def set_post_process_settings(self, settings: PostProcessSettings) -> None:
        self._settings = settings

    def load_frame(self, name: str) -> RawFrame | None:
        """Decompress a frame into a pooled buffer; ``None`` when the payload is unusable."""
        entry = self.get_frame(name)
        try:
            with zipfile.ZipFile(self.path, "r") as zf:
                compressed = zf.read(name)
            payload = zstandard.ZstdDecompressor().decompress(compressed, max_output_size=entry.nbytes)
        except (OSError, KeyError, zipfile.BadZipFile, zstandard.ZstdError) as exc:
            logger.warning("failed to load frame %s from %s: %s", name, self.path, exc)
            return None

        if len(payload) != entry.nbytes:
            logger.warning("frame %s has %d bytes, expected %d", name, len(payload), entry.nbytes)
            return None

        buffer = self._pool.acquire(entry.nbytes)
        buffer[:] = np.frombuffer(payload, dtype=np.uint8)
        return RawFrame(
            name=entry.name,
            width=entry.width,
            height=entry.height,
            row_stride=entry.row_stride,
            pixel_format=entry.pixel_format,
            metadata=entry.metadata,
            data=buffer,
            pool=self._pool,
        )


class RawContainerWriter:
    """Append-only writer; the metadata document is written last by ``close``."""

    def __init__(
        self,
        path: str | Path,
        camera: RawCameraMetadata,
        settings: PostProcessSettings | None = None,
        is_hdr: bool = False,
        compression_level: int = 1,
    ) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._camera = camera
        self._settings = settings or PostProcessSettings()
        self._is_hdr = is_hdr
        self._frames: list[FrameEntry] = []
        self._compressor = zstandard.ZstdCompressor(level=compression_level, write_checksum=True)
        self._zip: zipfile.ZipFile | None = zipfile.ZipFile(self.path, "w", compression=zipfile.ZIP_STORED)

    def __enter__(self) -> RawContainerWriter:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def add_frame(
        self,
        name: str,
        payload: bytes,
        width: int,
        height: int,
        row_stride: int,
        pixel_format: PixelFormat,
        metadata: RawImageMetadata,
    ) -> None:
        if self._zip is None:
            raise ContainerError("container writer is closed")
        if name == METADATA_ENTRY or any(f.name == name for f in self._frames):
            raise ContainerError(f"duplicate or reserved frame name {name}")
        if len(payload) != row_stride * height:
            raise ContainerError(f"frame {name} payload has {len(payload)} bytes, expected {row_stride * height}")

        self._zip.writestr(name, self._compressor.compress(payload))
        self._frames.append(FrameEntry(name, width, height, row_stride, pixel_format, metadata))

    def close(self) -> None:
        if self._zip is None:
            return
        doc = {
            "version": CONTAINER_VERSION,
            "camera": self._camera.to_dict(),
            "frames": [f.to_dict() for f in self._frames],
            "post_process_settings": self._settings.to_dict(),
            "is_hdr": self._is_hdr,
        }
        self._zip.writestr(METADATA_ENTRY, json.dumps(doc, indent=2, sort_keys=True))
        self._zip.close()
        self._zip = None
        logger.info("wrote %d frames to %s", len(self._frames), self.path)
