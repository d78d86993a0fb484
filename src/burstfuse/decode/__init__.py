from .base import DecodeError, InvalidStateError, MissingDependencyError, UnsupportedFormatError
from .buffers import BufferPoolExhaustedError, InMemoryBufferPool, RawBufferPool
from .types import (
    ColorFilterArrangement,
    DecodedFrame,
    Illuminant,
    PixelFormat,
    RawCameraMetadata,
    RawFrame,
    RawImageMetadata,
    ScreenOrientation,
)

__all__ = [
    "DecodeError",
    "InvalidStateError",
    "MissingDependencyError",
    "UnsupportedFormatError",
    "BufferPoolExhaustedError",
    "InMemoryBufferPool",
    "RawBufferPool",
    "ColorFilterArrangement",
    "DecodedFrame",
    "Illuminant",
    "PixelFormat",
    "RawCameraMetadata",
    "RawFrame",
    "RawImageMetadata",
    "ScreenOrientation",
]
