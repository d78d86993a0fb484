from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from .types import DecodedFrame


class DecodeError(RuntimeError):
    pass


class UnsupportedFormatError(DecodeError):
    pass


class MissingDependencyError(DecodeError):
    pass


class InvalidStateError(RuntimeError):
    """Raised when a frame or its metadata cannot be used for processing."""


class Decoder(Protocol):
    def decode(self, path: Path, timestamp_ns: int | None = None) -> DecodedFrame:
        ...
