from __future__ import annotations

import logging
import threading
from typing import Protocol

import numpy as np


logger = logging.getLogger(__name__)


class BufferPoolExhaustedError(RuntimeError):
    pass


class RawBufferPool(Protocol):
    def acquire(self, nbytes: int) -> np.ndarray:
        ...

    def release(self, buffer: np.ndarray) -> None:
        ...

    def grow(self, nbytes: int) -> None:
        ...


class InMemoryBufferPool:
    """Byte-budgeted pool of raw payload buffers.

    Released buffers are kept and handed out again for requests of the same size.
    ``capacity_bytes=None`` means no budget.
    """

    def __init__(self, capacity_bytes: int | None = None) -> None:
        self._capacity = capacity_bytes
        self._lock = threading.Lock()
        self._in_use: dict[int, int] = {}
        self._free: dict[int, list[np.ndarray]] = {}

    @property
    def capacity_bytes(self) -> int | None:
        return self._capacity

    @property
    def in_use_bytes(self) -> int:
        with self._lock:
            return sum(self._in_use.values())

    def acquire(self, nbytes: int) -> np.ndarray:
        if nbytes <= 0:
            raise ValueError("buffer size must be positive")

        with self._lock:
            used = sum(self._in_use.values())
            if self._capacity is not None and used + nbytes > self._capacity:
                raise BufferPoolExhaustedError(
                    f"cannot acquire {nbytes} bytes: {used} of {self._capacity} bytes in use"
                )

            free = self._free.get(nbytes)
            buffer = free.pop() if free else np.empty(nbytes, dtype=np.uint8)
            self._in_use[id(buffer)] = nbytes
            return buffer

    def release(self, buffer: np.ndarray) -> None:
        with self._lock:
            nbytes = self._in_use.pop(id(buffer), None)
            if nbytes is None:
                logger.warning("release of buffer not owned by pool (%d bytes)", buffer.nbytes)
                return
            self._free.setdefault(nbytes, []).append(buffer)

    def grow(self, nbytes: int) -> None:
        with self._lock:
            if self._capacity is None:
                return
            self._capacity += int(nbytes)
            logger.debug("buffer pool grown to %d bytes", self._capacity)
