from __future__ import annotations

import numpy as np
import pytest

from burstfuse.decode.base import InvalidStateError
from burstfuse.decode.buffers import BufferPoolExhaustedError, InMemoryBufferPool

from conftest import make_frame


def test_pool_enforces_capacity_and_reuses_buffers() -> None:
    pool = InMemoryBufferPool(capacity_bytes=100)
    first = pool.acquire(60)
    assert pool.in_use_bytes == 60

    with pytest.raises(BufferPoolExhaustedError):
        pool.acquire(60)

    pool.release(first)
    assert pool.in_use_bytes == 0
    second = pool.acquire(60)
    assert second is first


def test_pool_grow_raises_capacity() -> None:
    pool = InMemoryBufferPool(capacity_bytes=10)
    pool.grow(10)
    assert pool.capacity_bytes == 20
    pool.acquire(20)


def test_pool_rejects_empty_request() -> None:
    with pytest.raises(ValueError):
        InMemoryBufferPool().acquire(0)


def test_frame_release_returns_buffer_once() -> None:
    pool = InMemoryBufferPool()
    frame = make_frame(np.zeros((4, 4), dtype=np.uint16), pool=pool)
    assert pool.in_use_bytes == 32

    frame.release()
    frame.release()
    assert frame.released
    assert pool.in_use_bytes == 0
    with pytest.raises(InvalidStateError):
        _ = frame.payload
