"""Numeric kernels behind a swappable bundle.

Pipeline stages only call kernels through a :class:`Kernels` instance, so tests
can substitute recording or synthetic implementations with
``dataclasses.replace(default_kernels(), fuse_denoise=...)``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from .fusion import FusionKernel, fuse_denoise
from .measure import generate_edges, measure_image, measure_noise
from .raw import build_bayer, deinterleave_raw
from .render import generate_preview, hdr_mask, linear_image, postprocess
from .wavelet import forward_transform, inverse_transform


@dataclass(frozen=True)
class Kernels:
    deinterleave_raw: Callable = deinterleave_raw
    build_bayer: Callable = build_bayer
    measure_noise: Callable = measure_noise
    generate_edges: Callable = generate_edges
    measure_image: Callable = measure_image
    fuse_denoise: Callable = fuse_denoise
    forward_transform: Callable = forward_transform
    inverse_transform: Callable = inverse_transform
    hdr_mask: Callable = hdr_mask
    linear_image: Callable = linear_image
    postprocess: Callable = postprocess
    generate_preview: Callable = generate_preview


_DEFAULT = Kernels()


def default_kernels() -> Kernels:
    return _DEFAULT


__all__ = ["FusionKernel", "Kernels", "default_kernels"]
