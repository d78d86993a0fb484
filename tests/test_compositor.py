from __future__ import annotations

import numpy as np
import pytest

from burstfuse.decode.types import ScreenOrientation
from burstfuse.kernels.render import RenderParams, postprocess, srgb_gamma, srgb_linear
from burstfuse.pipeline.compositor import (
    PREVIEW_VARIANTS,
    create_preview,
    post_process,
    render_params,
    sharpen_threshold,
)
from burstfuse.pipeline.loader import Padding
from burstfuse.settings import PostProcessSettings

from conftest import make_camera, make_frame, make_metadata


def test_sharpen_threshold_is_clamped() -> None:
    assert sharpen_threshold(0.0) == 0.005
    assert sharpen_threshold(0.02) == pytest.approx(0.01)
    assert sharpen_threshold(1.0) == 0.015


def test_render_params_neutral_for_unset_fields() -> None:
    params = render_params(PostProcessSettings())
    assert params.shadows == 1.0
    assert params.blacks == 0.0
    assert params.white_point == 1.0
    assert params.sharpen0 == 2.5


def test_only_half_size_previews_sharpen() -> None:
    assert len(PREVIEW_VARIANTS) == 12
    assert PREVIEW_VARIANTS[(2, ScreenOrientation.LANDSCAPE)].sharpen
    assert not PREVIEW_VARIANTS[(4, ScreenOrientation.LANDSCAPE)].sharpen
    assert PREVIEW_VARIANTS[(8, ScreenOrientation.PORTRAIT)].rotate_code is not None


def test_srgb_curves_are_inverse() -> None:
    values = np.linspace(0.0, 1.0, 11, dtype=np.float32)
    assert np.allclose(srgb_linear(srgb_gamma(values)), values, atol=1e-5)


def test_create_preview_size_and_rotation() -> None:
    camera = make_camera()
    settings = PostProcessSettings(shadows=1.0, blacks=0.0, white_point=1.0)
    mosaic = np.full((64, 96), 400, dtype=np.uint16)

    landscape = create_preview(make_frame(mosaic), camera, settings, downscale=4)
    portrait = create_preview(
        make_frame(mosaic, make_metadata(screen_orientation=ScreenOrientation.PORTRAIT)),
        camera,
        settings,
        downscale=4,
    )
    assert landscape.shape == (16, 24, 3)
    assert landscape.dtype == np.uint8
    assert portrait.shape == (24, 16, 3)

    with pytest.raises(ValueError):
        create_preview(make_frame(mosaic), camera, settings, downscale=3)


def test_postprocess_crops_padding() -> None:
    quad = np.full((4, 16, 16), 8192, dtype=np.uint16)
    out = postprocess(
        quad,
        16384.0,
        [np.ones((1, 1), dtype=np.float32)] * 4,
        make_camera().sensor_arrangement,
        np.eye(3, dtype=np.float32),
        RenderParams(),
        crop=(2, 1, 3, 0),
    )
    assert out.shape == (30, 22, 3)
    expected = round(255 * float(srgb_gamma(np.float32(0.5))))
    assert np.all(np.abs(out.astype(np.int32) - expected) <= 1)


def test_post_process_renders_gray_as_gray() -> None:
    camera = make_camera()
    quad = np.full((4, 32, 32), 4096, dtype=np.uint16)
    settings = PostProcessSettings(shadows=1.0, blacks=0.0, white_point=1.0)

    out = post_process(quad, Padding(), 0.0, make_metadata(), camera, settings, 16384)
    assert out.shape == (64, 64, 3)
    expected = round(255 * float(srgb_gamma(np.float32(0.25))))
    assert np.all(np.abs(out.astype(np.int32) - expected) <= 2)
