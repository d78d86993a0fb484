from __future__ import annotations

from pathlib import Path
import struct

import numpy as np
import pytest
import tifffile

from burstfuse.decode.types import ColorFilterArrangement, ScreenOrientation
from burstfuse.pipeline.loader import Padding
from burstfuse.write.dng_writer import (
    DngWriteError,
    build_raw_image,
    dng_tags,
    gain_map_opcode,
    shading_opcodes,
    write_dng,
)

from conftest import make_camera, make_metadata


def test_gain_map_opcode_layout() -> None:
    gains = np.array([[1.0, 1.5], [2.0, 2.5], [3.0, 3.5]], dtype=np.float32)
    opcode = gain_map_opcode(gains, 0, 1, 100, 200)

    opcode_id, version, flags, size = struct.unpack_from(">IIII", opcode, 0)
    assert (opcode_id, version, flags) == (9, 0x01030000, 0)
    assert size == 76 + 4 * gains.size
    assert len(opcode) == 16 + size

    top, left, bottom, right, plane, planes, row_pitch, col_pitch, rows, cols = struct.unpack_from(">10I", opcode, 16)
    assert (top, left, bottom, right) == (0, 1, 100, 200)
    assert (plane, planes, row_pitch, col_pitch) == (0, 1, 2, 2)
    assert (rows, cols) == (3, 2)
    spacing_v, spacing_h = struct.unpack_from(">dd", opcode, 56)
    assert spacing_v == pytest.approx(1.0 / 3.0)
    assert spacing_h == pytest.approx(0.5)
    assert struct.unpack_from(">6f", opcode, 16 + 76) == (1.0, 1.5, 2.0, 2.5, 3.0, 3.5)


def test_shading_opcodes_cover_each_mosaic_position() -> None:
    maps = [np.full((2, 2), v, dtype=np.float32) for v in (1.0, 1.1, 1.2, 1.3)]
    data = shading_opcodes(maps, 64, 32)
    assert struct.unpack_from(">I", data, 0)[0] == 4

    offsets = []
    pos = 4
    for _ in range(4):
        size = struct.unpack_from(">I", data, pos + 12)[0]
        offsets.append(struct.unpack_from(">II", data, pos + 16))
        pos += 16 + size
    assert offsets == [(0, 0), (0, 1), (1, 0), (1, 1)]
    assert pos == len(data)


def test_dng_tags_sorted_with_optional_matrices() -> None:
    forward = np.eye(3) * 0.9
    camera = make_camera(sensor_arrangement=ColorFilterArrangement.BGGR, forward_matrix1=forward, forward_matrix2=forward)
    tags = dng_tags(np.zeros((4, 4)), camera, make_metadata(), ScreenOrientation.LANDSCAPE, (0, 0, 0, 0), 16384)
    codes = [t[0] for t in tags]
    assert codes == sorted(codes)
    assert 50964 in codes and 50965 in codes
    assert 50723 not in codes
    by_code = {t[0]: t for t in tags}
    assert by_code[33422][3] == (2, 1, 1, 0)
    assert by_code[50717][3] == 16384


def test_write_dng_readback(tmp_path: Path) -> None:
    rng = np.random.default_rng(0)
    mosaic = rng.integers(0, 16384, size=(32, 48)).astype(np.uint16)
    out = tmp_path / "fused.dng"
    write_dng(
        out,
        mosaic,
        make_camera(),
        make_metadata(iso=400, screen_orientation=ScreenOrientation.PORTRAIT),
        ScreenOrientation.PORTRAIT,
        black_level=(0.0, 0.0, 0.0, 0.0),
        white_level=16384,
    )

    with tifffile.TiffFile(out) as tif:
        page = tif.pages[0]
        assert page.shape == (32, 48)
        assert np.array_equal(page.asarray(), mosaic)
        tags = page.tags
        assert tags[274].value == 6
        assert tags[34855].value == 400
        assert tags[50717].value == 16384
        assert tags[50720].value == (48, 32)
        assert len(tags[50721].value) == 18
        opcodes = tags[51009].value
        assert struct.unpack_from(">I", opcodes, 0)[0] == 4


def test_write_dng_rejects_odd_mosaic(tmp_path: Path) -> None:
    with pytest.raises(DngWriteError):
        write_dng(
            tmp_path / "bad.dng",
            np.zeros((3, 4), dtype=np.uint16),
            make_camera(),
            make_metadata(),
            ScreenOrientation.LANDSCAPE,
            black_level=(0.0, 0.0, 0.0, 0.0),
            white_level=1023,
        )


def test_build_raw_image_strips_padding() -> None:
    planes = np.stack([np.full((6, 8), 100.0 * (c + 1)) for c in range(4)])
    planes[:, 0, :] = 0.0
    mosaic = build_raw_image(planes, Padding(left=1, top=1, right=2, bottom=0))

    assert mosaic.shape == (10, 10)
    assert mosaic[0, 0] == 100 and mosaic[0, 1] == 200
    assert mosaic[1, 0] == 300 and mosaic[1, 1] == 400
