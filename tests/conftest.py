"""
Shared fixtures: small grids, ASCII grid text and synthetic LAS buffers.
"""

import struct
from typing import Optional, Sequence

import numpy as np
import pytest

from las_reader import POINT_FORMATS
from terrain_grid import Grid


LAS_HEADER_STRUCT = struct.Struct("<4sHHIHH8sBB32s32sHHHIIBHI5I12d")


def make_grid(cells, cellsize=1.0, origin_x=0.0, origin_y=0.0) -> Grid:
    arr = np.asarray(cells, dtype=np.float32)
    nrows, ncols = arr.shape
    return Grid(ncols=ncols, nrows=nrows, cellsize=cellsize, origin_x=origin_x, origin_y=origin_y, cells=arr)


def build_las(
    raw_xyz: Sequence[Sequence[int]],
    *,
    point_format: int = 0,
    scale=(0.01, 0.01, 0.01),
    offset=(0.0, 0.0, 0.0),
    header_size: int = 227,
    vlr_padding: int = 0,
    record_length: Optional[int] = None,
    signature: bytes = b"LASF",
    format_byte: Optional[int] = None,
    point_count: Optional[int] = None,
) -> bytes:
    """Assemble a LAS file in memory: header, optional VLR padding, point records."""
    raw = np.asarray(raw_xyz, dtype=np.int64).reshape(-1, 3)
    n = raw.shape[0]

    dtype = POINT_FORMATS.get(point_format, POINT_FORMATS[0])
    if record_length is None:
        record_length = dtype.itemsize
    records = np.zeros((n,), dtype=dtype)
    records["X"] = raw[:, 0]
    records["Y"] = raw[:, 1]
    records["Z"] = raw[:, 2]
    records["intensity"] = 100
    body = b"".join(r.tobytes().ljust(record_length, b"\xee") for r in records)

    real = raw * np.asarray(scale) + np.asarray(offset) if n else np.zeros((1, 3))
    mins = real.min(axis=0)
    maxs = real.max(axis=0)

    header = LAS_HEADER_STRUCT.pack(
        signature,
        7,                      # file source id
        0,                      # global encoding
        0x12345678, 0x9ABC, 0xDEF0, b"\x01\x02\x03\x04\x05\x06\x07\x08",
        1, 2 if header_size < 235 else (3 if header_size < 375 else 4),
        b"TEST SYSTEM",
        b"pytest las builder",
        42, 2024,
        header_size,
        header_size + vlr_padding,
        0,
        point_format if format_byte is None else format_byte,
        record_length,
        n if point_count is None else point_count,
        n, 0, 0, 0, 0,
        scale[0], scale[1], scale[2],
        offset[0], offset[1], offset[2],
        maxs[0], mins[0], maxs[1], mins[1], maxs[2], mins[2],
    )
    if header_size >= 235:
        header += struct.pack("<Q", 0)
    if header_size >= 375:
        header += struct.pack("<QIQ", 0, 0, n) + struct.pack("<15Q", n, *([0] * 14))
    header = header.ljust(header_size, b"\0")
    return header + b"\0" * vlr_padding + body


@pytest.fixture
def las_bytes():
    return build_las


@pytest.fixture
def grid_factory():
    return make_grid


@pytest.fixture
def ramp_grid() -> Grid:
    """5 columns x 4 rows, height = 10*y + x."""
    ys, xs = np.mgrid[0:4, 0:5]
    return make_grid(10.0 * ys + xs, cellsize=2.0, origin_x=1000.0, origin_y=2000.0)


@pytest.fixture
def asc_text():
    def _build(cells, nodata="-9999", cellsize="0.5", header_lines=None):
        arr = [list(row) for row in cells]
        lines = header_lines or [
            f"ncols {len(arr[0])}",
            f"nrows {len(arr)}",
            "xllcorner    537000",
            "yllcorner    184000",
            f"cellsize     {cellsize}",
            f"NODATA_value {nodata}",
        ]
        body = [" ".join(str(v) for v in row) for row in arr]
        return "\n".join(lines + body) + "\n"
    return _build
