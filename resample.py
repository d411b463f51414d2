"""
resample.py

Bilinear resampling of a Grid onto a square power-of-two-plus-one resolution,
and the normalised height field derived from it for height-field terrain hosts.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from terrain_grid import Grid


def resample_bilinear(grid: Grid, size: int) -> Grid:
    """
    Resample to a size x size grid.

    Each target (x, y) maps to source (x/size*ncols, y/size*nrows). The four
    surrounding samples h0 (xc,yc), h1 (xc2,yc), h2 (xc,yc2), h3 (xc2,yc2) are
    blended, with xc2/yc2 clamped to the last column/row.

    Missing samples: within each horizontal pair (h0,h1) and (h2,h3) a missing
    value takes its partner's value, so both must be missing for the pair to
    come out missing. The vertical blend of the two pairs is plain arithmetic,
    so a missing pair makes the result missing.
    """
    size = int(size)
    if size < 2:
        raise ValueError(f"resample size must be >= 2, got {size}")

    ncols, nrows = grid.ncols, grid.nrows
    print(f"[RESAMPLE] {ncols:,} x {nrows:,} -> {size:,} x {size:,} (bilinear)")

    # x*ncols/size rather than x/size*ncols keeps same-size resampling on exact cell indices
    steps = np.arange(size, dtype=np.float64)
    xf = steps * ncols / size
    yf = steps * nrows / size
    x0 = np.floor(xf)
    y0 = np.floor(yf)
    dx = (xf - x0).astype(np.float32)[None, :]
    dy = (yf - y0).astype(np.float32)[:, None]

    xc = x0.astype(np.int64)
    yc = y0.astype(np.int64)
    xc2 = np.minimum(ncols - 1, xc + 1)
    yc2 = np.minimum(nrows - 1, yc + 1)

    cells = grid.cells
    h0 = cells[np.ix_(yc, xc)]
    h1 = cells[np.ix_(yc, xc2)]
    h2 = cells[np.ix_(yc2, xc)]
    h3 = cells[np.ix_(yc2, xc2)]

    h0, h1 = _fill_pair(h0, h1)
    h2, h3 = _fill_pair(h2, h3)

    top = h0 + dx * (h1 - h0)
    bottom = h2 + dx * (h3 - h2)
    out = top + dy * (bottom - top)

    return Grid(
        ncols=size,
        nrows=size,
        cellsize=float(grid.cellsize) * ncols / size,
        origin_x=grid.origin_x,
        origin_y=grid.origin_y,
        cells=out.astype(np.float32, copy=False),
    )


def _fill_pair(a: np.ndarray, b: np.ndarray):
    # a missing takes b; otherwise b missing takes a; both missing stays missing
    a_nan = np.isnan(a)
    b_nan = np.isnan(b)
    a2 = np.where(a_nan, b, a)
    b2 = np.where(~a_nan & b_nan, a, b)
    return a2, b2


# ----------------------------
# Height field
# ----------------------------

@dataclass(frozen=True)
class HeightField:
    heights: np.ndarray  # (size, size) float32 in [0, 1]
    width: float
    max_height: float
    depth: float

    @property
    def resolution(self) -> int:
        return int(self.heights.shape[0])


def heightfield_from_grid(grid: Grid, size: int = 1025) -> HeightField:
    """
    Normalised [0, 1] height matrix plus physical size (width, max_height, depth).

    Missing and negative heights become 0, so the field has no holes; this hides
    real below-zero terrain.
    """
    resampled = resample_bilinear(grid, size)
    rng = resampled.height_range()
    max_height = rng[1] if rng is not None else 0.0
    data = resampled.filled(0.0)
    print(f"[HEIGHTFIELD] Max height: {max_height:.3f}")

    data = np.clip(data, 0.0, None)
    if max_height > 0.0:
        heights = (data / np.float32(max_height)).astype(np.float32)
    else:
        print("[WARN] No positive heights; height field is flat.")
        heights = np.zeros_like(data, dtype=np.float32)

    return HeightField(
        heights=heights,
        width=grid.width,
        max_height=max_height,
        depth=grid.depth,
    )


def save_heightfield(field: HeightField, out_dir: Path, name: str) -> Path:
    """Write <name>.npy (heights) and <name>.json (physical size). Returns the .npy path."""
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    npy_path = out_dir / f"{name}.npy"
    json_path = out_dir / f"{name}.json"

    print(f"[HEIGHTFIELD] Writing {npy_path}")
    np.save(npy_path, field.heights)
    json_path.write_text(
        json.dumps(
            {
                "resolution": field.resolution,
                "width": float(field.width),
                "max_height": float(field.max_height),
                "depth": float(field.depth),
            },
            indent=2,
        ),
        encoding="utf-8",
    )
    return npy_path
