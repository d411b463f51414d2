"""
point_grid.py

Bin an irregular XYZ point list (e.g. from a LAS file) onto a regular Grid.
Cells that receive no point stay missing (NaN).
"""

from __future__ import annotations

import math
from typing import Optional, Tuple

import numpy as np

from terrain_grid import Grid


METHODS = ("mean", "max", "min")


def points_to_grid(
    points: np.ndarray,
    cellsize: float,
    *,
    bounds: Optional[Tuple[float, float, float, float]] = None,
    method: str = "mean",
) -> Grid:
    """
    bounds = (min_x, min_y, max_x, max_y); defaults to the points' own extent.
    Row 0 is the max-Y edge, matching the ASCII grid row order.
    Points outside explicit bounds are dropped.
    """
    if cellsize <= 0.0:
        raise ValueError(f"cellsize must be > 0, got {cellsize}")
    if method not in METHODS:
        raise ValueError(f"method must be one of {', '.join(METHODS)}, got '{method}'")

    pts = np.asarray(points, dtype=np.float64)
    if pts.ndim != 2 or pts.shape[1] < 3:
        raise ValueError("points must be an (N, 3) array")

    if bounds is None:
        if pts.shape[0] == 0:
            raise ValueError("no points to rasterize and no bounds given")
        min_x, min_y = float(pts[:, 0].min()), float(pts[:, 1].min())
        max_x, max_y = float(pts[:, 0].max()), float(pts[:, 1].max())
    else:
        min_x, min_y, max_x, max_y = (float(v) for v in bounds)
        if max_x < min_x or max_y < min_y:
            raise ValueError(f"invalid bounds {bounds}")

    cs = float(cellsize)
    ncols = int(math.floor((max_x - min_x) / cs)) + 1
    nrows = int(math.floor((max_y - min_y) / cs)) + 1
    print(f"[GRID] Rasterizing {pts.shape[0]:,} points onto {ncols:,} x {nrows:,} cells ({method})")

    ix = np.floor((pts[:, 0] - min_x) / cs).astype(np.int64)
    iy = np.floor((max_y - pts[:, 1]) / cs).astype(np.int64)
    inside = (ix >= 0) & (ix < ncols) & (iy >= 0) & (iy < nrows)
    dropped = int(pts.shape[0] - np.count_nonzero(inside))
    if dropped:
        print(f"[GRID]  Dropped {dropped:,} points outside bounds")

    flat = iy[inside] * ncols + ix[inside]
    z = pts[inside, 2]
    total = ncols * nrows
    counts = np.bincount(flat, minlength=total)

    if method == "mean":
        sums = np.bincount(flat, weights=z, minlength=total)
        with np.errstate(invalid="ignore", divide="ignore"):
            cells = sums / counts
    else:
        fill = -np.inf if method == "max" else np.inf
        cells = np.full((total,), fill, dtype=np.float64)
        reducer = np.maximum if method == "max" else np.minimum
        reducer.at(cells, flat, z)

    cells[counts == 0] = np.nan

    grid = Grid(
        ncols=ncols,
        nrows=nrows,
        cellsize=cs,
        origin_x=min_x,
        origin_y=max_y - nrows * cs,
        cells=cells.astype(np.float32).reshape(nrows, ncols),
    )
    print(f"[GRID]  Empty cells: {grid.missing_count:,} of {total:,}")
    return grid
