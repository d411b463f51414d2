"""
terrain_grid.py

Regular elevation grid shared by the readers, the resampler and the mesh builder.

Cells are stored as a float32 array of shape (nrows, ncols): row y, column x,
so the C-order buffer walks x fastest and wraps into y. Missing samples hold NaN.
Row 0 is the first data row of an ASCII grid, i.e. the northern edge, while
(origin_x, origin_y) is the lower-left corner.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np


MISSING_VALUE = np.float32(np.nan)


class DimensionMismatchError(ValueError):
    """Grid dimensions disagree with the stated ncols/nrows, or cannot be split/exported."""


@dataclass(frozen=True)
class Grid:
    ncols: int
    nrows: int
    cellsize: float
    origin_x: float
    origin_y: float
    cells: np.ndarray  # (nrows, ncols) float32, NaN = missing

    def __post_init__(self) -> None:
        if self.ncols < 1 or self.nrows < 1:
            raise DimensionMismatchError(f"Grid needs at least one cell, got {self.ncols}x{self.nrows}")
        # Own a private copy so callers cannot mutate the grid through their buffer.
        cells = np.array(self.cells, dtype=np.float32)
        if cells.size != self.ncols * self.nrows:
            raise DimensionMismatchError(
                f"Grid stated {self.ncols}x{self.nrows} = {self.ncols * self.nrows:,} cells "
                f"but data holds {cells.size:,}"
            )
        cells = cells.reshape(self.nrows, self.ncols)
        cells.setflags(write=False)
        object.__setattr__(self, "cells", cells)

    @property
    def missing(self) -> np.float32:
        return MISSING_VALUE

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.nrows, self.ncols)

    @property
    def width(self) -> float:
        return self.ncols * float(self.cellsize)

    @property
    def depth(self) -> float:
        return self.nrows * float(self.cellsize)

    def missing_mask(self) -> np.ndarray:
        return np.isnan(self.cells)

    @property
    def missing_count(self) -> int:
        return int(np.count_nonzero(self.missing_mask()))

    def height_range(self) -> Optional[Tuple[float, float]]:
        """Finite (min, max) height, or None when every cell is missing."""
        valid = self.cells[~self.missing_mask()]
        if valid.size == 0:
            return None
        return (float(valid.min()), float(valid.max()))

    def filled(self, value: float = 0.0) -> np.ndarray:
        """Writable copy of the cells with missing samples replaced by value."""
        return np.where(self.missing_mask(), np.float32(value), self.cells).astype(np.float32)


# ----------------------------
# Tiling
# ----------------------------

def _tile_bounds(count: int, total: int) -> List[Tuple[int, int]]:
    step = total // count
    bounds = []
    for i in range(count):
        start = i * step
        stop = total if i == count - 1 else start + step
        bounds.append((start, stop))
    return bounds


def split_grid(grid: Grid, x_count: int, y_count: int) -> List[Grid]:
    """
    Partition a grid into x_count * y_count tiles.

    Tiles are (ncols // x_count) by (nrows // y_count) cells; the last column and
    the last row of tiles absorb the remainder so nothing is dropped.
    Returned row-major: the row-0 (top) band first, left to right.
    """
    if x_count < 1 or y_count < 1:
        raise DimensionMismatchError(f"Split counts must be >= 1, got {x_count}x{y_count}")
    if x_count > grid.ncols or y_count > grid.nrows:
        raise DimensionMismatchError(
            f"Cannot split a {grid.ncols}x{grid.nrows} grid into {x_count}x{y_count} tiles"
        )

    print(f"[SPLIT] {grid.ncols:,} x {grid.nrows:,} grid -> {x_count} x {y_count} tiles")

    cs = float(grid.cellsize)
    tiles: List[Grid] = []
    for y0, y1 in _tile_bounds(y_count, grid.nrows):
        for x0, x1 in _tile_bounds(x_count, grid.ncols):
            tiles.append(
                Grid(
                    ncols=x1 - x0,
                    nrows=y1 - y0,
                    cellsize=cs,
                    origin_x=float(grid.origin_x) + x0 * cs,
                    origin_y=float(grid.origin_y) + (grid.nrows - y1) * cs,
                    cells=grid.cells[y0:y1, x0:x1],
                )
            )
    return tiles
