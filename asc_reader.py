"""
asc_reader.py

Read ESRI ASCII grid (.asc) elevation files into a Grid.

Format:
    ncols         2000
    nrows         2000
    xllcorner     537000
    yllcorner     184000
    cellsize      0.5
    NODATA_value  -9999
followed by nrows lines of ncols whitespace-separated heights.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterator, List, TextIO, Tuple

import numpy as np

from terrain_grid import DimensionMismatchError, Grid, MISSING_VALUE


HEADER_FIELDS: Tuple[str, ...] = (
    "ncols",
    "nrows",
    "xllcorner",
    "yllcorner",
    "cellsize",
    "NODATA_value",
)


class HeaderFieldError(ValueError):
    """A header line does not start with the keyword expected at that position, or has no value."""

    def __init__(self, field: str, found: str = "", *, missing_value: bool = False) -> None:
        self.field = field
        self.found = found
        self.missing_value = missing_value
        if missing_value:
            message = f"ASC header field '{field}' has no value"
        else:
            detail = f" (found '{found}')" if found else ""
            message = f"expected '{field}' field in ASC header{detail}"
        super().__init__(message)


def _read_header(lines: Iterator[Tuple[int, str]]) -> Dict[str, str]:
    header: Dict[str, str] = {}
    for field in HEADER_FIELDS:
        _line_no, line = next(lines, (0, ""))
        parts = line.split()
        if not parts or parts[0] != field:
            raise HeaderFieldError(field, parts[0] if parts else "")
        if len(parts) < 2:
            raise HeaderFieldError(field, missing_value=True)
        header[field] = parts[1]
    return header


def _header_number(header: Dict[str, str], field: str, kind=float):
    try:
        return kind(header[field])
    except ValueError:
        raise HeaderFieldError(field, header[field]) from None


def parse_asc_grid(stream: TextIO, *, source: str = "<stream>") -> Grid:
    """
    Parse an ASCII grid from an open text stream.

    Raises HeaderFieldError on the first out-of-place header keyword; no partial
    grid is ever returned.
    """
    lines = enumerate(stream, 1)
    header = _read_header(lines)

    ncols = _header_number(header, "ncols", int)
    nrows = _header_number(header, "nrows", int)
    xll = _header_number(header, "xllcorner")
    yll = _header_number(header, "yllcorner")
    cellsize = _header_number(header, "cellsize")
    nodata = header["NODATA_value"]
    if ncols < 1 or nrows < 1:
        raise DimensionMismatchError(f"{source}: invalid grid size {ncols}x{nrows}")

    print(f"[ASC] Header: {ncols:,} x {nrows:,} cells, cellsize {cellsize}, NODATA '{nodata}'")

    total = ncols * nrows
    buf = np.empty((total,), dtype=np.float32)
    pos = 0
    for line_no, line in lines:
        tokens = line.split()
        if not tokens:
            continue
        values: List[float] = []
        for tok in tokens:
            if tok == nodata:
                values.append(float(MISSING_VALUE))
                continue
            try:
                values.append(float(tok))
            except ValueError:
                raise ValueError(f"{source}:{line_no}: could not parse height '{tok}'") from None

        take = min(len(values), total - pos)
        buf[pos:pos + take] = values[:take]
        pos += take
        if pos >= total:
            break

    if pos < total:
        raise DimensionMismatchError(
            f"{source}: expected {total:,} values for {ncols}x{nrows} grid, found {pos:,}"
        )

    grid = Grid(
        ncols=ncols,
        nrows=nrows,
        cellsize=cellsize,
        origin_x=xll,
        origin_y=yll,
        cells=buf.reshape(nrows, ncols),
    )

    rng = grid.height_range()
    if rng is not None:
        print(f"[ASC]  Heights: {rng[0]:.3f} .. {rng[1]:.3f}")
    print(f"[ASC]  Missing cells: {grid.missing_count:,}")
    return grid


def read_asc_grid(path: Path) -> Grid:
    """Read an .asc file. Missing or unreadable files raise OSError from open()."""
    path = Path(path)
    print(f"[ASC] Reading: {path}")
    with path.open("r", encoding="utf-8", errors="ignore") as f:
        return parse_asc_grid(f, source=str(path))
