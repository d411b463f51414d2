"""
terrain_mesh.py

Turn a Grid into triangle meshes:
- build_surface_mesh: open top surface, Y up, for height-field style viewers
- build_solid_mesh: closed printable solid (top + side walls + flat base), Z up

and write them as Wavefront OBJ (v/f lines, 1-based) or binary STL.

Solid vertex layout:
    [0, ncols*nrows)           top surface, row-major (x fastest)
    next 4                     base corners (0,0) (ncols-1,0) (ncols-1,nrows-1) (0,nrows-1)
    next ncols-2               base run along row 0,         x = 1..ncols-2
    next nrows-2               base run along column ncols-1, y = 1..nrows-2
    next ncols-2               base run along row nrows-1,    x = 1..ncols-2
    next nrows-2               base run along column 0,       y = 1..nrows-2
Only the perimeter of the base exists; base_vertex_index() maps a perimeter
(x, y) to its slot, so corners are shared by both adjacent sides.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Sequence, Tuple

import numpy as np

from defaults import DEFAULTS
from terrain_grid import DimensionMismatchError, Grid


@dataclass(frozen=True)
class Mesh:
    vertices: np.ndarray  # (N, 3) float64
    faces: np.ndarray     # (M, 3) int64 indices into vertices


# ----------------------------
# Normals / topology checks
# ----------------------------

def compute_normals(vertices: np.ndarray, faces: np.ndarray) -> np.ndarray:
    """Unit face normals by the right-hand rule; degenerate faces get (0, 0, 0)."""
    tri = vertices[faces]  # (M, 3 corners, xyz)
    cross = np.cross(tri[:, 1] - tri[:, 0], tri[:, 2] - tri[:, 0])
    length = np.linalg.norm(cross, axis=1, keepdims=True)
    return np.where(length > 0.0, cross / np.where(length > 0.0, length, 1.0), 0.0)


def open_edge_count(mesh: Mesh) -> int:
    """Number of undirected edges not shared by exactly two faces (0 for a closed solid)."""
    f = mesh.faces.astype(np.int64, copy=False)
    edges = np.vstack([f[:, [0, 1]], f[:, [1, 2]], f[:, [2, 0]]])
    edges_sorted = np.sort(edges, axis=1)
    _, counts = np.unique(edges_sorted, axis=0, return_counts=True)
    return int(np.count_nonzero(counts != 2))


# ----------------------------
# Top surface
# ----------------------------

def _grid_faces(ncols: int, nrows: int) -> np.ndarray:
    """
    Two triangles per quad, split along (x,y)-(x+1,y+1), counter-clockwise when
    x/y are seen from above. Quads in row-major order, both triangles together.
    """
    grid = np.arange(ncols * nrows, dtype=np.int64).reshape(nrows, ncols)
    v00 = grid[:-1, :-1].ravel()
    v10 = grid[:-1, 1:].ravel()
    v01 = grid[1:, :-1].ravel()
    v11 = grid[1:, 1:].ravel()

    pairs = np.stack([
        np.stack([v00, v10, v11], axis=1),
        np.stack([v00, v11, v01], axis=1),
    ], axis=1)
    return pairs.reshape(-1, 3)


def _require_mesh_size(grid: Grid) -> None:
    if grid.ncols < 2 or grid.nrows < 2:
        raise DimensionMismatchError(
            f"Need at least 2x2 cells to build a mesh, got {grid.ncols}x{grid.nrows}"
        )


def build_surface_mesh(grid: Grid) -> Mesh:
    """
    One vertex per cell at (x*cellsize, height, y*cellsize), Y up.

    Missing heights are drawn at 0, which makes them indistinguishable from
    real zero-height data.
    """
    _require_mesh_size(grid)
    ncols, nrows = grid.ncols, grid.nrows
    cs = float(grid.cellsize)

    xs = np.arange(ncols, dtype=np.float64) * cs
    ys = np.arange(nrows, dtype=np.float64) * cs
    xv, yv = np.meshgrid(xs, ys)
    heights = grid.filled(0.0).astype(np.float64)
    verts = np.column_stack([xv.ravel(), heights.ravel(), yv.ravel()])

    # Swapping y and z mirrors the grid, so flip the winding to keep normals on +height.
    faces = _grid_faces(ncols, nrows)[:, [0, 2, 1]]

    print(f"[MESH] Surface: {verts.shape[0]:,} vertices, {faces.shape[0]:,} triangles")
    return Mesh(vertices=verts, faces=faces)


# ----------------------------
# Solid (printable)
# ----------------------------

def base_vertex_count(ncols: int, nrows: int) -> int:
    return 4 + 2 * (ncols - 2) + 2 * (nrows - 2)


def base_vertex_index(x: int, y: int, ncols: int, nrows: int) -> int:
    """Absolute index of the base vertex under perimeter position (x, y)."""
    top = ncols * nrows
    last_x, last_y = ncols - 1, nrows - 1
    run_x, run_y = ncols - 2, nrows - 2

    if (x, y) == (0, 0):
        return top
    if (x, y) == (last_x, 0):
        return top + 1
    if (x, y) == (last_x, last_y):
        return top + 2
    if (x, y) == (0, last_y):
        return top + 3

    start = top + 4
    if y == 0 and 0 < x < last_x:
        return start + (x - 1)
    if x == last_x and 0 < y < last_y:
        return start + run_x + (y - 1)
    if y == last_y and 0 < x < last_x:
        return start + run_x + run_y + (x - 1)
    if x == 0 and 0 < y < last_y:
        return start + 2 * run_x + run_y + (y - 1)
    raise ValueError(f"({x}, {y}) is not on the perimeter of a {ncols}x{nrows} grid")


def _perimeter_positions(ncols: int, nrows: int) -> List[Tuple[int, int]]:
    """Perimeter (x, y) positions in base vertex emission order."""
    last_x, last_y = ncols - 1, nrows - 1
    positions = [(0, 0), (last_x, 0), (last_x, last_y), (0, last_y)]
    positions += [(x, 0) for x in range(1, last_x)]
    positions += [(last_x, y) for y in range(1, last_y)]
    positions += [(x, last_y) for x in range(1, last_x)]
    positions += [(0, y) for y in range(1, last_y)]
    return positions


def _wall_strip(
    side: Sequence[Tuple[int, int]], ncols: int, nrows: int
) -> List[Tuple[int, int, int]]:
    """
    Triangle strip between the top edge and the base edge along one side.
    `side` must run clockwise seen from above (opposite to the top surface's
    boundary) for the wall to face outward.
    """
    faces: List[Tuple[int, int, int]] = []
    for (px, py), (qx, qy) in zip(side, side[1:]):
        tp = py * ncols + px
        tq = qy * ncols + qx
        bp = base_vertex_index(px, py, ncols, nrows)
        bq = base_vertex_index(qx, qy, ncols, nrows)
        faces.append((tp, tq, bq))
        faces.append((tp, bq, bp))
    return faces


def _base_faces(ncols: int, nrows: int) -> List[Tuple[int, int, int]]:
    """
    Triangulate the base polygon (perimeter vertices only), facing down:
    fan over column 0 pivoting on (1, 0), fan over column ncols-1 pivoting on
    (ncols-2, nrows-1), then a strip between row 0 and row nrows-1.
    """
    last_x, last_y = ncols - 1, nrows - 1

    def b(x: int, y: int) -> int:
        return base_vertex_index(x, y, ncols, nrows)

    faces: List[Tuple[int, int, int]] = []

    pivot = b(1, 0)
    for y in range(last_y):
        faces.append((pivot, b(0, y), b(0, y + 1)))

    pivot = b(last_x - 1, last_y)
    for y in range(last_y):
        faces.append((pivot, b(last_x, y + 1), b(last_x, y)))

    # row 0 from x=1 pairs with row nrows-1 from x=0
    for k in range(ncols - 2):
        s0, s1 = b(k + 1, 0), b(k + 2, 0)
        n0, n1 = b(k, last_y), b(k + 1, last_y)
        faces.append((s0, n0, n1))
        faces.append((s0, n1, s1))

    return faces


def build_solid_mesh(grid: Grid, base_z: float = DEFAULTS["base_z"]) -> Mesh:
    """
    Closed solid: top surface at (x*cellsize, y*cellsize, height), Z up, four
    side walls down to a flat base at z = base_z.

    Faces: top surface, walls along row 0, column ncols-1, row nrows-1, column 0,
    then the base. Every edge is shared by exactly two faces.
    """
    _require_mesh_size(grid)
    ncols, nrows = grid.ncols, grid.nrows
    cs = float(grid.cellsize)
    heights = grid.filled(0.0).astype(np.float64)

    lowest = float(heights.min())
    if base_z >= lowest:
        raise ValueError(f"base_z {base_z} must be below the lowest surface height {lowest:.3f}")

    print(f"[SOLID] Building watertight solid from {ncols:,} x {nrows:,} grid, base_z={base_z:.3f}")

    xs = np.arange(ncols, dtype=np.float64) * cs
    ys = np.arange(nrows, dtype=np.float64) * cs
    xv, yv = np.meshgrid(xs, ys)
    v_top = np.column_stack([xv.ravel(), yv.ravel(), heights.ravel()])

    perimeter = _perimeter_positions(ncols, nrows)
    v_base = np.array(
        [(x * cs, y * cs, float(base_z)) for x, y in perimeter], dtype=np.float64
    ).reshape(-1, 3)

    last_x, last_y = ncols - 1, nrows - 1
    sides = [
        [(x, 0) for x in range(last_x, -1, -1)],
        [(last_x, y) for y in range(last_y, -1, -1)],
        [(x, last_y) for x in range(0, ncols)],
        [(0, y) for y in range(0, nrows)],
    ]
    wall_faces: List[Tuple[int, int, int]] = []
    for side in sides:
        wall_faces.extend(_wall_strip(side, ncols, nrows))

    f_top = _grid_faces(ncols, nrows)
    f_wall = np.asarray(wall_faces, dtype=np.int64).reshape(-1, 3)
    f_base = np.asarray(_base_faces(ncols, nrows), dtype=np.int64).reshape(-1, 3)

    vertices = np.vstack([v_top, v_base])
    faces = np.vstack([f_top, f_wall, f_base]).astype(np.int64, copy=False)

    print(
        f"[SOLID] Top {f_top.shape[0]:,} tris, walls {f_wall.shape[0]:,} tris, "
        f"base {f_base.shape[0]:,} tris"
    )
    print(f"[SOLID] Total: {vertices.shape[0]:,} vertices, {faces.shape[0]:,} triangles")
    return Mesh(vertices=vertices, faces=faces)


# ----------------------------
# Writers
# ----------------------------

def write_obj(mesh: Mesh, out_path: Path, comments: Iterable[str] = ()) -> None:
    """Wavefront OBJ, v and f lines only, 1-based face indices."""
    out_path = Path(out_path)
    print(f"[OBJ] Writing: {out_path}")

    v = mesh.vertices
    f = mesh.faces
    with out_path.open("w", encoding="utf-8", newline="\n") as w:
        for line in comments:
            w.write(f"# {line}\n")
        for x, y, z in v:
            w.write(f"v {x:.6f} {y:.6f} {z:.6f}\n")
        for i0, i1, i2 in f + 1:
            w.write(f"f {i0} {i1} {i2}\n")

    print(f"[OBJ]  {v.shape[0]:,} vertices, {f.shape[0]:,} faces")


# Binary STL record: normal, three corners, attribute byte count (always 0).
STL_TRIANGLE = np.dtype([
    ("normal", "<f4", (3,)),
    ("corners", "<f4", (3, 3)),
    ("attr", "<u2"),
])


def write_binary_stl(mesh: Mesh, out_path: Path, solid_name: str = "terrain") -> None:
    out_path = Path(out_path)
    print(f"[STL] Writing Binary STL: {out_path}")

    count = int(mesh.faces.shape[0])
    records = np.zeros((count,), dtype=STL_TRIANGLE)
    records["normal"] = compute_normals(mesh.vertices, mesh.faces)
    records["corners"] = mesh.vertices[mesh.faces]

    with out_path.open("wb") as w:
        w.write(solid_name.encode("ascii", errors="ignore")[:80].ljust(80, b"\0"))
        w.write(struct.pack("<I", count))
        w.write(records.tobytes())

    print(f"[STL]  {count:,} triangles")


def export_solid_obj(grid: Grid, out_path: Path, base_z: float = DEFAULTS["base_z"]) -> Mesh:
    """Build the closed solid and write it as OBJ. Same grid and base_z give the same bytes."""
    mesh = build_solid_mesh(grid, base_z)
    write_obj(
        mesh,
        out_path,
        comments=[
            "Wavefront obj file created by build_terrain",
            f"grid {grid.ncols} x {grid.nrows}, cellsize {float(grid.cellsize):g}, base_z {float(base_z):g}",
        ],
    )
    return mesh
