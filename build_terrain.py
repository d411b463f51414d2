#!/usr/bin/env python3
"""
build_terrain.py

Convert LIDAR elevation files into terrain meshes.

Inputs:
- .asc  ESRI ASCII grid
- .las  LAS point cloud (formats 0-10), binned onto a regular grid (--las-cellsize)

Per input:
    read -> Grid -> [--resample N] -> [--split X Y] -> per tile:
        closed printable solid (default, flat base at --base-z)
        or open top surface (--surface-only)
    written as OBJ (default) or binary STL (--format stl).

--heightfield additionally writes a normalised [0, 1] height matrix (.npy) and its
physical size (.json) for height-field terrain hosts.

Examples:
    python build_terrain.py data/tq3580_DSM_1M.asc
    python build_terrain.py --resample 1025 --split 2 2 --format stl data/site.las
    python build_terrain.py --all --heightfield
"""

from __future__ import annotations

import argparse
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from asc_reader import HeaderFieldError, read_asc_grid
from defaults import DEFAULTS
from las_reader import LasReadError, read_las
from point_grid import METHODS, points_to_grid
from resample import heightfield_from_grid, resample_bilinear, save_heightfield
from terrain_grid import DimensionMismatchError, Grid, split_grid
from terrain_mesh import (
    Mesh,
    build_solid_mesh,
    build_surface_mesh,
    open_edge_count,
    write_binary_stl,
    write_obj,
)


INPUT_SUFFIXES = {".asc", ".las"}

# Everything a single bad input can raise; reported per file, never fatal to the run.
CONVERT_ERRORS = (HeaderFieldError, LasReadError, DimensionMismatchError, OSError, ValueError)


@dataclass(frozen=True)
class ConvertOptions:
    out_dir: Path
    las_cellsize: float = DEFAULTS["las_cellsize"]
    las_method: str = DEFAULTS["las_method"]
    resample: Optional[int] = None
    split: Optional[Tuple[int, int]] = None
    base_z: float = DEFAULTS["base_z"]
    surface_only: bool = False
    mesh_format: str = DEFAULTS["mesh_format"]
    heightfield: bool = False
    heightfield_size: int = DEFAULTS["heightfield_size"]
    model_name: str = ""


# ----------------------------
# Pipeline
# ----------------------------

def load_grid(path: Path, *, las_cellsize: float, las_method: str = "mean") -> Grid:
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix == ".asc":
        return read_asc_grid(path)
    if suffix == ".las":
        las = read_las(path)
        if las.points.shape[0] == 0:
            raise ValueError(f"{path}: LAS file contains no point records")
        return points_to_grid(las.points, las_cellsize, method=las_method)
    raise ValueError(f"{path}: unsupported input type '{path.suffix}' (expected .asc or .las)")


def _write_mesh(mesh: Mesh, out_path: Path, *, mesh_format: str, name: str, comments: List[str]) -> None:
    if mesh_format == "stl":
        write_binary_stl(mesh, out_path, solid_name=name)
    else:
        write_obj(mesh, out_path, comments=comments)


def convert_one(input_path: Path, options: ConvertOptions) -> List[Path]:
    """Run the whole pipeline for one input file. Returns the files written."""
    input_path = Path(input_path)
    print("\n" + "=" * 80)
    print(f"Converting: {input_path.name}")
    print("=" * 80)

    source_grid = load_grid(input_path, las_cellsize=options.las_cellsize, las_method=options.las_method)
    stem = f"{options.model_name}_{input_path.stem}" if options.model_name else input_path.stem

    grid = source_grid
    if options.resample is not None:
        # The target is size x size with one cellsize, so only a square grid keeps its depth.
        if grid.ncols != grid.nrows:
            raise DimensionMismatchError(
                f"{input_path.name}: --resample needs a square grid, got {grid.ncols}x{grid.nrows}"
            )
        grid = resample_bilinear(grid, options.resample)

    if options.split is not None:
        x_count, y_count = options.split
        tiles = split_grid(grid, x_count, y_count)
        names = [f"{stem}_r{i // x_count}_c{i % x_count}" for i in range(len(tiles))]
    else:
        tiles = [grid]
        names = [stem]

    # Every tile is checked before anything is written.
    small = [name for tile, name in zip(tiles, names) if tile.ncols < 2 or tile.nrows < 2]
    if small:
        raise DimensionMismatchError(
            f"{input_path.name}: {len(small)} tile(s) smaller than 2x2 cells: {', '.join(small)}"
        )

    meshes: List[Tuple[Mesh, str]] = []
    for tile, name in zip(tiles, names):
        if options.surface_only:
            meshes.append((build_surface_mesh(tile), "surface"))
            continue
        mesh = build_solid_mesh(tile, options.base_z)
        open_edges = open_edge_count(mesh)
        if open_edges:
            print(f"[WARN] {name}: {open_edges:,} edge(s) not shared by exactly two faces")
        meshes.append((mesh, f"solid, base_z {options.base_z:g}"))

    out_dir = Path(options.out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    written: List[Path] = []

    if options.heightfield:
        field = heightfield_from_grid(source_grid, options.heightfield_size)
        written.append(save_heightfield(field, out_dir, f"{stem}_heightfield"))

    suffix = ".stl" if options.mesh_format == "stl" else ".obj"
    for i, (tile, name, (mesh, kind)) in enumerate(zip(tiles, names, meshes), 1):
        out_path = out_dir / f"{name}{suffix}"
        _write_mesh(
            mesh,
            out_path,
            mesh_format=options.mesh_format,
            name=name,
            comments=[
                "Wavefront obj file created by build_terrain",
                f"source {input_path.name}, grid {tile.ncols} x {tile.nrows}, "
                f"cellsize {float(tile.cellsize):g}, {kind}",
            ],
        )
        written.append(out_path)
        if len(tiles) > 1:
            print(f"[PROGRESS] tile {i}/{len(tiles)} {name}")

    print(f"Wrote {len(written)} file(s) for {input_path.name}")
    return written


def _convert_worker(payload: Tuple[Path, ConvertOptions]) -> str:
    input_path, options = payload
    convert_one(input_path, options)
    return input_path.name


def _list_input_files(data_dir: Path) -> List[Path]:
    if not data_dir.exists():
        raise SystemExit(f"Folder not found: {data_dir.resolve()}")
    files = sorted(p for p in data_dir.rglob("*") if p.is_file() and p.suffix.lower() in INPUT_SUFFIXES)
    if not files:
        raise SystemExit(f"No .asc or .las files found in: {data_dir.resolve()}")
    return files


def run(input_files: Sequence[Path], options: ConvertOptions, *, workers: int = 1) -> int:
    """Convert every input; returns the number of failed files."""
    tasks = [(Path(p), options) for p in input_files]
    workers = max(1, int(workers))
    failures = 0

    if workers == 1 or len(tasks) == 1:
        for task in tasks:
            try:
                _convert_worker(task)
            except CONVERT_ERRORS as e:
                failures += 1
                print(f"ERROR converting {task[0]}: {e}")
        return failures

    total = len(tasks)
    completed = 0
    with ThreadPoolExecutor(max_workers=workers) as executor:
        future_map = {executor.submit(_convert_worker, task): task for task in tasks}
        for future in as_completed(future_map):
            input_path = future_map[future][0]
            completed += 1
            try:
                future.result()
            except CONVERT_ERRORS as e:
                failures += 1
                print(f"ERROR converting {input_path}: {e}")
            print(f"[PROGRESS] {completed}/{total} {input_path.name}")
    return failures


# ----------------------------
# CLI
# ----------------------------

def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Convert LIDAR .asc/.las elevation data to terrain meshes.")
    ap.add_argument("inputs", nargs="*", type=Path, help="Input .asc or .las files.")
    ap.add_argument(
        "--all",
        action="store_true",
        help="Convert every .asc/.las file under ./data (recursively).",
    )
    ap.add_argument(
        "--out-dir",
        type=Path,
        default=Path(DEFAULTS["output_dir"]),
        help=f"Output folder (default: {DEFAULTS['output_dir']}).",
    )
    ap.add_argument(
        "--las-cellsize",
        type=float,
        default=DEFAULTS["las_cellsize"],
        help=f"Cell size used to bin LAS points onto a grid (default: {DEFAULTS['las_cellsize']}).",
    )
    ap.add_argument(
        "--las-method",
        type=str,
        default=DEFAULTS["las_method"],
        choices=list(METHODS),
        help="How LAS points falling in the same cell are combined (default: mean).",
    )
    ap.add_argument(
        "--resample",
        type=int,
        default=None,
        help="Bilinear resample to an N x N grid before meshing, e.g. 1025.",
    )
    ap.add_argument(
        "--split",
        type=int,
        nargs=2,
        metavar=("X", "Y"),
        default=None,
        help="Split the grid into X by Y tiles, one mesh per tile.",
    )
    ap.add_argument(
        "--base-z",
        type=float,
        default=DEFAULTS["base_z"],
        help=f"Z of the flat base plane of the solid (default: {DEFAULTS['base_z']}).",
    )
    ap.add_argument(
        "--surface-only",
        action="store_true",
        help="Write the open top surface instead of a closed printable solid.",
    )
    ap.add_argument(
        "--format",
        dest="mesh_format",
        type=str,
        default=DEFAULTS["mesh_format"],
        choices=["obj", "stl"],
        help="Mesh file format (default: obj).",
    )
    ap.add_argument(
        "--heightfield",
        action="store_true",
        help="Also write a normalised height field (.npy + .json) for height-field terrain hosts.",
    )
    ap.add_argument(
        "--heightfield-size",
        type=int,
        default=DEFAULTS["heightfield_size"],
        help=f"Height field resolution, 2^n + 1 (default: {DEFAULTS['heightfield_size']}).",
    )
    ap.add_argument(
        "--model-name",
        type=str,
        default="",
        help="Optional prefix for output file names.",
    )
    ap.add_argument(
        "--workers",
        type=int,
        default=DEFAULTS["workers"],
        help="Number of input files converted in parallel (default: 1).",
    )
    return ap


def main(argv: Optional[Sequence[str]] = None) -> None:
    ap = build_parser()
    args = ap.parse_args(argv)

    if args.all:
        input_files = _list_input_files(Path("./data"))
        print(f"Found {len(input_files)} input file(s) under ./data")
    elif args.inputs:
        input_files = list(args.inputs)
    else:
        ap.error("Give one or more input files, or --all to convert everything under ./data.")

    if args.resample is not None and args.resample < 2:
        ap.error("--resample must be >= 2.")
    if args.split is not None and min(args.split) < 1:
        ap.error("--split counts must be >= 1.")
    if args.las_cellsize <= 0.0:
        ap.error("--las-cellsize must be > 0.")
    if args.surface_only and args.mesh_format == "stl":
        print("[WARN] --surface-only STL is an open shell and will not slice as a solid.")

    options = ConvertOptions(
        out_dir=Path(args.out_dir),
        las_cellsize=float(args.las_cellsize),
        las_method=str(args.las_method),
        resample=args.resample,
        split=tuple(args.split) if args.split is not None else None,
        base_z=float(args.base_z),
        surface_only=bool(args.surface_only),
        mesh_format=str(args.mesh_format),
        heightfield=bool(args.heightfield),
        heightfield_size=int(args.heightfield_size),
        model_name=args.model_name.strip(),
    )

    failures = run(input_files, options, workers=int(args.workers))
    if failures:
        print(f"[WARN] {failures} of {len(input_files)} file(s) failed.")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
