"""
las_reader.py

Read binary LAS point clouds (formats 0-10) into real-world XYZ points.

Layout (all little-endian):
- public header block: "LASF" signature, version, scale/offset per axis,
  point data format, legacy point count, bounding box (LAS 1.3/1.4 append a few
  extra fields, read only when header_size says they are there)
- point records at offset_to_point_data, all in the one layout chosen by the
  header's point data format.

Point layouts are numpy structured dtypes assembled from field groups, one
dtype per format code, so a whole block of records decodes in one frombuffer call.
Only X/Y/Z are interpreted; the remaining fields are kept as decoded.
"""

from __future__ import annotations

import struct
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Sequence, Tuple

import numpy as np


LAS_SIGNATURE = b"LASF"

# Public header sizes by LAS version.
HEADER_SIZE_1_2 = 227
HEADER_SIZE_1_3 = 235
HEADER_SIZE_1_4 = 375


class LasReadError(ValueError):
    """The buffer is not a LAS file this reader can decode."""


class BadMagicError(LasReadError):
    def __init__(self, signature: bytes) -> None:
        self.signature = signature
        super().__init__(f"FileSignature expected 'LASF' but found {signature!r}")


class UnsupportedFormatError(LasReadError):
    def __init__(self, point_format: int) -> None:
        self.point_format = point_format
        super().__init__(f"Unsupported point data record format {point_format} (expected 0-10)")


# ----------------------------
# Byte cursor
# ----------------------------

class ByteCursor:
    """Forward-only little-endian reader over an in-memory buffer."""

    def __init__(self, data: bytes, pos: int = 0) -> None:
        self.data = data
        self.pos = int(pos)

    def _take(self, size: int) -> int:
        start = self.pos
        if start + size > len(self.data):
            raise LasReadError(
                f"LAS data truncated: need {size} byte(s) at offset {start:,}, buffer is {len(self.data):,} bytes"
            )
        self.pos = start + size
        return start

    def _unpack(self, fmt: str):
        s = struct.Struct(fmt)
        return s.unpack_from(self.data, self._take(s.size))[0]

    def u8(self) -> int:
        return self._unpack("<B")

    def u16(self) -> int:
        return self._unpack("<H")

    def u32(self) -> int:
        return self._unpack("<I")

    def u64(self) -> int:
        return self._unpack("<Q")

    def i16(self) -> int:
        return self._unpack("<h")

    def i32(self) -> int:
        return self._unpack("<i")

    def f32(self) -> float:
        return self._unpack("<f")

    def f64(self) -> float:
        return self._unpack("<d")

    def raw(self, size: int) -> bytes:
        start = self._take(size)
        return bytes(self.data[start:start + size])

    def text(self, size: int) -> str:
        """Fixed-length char[] field; NUL padding is dropped."""
        return self.raw(size).split(b"\0", 1)[0].decode("ascii", errors="replace")

    def seek(self, pos: int) -> None:
        if pos < self.pos:
            raise LasReadError(f"Cannot seek backwards from {self.pos:,} to {pos:,}")
        if pos > len(self.data):
            raise LasReadError(f"Seek to {pos:,} is past the end of a {len(self.data):,} byte buffer")
        self.pos = int(pos)

    def records(self, dtype: np.dtype, count: int) -> np.ndarray:
        if count == 0:
            return np.zeros((0,), dtype=dtype)
        start = self._take(dtype.itemsize * count)
        return np.frombuffer(self.data, dtype=dtype, count=count, offset=start)


# ----------------------------
# Header
# ----------------------------

@dataclass
class LasHeader:
    file_signature: str
    file_source_id: int
    global_encoding: int
    project_id_1: int
    project_id_2: int
    project_id_3: int
    project_id_4: bytes
    version_major: int
    version_minor: int
    system_identifier: str
    generating_software: str
    creation_day_of_year: int
    creation_year: int
    header_size: int
    offset_to_point_data: int
    number_of_vlrs: int
    point_data_format: int
    point_record_length: int
    legacy_point_count: int
    legacy_points_by_return: List[int]
    x_scale: float
    y_scale: float
    z_scale: float
    x_offset: float
    y_offset: float
    z_offset: float
    max_x: float
    min_x: float
    max_y: float
    min_y: float
    max_z: float
    min_z: float
    # LAS 1.3+
    waveform_data_start: int = 0
    # LAS 1.4
    first_evlr_start: int = 0
    number_of_evlrs: int = 0
    point_count: int = 0
    points_by_return: List[int] = field(default_factory=list)

    @property
    def version(self) -> str:
        return f"{self.version_major}.{self.version_minor}"

    @property
    def project_id(self) -> uuid.UUID:
        tail = self.project_id_4.ljust(8, b"\0")
        return uuid.UUID(fields=(
            self.project_id_1,
            self.project_id_2,
            self.project_id_3,
            tail[0],
            tail[1],
            int.from_bytes(tail[2:8], "big"),
        ))

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        return (self.min_x, self.min_y, self.max_x, self.max_y)


def parse_las_header(data: bytes) -> LasHeader:
    """
    Decode the public header block.

    Raises BadMagicError before any other field is read when the first four
    bytes are not "LASF".
    """
    cur = ByteCursor(data)
    signature = data[:4]
    if bytes(signature) != LAS_SIGNATURE:
        raise BadMagicError(bytes(signature))

    fields: Dict[str, object] = {}
    fields["file_signature"] = cur.text(4)
    fields["file_source_id"] = cur.u16()
    fields["global_encoding"] = cur.u16()
    fields["project_id_1"] = cur.u32()
    fields["project_id_2"] = cur.u16()
    fields["project_id_3"] = cur.u16()
    fields["project_id_4"] = cur.raw(8)
    fields["version_major"] = cur.u8()
    fields["version_minor"] = cur.u8()
    fields["system_identifier"] = cur.text(32)
    fields["generating_software"] = cur.text(32)
    fields["creation_day_of_year"] = cur.u16()
    fields["creation_year"] = cur.u16()
    fields["header_size"] = cur.u16()
    fields["offset_to_point_data"] = cur.u32()
    fields["number_of_vlrs"] = cur.u32()
    # Some writers set the top bit (compression flag); only the low 7 bits name the layout.
    fields["point_data_format"] = cur.u8() & 0x7F
    fields["point_record_length"] = cur.u16()
    fields["legacy_point_count"] = cur.u32()
    fields["legacy_points_by_return"] = [cur.u32() for _ in range(5)]
    for name in ("x_scale", "y_scale", "z_scale", "x_offset", "y_offset", "z_offset",
                 "max_x", "min_x", "max_y", "min_y", "max_z", "min_z"):
        fields[name] = cur.f64()

    header_size = int(fields["header_size"])
    if header_size >= HEADER_SIZE_1_3:
        fields["waveform_data_start"] = cur.u64()
    if header_size >= HEADER_SIZE_1_4:
        fields["first_evlr_start"] = cur.u64()
        fields["number_of_evlrs"] = cur.u32()
        fields["point_count"] = cur.u64()
        fields["points_by_return"] = [cur.u64() for _ in range(15)]

    return LasHeader(**fields)


# ----------------------------
# Point data record formats
# ----------------------------

_BASE = [("X", "<i4"), ("Y", "<i4"), ("Z", "<i4"), ("intensity", "<u2")]
_LEGACY = [
    ("return_bits", "u1"),
    ("classification", "u1"),
    ("scan_angle_rank", "i1"),
    ("user_data", "u1"),
    ("point_source_id", "<u2"),
]
_EXTENDED = [
    ("return_bits", "u1"),
    ("flag_bits", "u1"),
    ("classification", "u1"),
    ("user_data", "u1"),
    ("scan_angle", "<i2"),
    ("point_source_id", "<u2"),
    ("gps_time", "<f8"),
]
_GPS = [("gps_time", "<f8")]
_RGB = [("red", "<u2"), ("green", "<u2"), ("blue", "<u2")]
_NIR = [("nir", "<u2")]
_WAVE = [
    ("wave_packet_index", "u1"),
    ("waveform_offset", "<u8"),
    ("waveform_size", "<u4"),
    ("waveform_location", "<f4"),
    ("xt", "<f4"),
    ("yt", "<f4"),
    ("zt", "<f4"),
]

_FORMAT_FIELDS: Dict[int, Sequence[Tuple[str, str]]] = {
    0: _BASE + _LEGACY,
    1: _BASE + _LEGACY + _GPS,
    2: _BASE + _LEGACY + _RGB,
    3: _BASE + _LEGACY + _GPS + _RGB,
    4: _BASE + _LEGACY + _GPS + _WAVE,
    5: _BASE + _LEGACY + _GPS + _RGB + _WAVE,
    6: _BASE + _EXTENDED,
    7: _BASE + _EXTENDED + _RGB,
    8: _BASE + _EXTENDED + _RGB + _NIR,
    9: _BASE + _EXTENDED + _WAVE,
    10: _BASE + _EXTENDED + _RGB + _NIR + _WAVE,
}

POINT_FORMATS: Dict[int, np.dtype] = {code: np.dtype(list(f)) for code, f in _FORMAT_FIELDS.items()}


def point_dtype(point_format: int, record_length: int = 0) -> np.dtype:
    """
    Record dtype for a format code. A record_length wider than the layout
    (trailing "extra bytes") becomes the stride; narrower is an error.
    """
    dtype = POINT_FORMATS.get(int(point_format))
    if dtype is None:
        raise UnsupportedFormatError(int(point_format))
    if record_length == 0 or record_length == dtype.itemsize:
        return dtype
    if record_length < dtype.itemsize:
        raise LasReadError(
            f"Point record length {record_length} is shorter than format {point_format} ({dtype.itemsize} bytes)"
        )
    return np.dtype({
        "names": list(dtype.names),
        "formats": [dtype.fields[n][0] for n in dtype.names],
        "offsets": [dtype.fields[n][1] for n in dtype.names],
        "itemsize": int(record_length),
    })


def read_point_records(header: LasHeader, data: bytes) -> np.ndarray:
    """Decode legacy_point_count records starting at offset_to_point_data."""
    dtype = point_dtype(header.point_data_format, header.point_record_length)
    cur = ByteCursor(data)
    cur.seek(header.offset_to_point_data)
    return cur.records(dtype, int(header.legacy_point_count))


def scaled_xyz(header: LasHeader, records: np.ndarray) -> np.ndarray:
    """Apply real = stored * scale + offset per axis. Returns (N, 3) float64."""
    xyz = np.empty((records.shape[0], 3), dtype=np.float64)
    xyz[:, 0] = records["X"].astype(np.float64) * header.x_scale + header.x_offset
    xyz[:, 1] = records["Y"].astype(np.float64) * header.y_scale + header.y_offset
    xyz[:, 2] = records["Z"].astype(np.float64) * header.z_scale + header.z_offset
    return xyz


@dataclass(frozen=True)
class LasData:
    header: LasHeader
    records: np.ndarray  # structured, dtype from POINT_FORMATS
    points: np.ndarray   # (N, 3) float64 real-world XYZ


def parse_las(data: bytes) -> LasData:
    header = parse_las_header(data)
    print(
        f"[LAS] Version {header.version}, point format {header.point_data_format}, "
        f"{header.legacy_point_count:,} points"
    )
    records = read_point_records(header, data)
    points = scaled_xyz(header, records)

    if points.shape[0]:
        mins = points.min(axis=0)
        maxs = points.max(axis=0)
        print(f"[LAS]  Bounds X: {mins[0]:.3f} .. {maxs[0]:.3f}")
        print(f"[LAS]  Bounds Y: {mins[1]:.3f} .. {maxs[1]:.3f}")
        print(f"[LAS]  Bounds Z: {mins[2]:.3f} .. {maxs[2]:.3f}")
    return LasData(header=header, records=records, points=points)


def read_las(path: Path) -> LasData:
    path = Path(path)
    print(f"[LAS] Reading: {path}")
    with path.open("rb") as f:
        data = f.read()
    return parse_las(data)
