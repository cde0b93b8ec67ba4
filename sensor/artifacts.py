"""Publishable artifacts and the builders turning raw images into them."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Sequence

import cv2
import numpy as np
from scipy.spatial.transform import Rotation

from utils.logger import Logger

from .device import RawImage
from .formats import (
    EIGHT_BIT_FORMATS,
    PixelFormat,
    PixelFormatError,
    layout_for,
    reinterpret,
    to_format,
)

logger = Logger.get_logger("sensor.artifacts")

FLOAT32 = 7  # PointField datatype id for IEEE float32
EXTRINSICS_FIELDS = ("tx", "ty", "tz", "rot_x", "rot_y", "rot_z")


@dataclass(frozen=True)
class Header:
    """Capture time (seconds since the epoch) and frame of reference."""

    stamp: float
    frame_id: str


@dataclass
class Image:
    header: Header
    height: int = 0
    width: int = 0
    encoding: str = ""
    is_bigendian: bool = False
    step: int = 0
    data: bytes = b""

    @property
    def empty(self) -> bool:
        return not self.data

    def to_numpy(self) -> np.ndarray:
        """Pixel array shaped like the source image (empty array if no data)."""
        if self.empty:
            return np.zeros((0, 0), dtype=np.uint8)
        fmt = ENCODING_FORMATS[self.encoding]
        return reinterpret(self.data, layout_for(fmt), self.width, self.height)


@dataclass
class CompressedImage:
    header: Header
    format: str = "jpeg"
    width: int = 0
    height: int = 0
    data: bytes = b""

    @property
    def empty(self) -> bool:
        return not self.data

    def decode(self) -> np.ndarray | None:
        """Decode with OpenCV; ``None`` when empty or not a valid stream."""
        if self.empty:
            return None
        return cv2.imdecode(np.frombuffer(self.data, dtype=np.uint8), cv2.IMREAD_UNCHANGED)


@dataclass(frozen=True)
class PointField:
    name: str
    offset: int
    datatype: int = FLOAT32
    count: int = 1


XYZ_FIELDS = (
    PointField("x", 0),
    PointField("y", 4),
    PointField("z", 8),
)


@dataclass
class PointCloud:
    header: Header
    height: int = 0
    width: int = 0
    fields: List[PointField] = field(default_factory=list)
    is_bigendian: bool = False
    point_step: int = 0
    row_step: int = 0
    data: bytes = b""
    is_dense: bool = False

    @property
    def empty(self) -> bool:
        return not self.data

    def to_numpy(self) -> np.ndarray:
        """``(N, 3)`` float32 points in row-major pixel order."""
        if self.empty:
            return np.zeros((0, 3), dtype=np.float32)
        return np.frombuffer(self.data, dtype="<f4").reshape(-1, 3)

    def to_open3d(self, drop_invalid: bool = True):
        """Open3D cloud; all-zero points (no return) are dropped by default."""
        import open3d as o3d

        points = self.to_numpy().astype(np.float64)
        if drop_invalid and points.size:
            points = points[np.any(points != 0.0, axis=1) & np.all(np.isfinite(points), axis=1)]
        pcd = o3d.geometry.PointCloud()
        pcd.points = o3d.utility.Vector3dVector(points)
        return pcd


@dataclass
class Extrinsics:
    """Head mounting pose: translation (m) and xyz Euler rotation (rad)."""

    header: Header
    tx: float = 0.0
    ty: float = 0.0
    tz: float = 0.0
    rot_x: float = 0.0
    rot_y: float = 0.0
    rot_z: float = 0.0

    def as_vector(self) -> List[float]:
        return [getattr(self, name) for name in EXTRINSICS_FIELDS]

    def as_matrix(self) -> np.ndarray:
        T = np.eye(4)
        T[:3, :3] = Rotation.from_euler("xyz", [self.rot_x, self.rot_y, self.rot_z]).as_matrix()
        T[:3, 3] = [self.tx, self.ty, self.tz]
        return T


ENCODING_FORMATS = {
    layout_for(fmt).encoding: fmt for fmt in PixelFormat
}


def build_image(raw: RawImage, header: Header) -> Image:
    """Image artifact from ``raw``; empty (0x0) when there is nothing to decode."""
    result = Image(header=header)
    if raw.empty:
        return result

    layout = layout_for(raw.pixel_format)
    if layout is None:
        logger.error(f"Pixel format out of range ({raw.pixel_format})")
        return result

    try:
        pixels = reinterpret(raw.data, layout, raw.width, raw.height)
    except PixelFormatError as exc:
        logger.error(f"Cannot decode {layout.encoding} image: {exc}")
        return result

    result.height = raw.height
    result.width = raw.width
    result.encoding = layout.encoding
    result.step = layout.row_step(raw.width)
    result.data = pixels.tobytes()
    return result


def build_compressed_image(
    raw: RawImage, header: Header, fmt: str = "jpeg"
) -> CompressedImage:
    """Wrap an already compressed 8-bit stream (``"jpeg"`` or ``"png"``)."""
    result = CompressedImage(header=header, format=fmt)
    if raw.empty:
        return result

    if to_format(raw.pixel_format) not in EIGHT_BIT_FORMATS:
        logger.error(f"Invalid data format for {fmt} data ({raw.pixel_format})")
        return result

    size = raw.width * raw.height
    if len(raw.data) < size:
        logger.error(f"Truncated {fmt} data: {len(raw.data)} < {size} bytes")
        return result

    result.width = raw.width
    result.height = raw.height
    result.data = bytes(raw.data[:size])
    return result


def build_point_cloud(raw: RawImage, header: Header) -> PointCloud:
    """Dense x/y/z float cloud from a 3-channel float image."""
    result = PointCloud(header=header)
    if raw.empty:
        return result

    if to_format(raw.pixel_format) != PixelFormat.FORMAT_32F3:
        logger.error(f"Unsupported pixel format {raw.pixel_format} for point cloud")
        return result

    layout = layout_for(PixelFormat.FORMAT_32F3)
    try:
        xyz = reinterpret(raw.data, layout, raw.width, raw.height)
    except PixelFormatError as exc:
        logger.error(f"Cannot decode point cloud: {exc}")
        return result

    result.height = raw.height
    result.width = raw.width
    result.fields = list(XYZ_FIELDS)
    result.point_step = len(XYZ_FIELDS) * 4
    result.row_step = result.point_step * raw.width
    result.is_dense = True
    result.data = xyz.tobytes()
    return result


def build_extrinsics(values: Sequence[float], header: Header) -> Extrinsics:
    """Extrinsics artifact; missing entries of a short vector stay zero."""
    result = Extrinsics(header=header)
    values = list(values or ())
    if len(values) < len(EXTRINSICS_FIELDS):
        logger.warning(
            f"out-of-range error fetching extrinsics ({len(values)} of "
            f"{len(EXTRINSICS_FIELDS)} values)"
        )
    for name, value in zip(EXTRINSICS_FIELDS, values):
        setattr(result, name, float(value))
    return result
