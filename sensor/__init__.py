"""Acquisition, decoding and control of a network-attached time-of-flight head.

The :mod:`sensor` package is layered leaf-first: pixel formats and artifact
builders, the device contract, the session manager owning the connection,
the acquisition loop keeping the stream alive, and the control facade.
:class:`CameraNode` wires them together.
"""

from .acquisition import AcquisitionLoop, LoopState, TimingParams
from .artifacts import (
    CompressedImage,
    Extrinsics,
    Header,
    Image,
    PointCloud,
    build_compressed_image,
    build_extrinsics,
    build_image,
    build_point_cloud,
)
from .control import ControlResult, PortState, SessionControlFacade, StatusCode
from .device import (
    DecodeBuffer,
    DeviceResult,
    RawImage,
    SensorDevice,
    make_device,
    register_backend,
)
from .formats import PixelFormat, PixelLayout, layout_for
from .node import CameraNode
from .publisher import DiskPublisher, MemoryPublisher, Publisher
from .schema import ArtifactKind, SchemaMask
from .session import SessionManager, SessionState

__all__ = [
    "AcquisitionLoop",
    "LoopState",
    "TimingParams",
    "CompressedImage",
    "Extrinsics",
    "Header",
    "Image",
    "PointCloud",
    "build_compressed_image",
    "build_extrinsics",
    "build_image",
    "build_point_cloud",
    "ControlResult",
    "PortState",
    "SessionControlFacade",
    "StatusCode",
    "DecodeBuffer",
    "DeviceResult",
    "RawImage",
    "SensorDevice",
    "make_device",
    "register_backend",
    "PixelFormat",
    "PixelLayout",
    "layout_for",
    "CameraNode",
    "DiskPublisher",
    "MemoryPublisher",
    "Publisher",
    "ArtifactKind",
    "SchemaMask",
    "SessionManager",
    "SessionState",
]
