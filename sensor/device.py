"""Sensor collaborator contract.

The vendor SDK is reached only through :class:`SensorDevice`. Its methods
raise :class:`~utils.error_tracker.SensorError` on failure; the session
layer never lets those escape and calls them through :func:`call_device`,
which turns every outcome into a :class:`DeviceResult` value.
"""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np

from utils.error_tracker import SensorError
from utils.logger import Logger

from .formats import PixelFormat, format_for_array
from .schema import ArtifactKind, SchemaMask

# Result code for exceptions that are not SensorError
UNKNOWN_ERROR_CODE = -1


@dataclass(frozen=True)
class RawImage:
    """One undecoded image as delivered by the head."""

    data: bytes = b""
    width: int = 0
    height: int = 0
    pixel_format: int = PixelFormat.FORMAT_8U

    @property
    def empty(self) -> bool:
        return len(self.data) == 0

    @classmethod
    def from_array(
        cls, arr: np.ndarray, pixel_format: Optional[int] = None
    ) -> "RawImage":
        """Wrap ``arr`` (H x W or H x W x C); the format is inferred when omitted."""
        arr = np.ascontiguousarray(arr)
        if pixel_format is None:
            pixel_format = format_for_array(arr)
            if pixel_format is None:
                raise ValueError(f"No pixel format for dtype {arr.dtype} / shape {arr.shape}")
        height, width = (arr.shape[0], arr.shape[1]) if arr.ndim >= 2 else (1, arr.size)
        data = arr.astype(arr.dtype.newbyteorder("<"), copy=False).tobytes()
        return cls(data, width, height, int(pixel_format))


EMPTY_IMAGE = RawImage()


@dataclass
class DecodeBuffer:
    """
    Most recently received frame. Only touched while the session lock is
    held; consumers take a :class:`FrameSnapshot` instead of keeping it.
    """

    images: Dict[ArtifactKind, RawImage] = field(default_factory=dict)
    extrinsics: List[float] = field(default_factory=list)
    timestamp: Optional[float] = None
    frame_count: int = 0

    def store(
        self,
        images: Dict[ArtifactKind, RawImage],
        extrinsics: Sequence[float] = (),
        timestamp: Optional[float] = None,
    ) -> None:
        self.images = dict(images)
        self.extrinsics = [float(v) for v in extrinsics]
        self.timestamp = timestamp
        self.frame_count += 1

    def clear(self) -> None:
        self.images = {}
        self.extrinsics = []
        self.timestamp = None


@dataclass
class FrameSnapshot:
    """Copy of the parts of a frame needed to build artifacts outside the lock."""

    images: Dict[ArtifactKind, RawImage] = field(default_factory=dict)
    extrinsics: List[float] = field(default_factory=list)
    timestamp: Optional[float] = None

    def image(self, kind: ArtifactKind) -> RawImage:
        return self.images.get(kind, EMPTY_IMAGE)


@dataclass(frozen=True)
class DeviceResult:
    """Value form of a collaborator call: ``ok`` or an error ``code``/``message``."""

    ok: bool
    code: int = 0
    message: str = ""
    value: Any = None

    @classmethod
    def success(cls, value: Any = None) -> "DeviceResult":
        return cls(True, 0, "OK", value)

    @classmethod
    def failure(cls, code: int, message: str) -> "DeviceResult":
        return cls(False, int(code), message)


def call_device(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> DeviceResult:
    """Run a collaborator call, mapping raised errors to a failed result."""
    try:
        return DeviceResult.success(fn(*args, **kwargs))
    except SensorError as exc:
        return DeviceResult.failure(exc.code, exc.message)
    except Exception as exc:
        return DeviceResult.failure(UNKNOWN_ERROR_CODE, f"{type(exc).__name__}: {exc}")


class SensorDevice(ABC):
    """
    Vendor SDK surface used by the session layer.

    Handles returned by :meth:`connect` and :meth:`open_stream` are opaque
    to the rest of the project. :meth:`read_artifact` and
    :meth:`read_extrinsics` have buffer based defaults that backends can
    override when decoding is lazy.
    """

    @abstractmethod
    def connect(self, address: str, control_port: int, password: str = "") -> Any:
        """Open the control connection."""

    @abstractmethod
    def disconnect(self, handle: Any) -> None:
        """Close the control connection."""

    @abstractmethod
    def open_stream(self, handle: Any, mask: SchemaMask, data_port: int) -> Any:
        """Open a frame source delivering ``mask`` on ``data_port``."""

    @abstractmethod
    def close_stream(self, stream: Any) -> None:
        """Stop and release a frame source."""

    @abstractmethod
    def wait_for_frame(self, stream: Any, buffer: DecodeBuffer, timeout_ms: int) -> bool:
        """Block up to ``timeout_ms`` and store a complete frame into ``buffer``."""

    def read_artifact(self, buffer: DecodeBuffer, kind: ArtifactKind) -> RawImage:
        return buffer.images.get(kind, EMPTY_IMAGE)

    def read_extrinsics(self, buffer: DecodeBuffer) -> List[float]:
        return list(buffer.extrinsics)

    @abstractmethod
    def get_configuration(self, handle: Any) -> Dict[str, Any]:
        """Return the device configuration document."""

    @abstractmethod
    def set_configuration(self, handle: Any, document: Dict[str, Any]) -> None:
        """Apply (a part of) a configuration document."""

    def software_trigger(self, stream: Any) -> None:
        """Request one frame from a stream in software trigger mode."""


_BACKENDS: Dict[str, Callable[[], SensorDevice]] = {}
_logger = Logger.get_logger("sensor.device")


def register_backend(name: str, factory: Callable[[], SensorDevice]) -> None:
    """Make ``factory`` available to :func:`make_device` under ``name``."""
    if name in _BACKENDS:
        _logger.warning(f"Replacing device backend '{name}'")
    _BACKENDS[name] = factory


def make_device(name: str) -> SensorDevice:
    if name not in _BACKENDS:
        # built-in backends register themselves on import
        from . import simulated  # noqa: F401
    try:
        factory = _BACKENDS[name]
    except KeyError:
        raise ValueError(
            f"Unknown device backend '{name}', known: {sorted(_BACKENDS)}"
        ) from None
    return factory()


def available_backends() -> List[str]:
    from . import simulated  # noqa: F401

    return sorted(_BACKENDS)


def copy_document(document: Dict[str, Any]) -> Dict[str, Any]:
    return copy.deepcopy(document)
