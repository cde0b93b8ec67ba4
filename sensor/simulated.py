"""Synthetic sensor head for dry runs and demos.

Generates a tilted plane seen by a pinhole head: unit vectors, radial
distance, per-pixel noise, amplitude, confidence, the cartesian cloud, a
gray image and a JPEG color image, at a fixed frame rate.
"""

from __future__ import annotations

import itertools
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict

import cv2
import numpy as np

from utils.error_tracker import SensorConfigError, SensorConnectionError, SensorError
from utils.logger import Logger

from .device import DecodeBuffer, RawImage, SensorDevice, copy_document, register_backend
from .formats import PixelFormat
from .schema import ArtifactKind, SchemaMask


@dataclass
class SimulatedHead:
    width: int = 224
    height: int = 172
    fov_deg: float = 60.0
    fps: float = 10.0
    plane_distance: float = 1.5
    noise_std: float = 0.005
    color_size: tuple[int, int] = (640, 480)
    extrinsics: tuple[float, ...] = (0.0, 0.0, 0.3, 0.0, 0.0, 0.0)


def _default_configuration(data_port: int) -> Dict[str, Any]:
    port = data_port % 50010
    return {
        "device": {"info": {"name": "simulated", "deviceType": "O3R"}},
        "ports": {f"port{port}": {"state": "RUN", "data": {"pcicTCPPort": data_port}}},
    }


class SimulatedDevice(SensorDevice):
    """In-process head honoring the :class:`SensorDevice` contract."""

    def __init__(self, head: SimulatedHead | None = None, seed: int = 0) -> None:
        self.head = head or SimulatedHead()
        self.logger = Logger.get_logger("sensor.simulated")
        self._rng = np.random.default_rng(seed)
        self._handles = itertools.count(1)
        self._lock = threading.Lock()
        self._config: Dict[str, Any] = _default_configuration(50010)
        self._uvec = self._unit_vectors()
        self._last_frame = 0.0

    def _unit_vectors(self) -> np.ndarray:
        h = self.head
        f = 0.5 * h.width / np.tan(np.deg2rad(h.fov_deg) / 2.0)
        u, v = np.meshgrid(np.arange(h.width), np.arange(h.height))
        rays = np.stack(
            [(u - h.width / 2.0) / f, (v - h.height / 2.0) / f, np.ones_like(u, dtype=float)],
            axis=-1,
        )
        return (rays / np.linalg.norm(rays, axis=-1, keepdims=True)).astype(np.float32)

    def connect(self, address: str, control_port: int, password: str = "") -> Any:
        if not address:
            raise SensorConnectionError(-9001, "No camera address configured")
        handle = {"id": next(self._handles), "address": address, "port": control_port}
        self.logger.debug(f"Connected to simulated head {address}:{control_port}")
        return handle

    def disconnect(self, handle: Any) -> None:
        self.logger.debug(f"Disconnected handle {handle['id']}")

    def open_stream(self, handle: Any, mask: SchemaMask, data_port: int) -> Any:
        port = f"port{data_port % 50010}"
        with self._lock:
            if port not in self._config["ports"]:
                self._config["ports"][port] = _default_configuration(data_port)["ports"][port]
        return {"handle": handle, "mask": SchemaMask(mask), "port": port}

    def close_stream(self, stream: Any) -> None:
        stream["closed"] = True

    def wait_for_frame(self, stream: Any, buffer: DecodeBuffer, timeout_ms: int) -> bool:
        if stream.get("closed"):
            raise SensorError(-9002, "Frame source is closed")
        with self._lock:
            state = self._config["ports"][stream["port"]].get("state", "RUN")
        period = 1.0 / self.head.fps
        wait = max(0.0, self._last_frame + period - time.time())
        if state != "RUN" or wait * 1000.0 > timeout_ms:
            time.sleep(timeout_ms / 1000.0)
            return False
        time.sleep(wait)
        self._last_frame = time.time()
        buffer.store(
            self._render(stream["mask"]),
            self.head.extrinsics,
            timestamp=self._last_frame,
        )
        return True

    def _render(self, mask: SchemaMask) -> Dict[ArtifactKind, RawImage]:
        h = self.head
        images: Dict[ArtifactKind, RawImage] = {}
        if mask & SchemaMask.IMG_UVEC:
            images[ArtifactKind.UNIT_VECTORS] = RawImage.from_array(self._uvec)
            return images

        # plane z = plane_distance tilted around x
        tilt = 0.2 * self._uvec[..., 1]
        distance = h.plane_distance / np.clip(self._uvec[..., 2] - tilt, 0.2, None)
        noise = np.abs(self._rng.normal(0.0, h.noise_std, distance.shape))
        distance = (distance + noise).astype(np.float32)
        amplitude = (1000.0 / np.square(distance)).astype(np.float32)

        images[ArtifactKind.CONFIDENCE] = RawImage.from_array(
            np.zeros(distance.shape, dtype=np.uint16)
        )
        images[ArtifactKind.DISTANCE] = RawImage.from_array(distance)
        images[ArtifactKind.DISTANCE_NOISE] = RawImage.from_array(noise.astype(np.float32))
        images[ArtifactKind.AMPLITUDE] = RawImage.from_array(amplitude)
        images[ArtifactKind.RAW_AMPLITUDE] = RawImage.from_array(
            np.clip(amplitude, 0, 65535).astype(np.uint16)
        )
        images[ArtifactKind.GRAY] = RawImage.from_array(
            cv2.normalize(amplitude, None, 0, 255, cv2.NORM_MINMAX).astype(np.uint8)
        )
        images[ArtifactKind.XYZ] = RawImage.from_array(
            (self._uvec * distance[..., None]).astype(np.float32)
        )
        images[ArtifactKind.JPEG] = self._jpeg(images[ArtifactKind.GRAY])
        return images

    def _jpeg(self, gray: RawImage) -> RawImage:
        img = np.frombuffer(gray.data, dtype=np.uint8).reshape(gray.height, gray.width)
        color = cv2.applyColorMap(cv2.resize(img, self.head.color_size), cv2.COLORMAP_JET)
        ok, encoded = cv2.imencode(".jpg", color)
        if not ok:
            return RawImage()
        # compressed streams are delivered as one 8-bit row
        return RawImage(encoded.tobytes(), encoded.size, 1, PixelFormat.FORMAT_8U)

    def get_configuration(self, handle: Any) -> Dict[str, Any]:
        with self._lock:
            return copy_document(self._config)

    def set_configuration(self, handle: Any, document: Dict[str, Any]) -> None:
        unknown = set(document) - set(self._config)
        if unknown:
            raise SensorConfigError(101000, f"Unknown configuration keys: {sorted(unknown)}")
        with self._lock:
            _merge(self._config, document)


def _merge(target: Dict[str, Any], patch: Dict[str, Any]) -> None:
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _merge(target[key], value)
        else:
            target[key] = copy_document(value) if isinstance(value, dict) else value


register_backend("simulated", SimulatedDevice)
