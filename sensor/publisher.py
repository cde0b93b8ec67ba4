"""Publishing boundary.

The acquisition loop and the node only need three things from a transport:
publish a latched value, publish a value, and expose a named service.
:class:`MemoryPublisher` keeps everything in process (tests, embedding);
:class:`DiskPublisher` records artifacts below a directory.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import asdict
from pathlib import Path
from typing import Any, Callable, Dict, List, Tuple

from utils.io import ensure_dir, save_json, save_npy, save_ply, write_bytes
from utils.logger import Logger
from utils.settings import PublisherCfg, publisher as PublisherSettings

from .artifacts import CompressedImage, Extrinsics, Image, PointCloud

Handler = Callable[..., Any]


class Publisher(ABC):
    """Capability surface the core publishes through."""

    @abstractmethod
    def publish_latched(self, name: str, payload: Any) -> None:
        """Publish ``payload`` and retain it for later subscribers."""

    @abstractmethod
    def publish(self, name: str, payload: Any) -> None:
        """Fire-and-forget publish."""

    @abstractmethod
    def advertise_service(self, name: str, handler: Handler) -> None:
        """Expose ``handler`` under ``name``."""


class MemoryPublisher(Publisher):
    """Thread-safe in-process publisher with subscriber callbacks."""

    def __init__(self, history: int | None = None) -> None:
        self.history = history
        self.messages: List[Tuple[str, Any]] = []
        self.latched: Dict[str, Any] = {}
        self.services: Dict[str, Handler] = {}
        self._subscribers: Dict[str, List[Callable[[Any], None]]] = {}
        self._lock = threading.Lock()

    def _deliver(self, name: str, payload: Any) -> None:
        with self._lock:
            self.messages.append((name, payload))
            if self.history is not None and len(self.messages) > self.history:
                del self.messages[: len(self.messages) - self.history]
            callbacks = list(self._subscribers.get(name, ()))
        for callback in callbacks:
            callback(payload)

    def publish_latched(self, name: str, payload: Any) -> None:
        with self._lock:
            self.latched[name] = payload
        self._deliver(name, payload)

    def publish(self, name: str, payload: Any) -> None:
        self._deliver(name, payload)

    def advertise_service(self, name: str, handler: Handler) -> None:
        with self._lock:
            self.services[name] = handler

    def subscribe(self, name: str, callback: Callable[[Any], None]) -> None:
        """Register ``callback``; a latched value is delivered immediately."""
        with self._lock:
            self._subscribers.setdefault(name, []).append(callback)
            latched = self.latched.get(name)
        if latched is not None:
            callback(latched)

    def call_service(self, name: str, *args: Any, **kwargs: Any) -> Any:
        return self.services[name](*args, **kwargs)

    def topics(self) -> List[str]:
        with self._lock:
            return [name for name, _ in self.messages]

    def last(self, name: str) -> Any:
        with self._lock:
            for topic, payload in reversed(self.messages):
                if topic == name:
                    return payload
        return None

    def clear(self) -> None:
        with self._lock:
            self.messages.clear()


class DiskPublisher(MemoryPublisher):
    """
    Write artifacts to ``<output_dir>/<topic>/<seq>.<ext>``.

    Images go to ``.npy``, compressed images are written unchanged,
    point clouds to ``.ply`` (skipped without Open3D) and extrinsics to
    ``.json``. Only every ``every_n``-th message of a topic is written;
    latched values always are.
    """

    def __init__(self, cfg: PublisherCfg = PublisherSettings) -> None:
        super().__init__(history=0)
        self.root = ensure_dir(cfg.output_dir)
        self.every_n = max(1, int(cfg.every_n))
        self.logger = Logger.get_logger("sensor.publisher")
        self._seq: Dict[str, int] = {}
        self.record_clouds = True
        self.logger.info(f"Recording artifacts to {self.root}")

    def publish_latched(self, name: str, payload: Any) -> None:
        super().publish_latched(name, payload)
        self._write(name, payload, self._next(name))

    def publish(self, name: str, payload: Any) -> None:
        super().publish(name, payload)
        seq = self._next(name)
        if seq % self.every_n == 0:
            self._write(name, payload, seq)

    def _next(self, name: str) -> int:
        with self._lock:
            seq = self._seq.get(name, 0)
            self._seq[name] = seq + 1
        return seq

    def _write(self, name: str, payload: Any, seq: int) -> Path | None:
        folder = ensure_dir(self.root / name)
        stem = folder / f"{seq:06d}"
        try:
            if isinstance(payload, Image):
                if payload.empty:
                    return None
                path = stem.with_suffix(".npy")
                save_npy(path, payload.to_numpy())
            elif isinstance(payload, CompressedImage):
                if payload.empty:
                    return None
                path = stem.with_suffix(".jpg" if payload.format == "jpeg" else f".{payload.format}")
                write_bytes(path, payload.data)
            elif isinstance(payload, PointCloud):
                if payload.empty or not self.record_clouds:
                    return None
                try:
                    pcd = payload.to_open3d(drop_invalid=False)
                except ImportError as exc:
                    # open3d ships with the optional "cloud" extra
                    self.record_clouds = False
                    self.logger.warning(f"Point clouds will not be recorded: {exc}")
                    return None
                path = stem.with_suffix(".ply")
                save_ply(path, pcd)
            elif isinstance(payload, Extrinsics):
                path = stem.with_suffix(".json")
                save_json(path, asdict(payload))
            else:
                path = stem.with_suffix(".json")
                save_json(path, payload)
        except OSError as exc:
            self.logger.error(f"Could not record {name}: {exc}")
            return None
        self.logger.debug(f"Recorded {path}")
        return path
