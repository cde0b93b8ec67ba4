"""Single-owner session with the sensor head.

:class:`SessionManager` owns the control connection, the frame source and
the decode buffer. Every access goes through its re-entrant lock, which is
the same lock the acquisition loop and the control facade serialize on, so
the vendor handles are never used from two threads at once.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Optional

from utils.logger import Logger, LoggerType
from utils.settings import SensorCfg, sensor as SensorSettings

from .device import (
    DecodeBuffer,
    DeviceResult,
    FrameSnapshot,
    SensorDevice,
    call_device,
)
from .schema import ArtifactKind, SchemaMask

NOT_READY_CODE = -3


class SessionState(Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"


@dataclass(frozen=True)
class Session:
    """Parameters the live session was built with."""

    camera_address: str
    control_port: int
    data_port: int
    password: str
    requested_mask: SchemaMask
    timeout_millis: int
    timeout_tolerance_secs: float


class SessionManager:
    """Build, tear down and use the one live session with the head."""

    def __init__(
        self,
        device: SensorDevice,
        cfg: SensorCfg = SensorSettings,
        logger: Optional[LoggerType] = None,
        sleep=time.sleep,
    ) -> None:
        self.device = device
        self.cfg = cfg
        self.logger = logger or Logger.get_logger("sensor.session")
        self.lock = threading.RLock()
        self._sleep = sleep
        self._connection: Any = None
        self._stream: Any = None
        self._buffer: Optional[DecodeBuffer] = None
        self._session: Optional[Session] = None
        self.state = SessionState.UNINITIALIZED

    @property
    def ready(self) -> bool:
        return self.state is SessionState.READY

    @property
    def session(self) -> Optional[Session]:
        return self._session

    def _teardown(self) -> None:
        """Release buffer, then frame source, then control connection."""
        self.state = SessionState.UNINITIALIZED
        self._session = None
        if self._buffer is not None:
            self._buffer.clear()
            self._buffer = None
        if self._stream is not None:
            result = call_device(self.device.close_stream, self._stream)
            if not result.ok:
                self.logger.warning(f"Closing frame source: {result.code}: {result.message}")
            self._stream = None
        if self._connection is not None:
            result = call_device(self.device.disconnect, self._connection)
            if not result.ok:
                self.logger.warning(f"Closing connection: {result.code}: {result.message}")
            self._connection = None

    def initialize(self, mask: SchemaMask, data_port: int) -> bool:
        """
        Replace the current session with a fresh one streaming ``mask``.

        Returns ``False`` (with nothing left half-built) if any step fails.
        Retrying is up to the caller.
        """
        with self.lock:
            self.logger.info("Running dtors...")
            self._teardown()

            cfg = self.cfg
            self.logger.info("Initializing camera...")
            result = call_device(
                self.device.connect, cfg.ip, cfg.control_port, cfg.password
            )
            if not result.ok:
                return self._abort(result)
            self._connection = result.value
            if cfg.connect_settle_secs > 0:
                self._sleep(cfg.connect_settle_secs)

            self.logger.info("Initializing framegrabber...")
            result = call_device(
                self.device.open_stream, self._connection, SchemaMask(mask), data_port
            )
            if not result.ok:
                return self._abort(result)
            self._stream = result.value
            self.logger.info(f"Stream arguments: mask={int(mask)}, port={data_port}")

            self.logger.info("Initializing image buffer...")
            self._buffer = DecodeBuffer()
            self._session = Session(
                camera_address=cfg.ip,
                control_port=cfg.control_port,
                data_port=data_port,
                password=cfg.password,
                requested_mask=SchemaMask(mask),
                timeout_millis=cfg.timeout_millis,
                timeout_tolerance_secs=cfg.timeout_tolerance_secs,
            )
            self.state = SessionState.READY
            return True

    def _abort(self, result: DeviceResult) -> bool:
        self.logger.warning(f"{result.code}: {result.message}")
        self._teardown()
        return False

    def acquire_frame(self, timeout_millis: int) -> bool:
        """Wait up to ``timeout_millis`` for the next frame; ``False`` is routine."""
        with self.lock:
            if not self.ready:
                return False
            self.logger.debug("try receiving data via wait_for_frame")
            result = call_device(
                self.device.wait_for_frame, self._stream, self._buffer, int(timeout_millis)
            )
            if not result.ok:
                self.logger.warning(f"{result.code}: {result.message}")
                return False
            return bool(result.value)

    def snapshot(self, kinds: Iterable[ArtifactKind]) -> FrameSnapshot:
        """Copy ``kinds``, extrinsics and capture time out of the buffer."""
        snap = FrameSnapshot()
        with self.lock:
            if self._buffer is None:
                return snap
            snap.timestamp = self._buffer.timestamp
            for kind in kinds:
                result = call_device(self.device.read_artifact, self._buffer, kind)
                if not result.ok:
                    self.logger.warning(f"Reading {kind.topic}: {result.message}")
                    continue
                snap.images[kind] = result.value
            result = call_device(self.device.read_extrinsics, self._buffer)
            if result.ok:
                snap.extrinsics = list(result.value or ())
            else:
                self.logger.warning(f"Reading extrinsics: {result.message}")
        return snap

    def _not_ready(self) -> DeviceResult:
        return DeviceResult.failure(NOT_READY_CODE, "No live session with the camera")

    def dump_configuration(self) -> DeviceResult:
        with self.lock:
            if self._connection is None:
                return self._not_ready()
            return call_device(self.device.get_configuration, self._connection)

    def apply_configuration(self, document: Dict[str, Any]) -> DeviceResult:
        with self.lock:
            if self._connection is None:
                return self._not_ready()
            return call_device(self.device.set_configuration, self._connection, document)

    def software_trigger(self) -> DeviceResult:
        with self.lock:
            if self._stream is None:
                return self._not_ready()
            return call_device(self.device.software_trigger, self._stream)

    def close(self) -> None:
        with self.lock:
            if self._connection is not None or self._stream is not None:
                self.logger.info("Closing camera session")
            self._teardown()
