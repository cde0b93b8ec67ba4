"""Acquisition loop: keeps a stream alive and turns frames into artifacts.

The loop bootstraps with a calibration-only mask to fetch the per-pixel unit
vectors once, then rebuilds the stream with the requested mask and publishes
every frame. Frame waits that time out are routine; only when no frame has
arrived for ``timeout_tolerance_secs`` is the stream rebuilt, using the mask
that is active at that point. Frame pulls and buffer reads happen under the
session lock, artifact building and publishing outside it.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from utils.error_tracker import ErrorTracker
from utils.logger import Logger, LoggerType
from utils.settings import SensorCfg, sensor as SensorSettings

from .artifacts import (
    Header,
    build_compressed_image,
    build_extrinsics,
    build_image,
    build_point_cloud,
)
from .device import FrameSnapshot
from .publisher import Publisher
from .schema import EXTRINSICS_TOPIC, STREAM_ORDER, ArtifactKind, SchemaMask
from .session import SessionManager

# Sleep between failed frame waits in triggered mode
TRIGGERED_IDLE_SECS = 0.001


class LoopState(Enum):
    BOOTSTRAPPING = "bootstrapping"
    CALIBRATION_PENDING = "calibration_pending"
    STREAMING = "streaming"
    DEGRADED = "degraded"
    STOPPED = "stopped"


@dataclass
class TimingParams:
    """Timing knobs read at every iteration; the control facade rewrites them."""

    timeout_millis: int = 500
    timeout_tolerance_secs: float = 5.0
    assume_triggered: bool = False

    @classmethod
    def from_cfg(cls, cfg: SensorCfg) -> "TimingParams":
        return cls(cfg.timeout_millis, cfg.timeout_tolerance_secs, cfg.assume_sw_triggered)


@dataclass
class LoopStats:
    frames: int = 0
    timeouts: int = 0
    reinitializations: int = 0
    failed_publishes: int = 0
    failed_initializations: int = 0
    published: dict = field(default_factory=dict)


class AcquisitionLoop:
    """Resilient frame acquisition and dispatch for one sensor head."""

    def __init__(
        self,
        manager: SessionManager,
        publisher: Publisher,
        cfg: SensorCfg = SensorSettings,
        clock: Callable[[], float] = time.time,
        logger: Optional[LoggerType] = None,
    ) -> None:
        self.manager = manager
        self.publisher = publisher
        self.cfg = cfg
        self.clock = clock
        self.logger = logger or Logger.get_logger("sensor.acquisition")
        self.timing = TimingParams.from_cfg(cfg)
        self.requested_mask = SchemaMask(cfg.schema_mask)
        self.active_mask = SchemaMask.CALIBRATION_ONLY
        self.frame_id = f"{cfg.frame_id_base}_link"
        self.optical_frame_id = f"{cfg.frame_id_base}_optical_link"
        self.state = LoopState.BOOTSTRAPPING
        self.stats = LoopStats()
        self.last_good_frame_time = self.clock()
        self._got_uvec = False
        self._unsynced_logged = False
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ---------------------------------------------------------------- control

    def start(self) -> threading.Thread:
        """Run the loop in a background thread until :meth:`stop`."""
        if self._thread is not None and self._thread.is_alive():
            return self._thread
        self._stop.clear()
        self._thread = threading.Thread(
            target=self.run, name=f"{self.cfg.frame_id_base}-acquisition", daemon=True
        )
        self._thread.start()
        return self._thread

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                self.logger.warning("Acquisition thread did not stop in time")
            else:
                self._thread = None

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def restart(self) -> None:
        """Force a hard reinitialisation: unit vectors are fetched again."""
        self.logger.info("Hard restart requested, fetching unit vectors again")
        self._got_uvec = False
        self.active_mask = SchemaMask.CALIBRATION_ONLY
        self.state = LoopState.BOOTSTRAPPING

    def apply_timing(
        self,
        timeout_millis: int,
        timeout_tolerance_secs: float,
        assume_triggered: bool = False,
    ) -> None:
        self.timing = TimingParams(
            int(timeout_millis), float(timeout_tolerance_secs), bool(assume_triggered)
        )
        self.logger.info(
            f"Timing set to {self.timing.timeout_millis} ms, "
            f"tolerance {self.timing.timeout_tolerance_secs} s"
        )

    # ------------------------------------------------------------------- loop

    def run(self) -> None:
        """Blocking loop body; returns once stopped."""
        self.logger.debug("in run")
        try:
            while not self._stop.is_set():
                try:
                    self.step()
                except Exception as exc:
                    # an unexpected error in one iteration must not end acquisition
                    ErrorTracker.report(exc)
                    self._stop.wait(self.cfg.retry_backoff_secs)
        finally:
            self.state = LoopState.STOPPED
            self.logger.info("Acquisition loop stopped")

    def step(self) -> None:
        """One iteration of the state machine."""
        if self.state is LoopState.BOOTSTRAPPING:
            self._bootstrap()
            return
        if self.state is LoopState.DEGRADED:
            self._recover()
            return

        if not self.manager.acquire_frame(self.timing.timeout_millis):
            self._on_missed_frame()
            return

        self.last_good_frame_time = self.clock()
        self.stats.frames += 1

        if self.state is LoopState.CALIBRATION_PENDING:
            self._publish_unit_vectors()
            return
        self._publish_frame()

    def _initialize_until_ready(self, mask: SchemaMask, failure_msg: str) -> bool:
        """Retry ``initialize`` with a fixed backoff; ``False`` only when stopped."""
        while not self._stop.is_set():
            if self.manager.initialize(mask, self.cfg.data_port):
                return True
            self.stats.failed_initializations += 1
            self.logger.warning(failure_msg)
            if self._stop.wait(self.cfg.retry_backoff_secs):
                break
        return False

    def _bootstrap(self) -> None:
        self.active_mask = SchemaMask.CALIBRATION_ONLY
        if not self._initialize_until_ready(
            SchemaMask.CALIBRATION_ONLY, "Could not initialize pixel stream!"
        ):
            return
        self.last_good_frame_time = self.clock()
        self.state = LoopState.CALIBRATION_PENDING

    def _on_missed_frame(self) -> None:
        self.stats.timeouts += 1
        if not self.timing.assume_triggered:
            self.logger.warning("Timeout waiting for camera!")
        else:
            self._stop.wait(TRIGGERED_IDLE_SECS)

        stale_for = self.clock() - self.last_good_frame_time
        if stale_for > self.timing.timeout_tolerance_secs:
            self.logger.warning(f"No frame for {stale_for:.1f} s")
            self.state = LoopState.DEGRADED
            self._recover()

    def _recover(self) -> None:
        """Rebuild the stream with the active mask, then resume."""
        self.logger.warning("Attempting to restart framegrabber...")
        if not self._initialize_until_ready(
            self.active_mask, "Could not re-initialize pixel stream!"
        ):
            return
        self.stats.reinitializations += 1
        self.last_good_frame_time = self.clock()
        self.state = (
            LoopState.STREAMING if self._got_uvec else LoopState.CALIBRATION_PENDING
        )

    # ------------------------------------------------------------- publishing

    def _headers(self, snapshot: FrameSnapshot) -> tuple[Header, Header]:
        now = self.clock()
        stamp = snapshot.timestamp
        if stamp is None or now - stamp > self.cfg.frame_latency_thresh:
            if not self._unsynced_logged:
                self.logger.info("Camera's time and client's time are not synced")
                self._unsynced_logged = True
            stamp = now
        return Header(stamp, self.frame_id), Header(stamp, self.optical_frame_id)

    def _publish_unit_vectors(self) -> None:
        snapshot = self.manager.snapshot([ArtifactKind.UNIT_VECTORS])
        _, optical = self._headers(snapshot)
        uvec = build_image(snapshot.image(ArtifactKind.UNIT_VECTORS), optical)
        self.logger.info(f"uvec image size: {uvec.height * uvec.width}")
        self._publish(ArtifactKind.UNIT_VECTORS.topic, uvec, latched=True)
        self._got_uvec = True

        self.logger.info(
            f"Got unit vectors, restarting framegrabber with mask: {int(self.requested_mask)}"
        )
        self.active_mask = self.requested_mask
        if not self._initialize_until_ready(
            self.active_mask, "Could not re-initialize pixel stream!"
        ):
            return
        self.last_good_frame_time = self.clock()
        self.state = LoopState.STREAMING
        self.logger.info("Start streaming data")

    def _publish_frame(self) -> None:
        mask = self.active_mask
        kinds = [kind for kind in STREAM_ORDER if kind.enabled_by(mask)]
        snapshot = self.manager.snapshot(kinds)
        head, optical = self._headers(snapshot)

        for kind in kinds:
            raw = snapshot.image(kind)
            if kind is ArtifactKind.XYZ:
                artifact = build_point_cloud(raw, head)
            elif kind is ArtifactKind.JPEG:
                # color capture is not part of the schema mask
                if raw.width * raw.height == 0:
                    continue
                artifact = build_compressed_image(raw, optical, "jpeg")
            else:
                artifact = build_image(raw, optical)
            self._publish(kind.topic, artifact)

        self._publish(EXTRINSICS_TOPIC, build_extrinsics(snapshot.extrinsics, optical))

    def _publish(self, topic: str, artifact, latched: bool = False) -> bool:
        """Hand one artifact to the publisher; a failure drops only that artifact."""
        try:
            if latched:
                self.publisher.publish_latched(topic, artifact)
            else:
                self.publisher.publish(topic, artifact)
        except Exception as exc:
            self.logger.error(f"Publishing {topic} failed: {exc}")
            ErrorTracker.report(exc)
            self.stats.failed_publishes += 1
            return False
        self._count(topic)
        self.logger.debug(f"after publishing {topic}")
        return True

    def _count(self, topic: str) -> None:
        self.stats.published[topic] = self.stats.published.get(topic, 0) + 1
