"""Camera node: one head, its acquisition thread and its control services."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from utils.error_tracker import ErrorTracker
from utils.logger import Logger, LoggerType
from utils.settings import SensorCfg, sensor as SensorSettings

from .acquisition import AcquisitionLoop
from .control import SessionControlFacade
from .device import SensorDevice, make_device
from .publisher import MemoryPublisher, Publisher
from .session import SessionManager


@dataclass
class CameraNode:
    """Wire a device, a publisher and the configuration into a running head."""

    cfg: SensorCfg = field(default_factory=lambda: SensorSettings)
    device: Optional[SensorDevice] = None
    publisher: Publisher = field(default_factory=MemoryPublisher)
    logger: LoggerType = field(default_factory=lambda: Logger.get_logger("sensor.node"))

    def __post_init__(self) -> None:
        if self.device is None:
            self.device = make_device(self.cfg.backend)
        self.logger.info(
            f"IP {self.cfg.ip}, control port {self.cfg.control_port}, "
            f"data port {self.cfg.data_port}, mask {self.cfg.schema_mask}"
        )
        self.manager = SessionManager(self.device, self.cfg)
        self.loop = AcquisitionLoop(self.manager, self.publisher, self.cfg)
        self.control = SessionControlFacade(self.manager, self.loop, self.cfg)
        self._started = False

    def start(self) -> None:
        """Advertise the control services and start acquiring."""
        if self._started:
            return
        for name, handler in self.control.services().items():
            self.publisher.advertise_service(name, handler)
        self.logger.debug("after advertise service")
        ErrorTracker.register_cleanup(self.stop)
        self.loop.start()
        self._started = True

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the loop and release the session; safe to call twice."""
        if not self._started:
            return
        self._started = False
        ErrorTracker.unregister_cleanup(self.stop)
        # the loop may sit in a frame wait for up to timeout_millis
        self.loop.stop(timeout=timeout + self.loop.timing.timeout_millis / 1000.0)
        self.manager.close()
        self.logger.info(f"Node stopped, stats: {self.loop.stats}")

    def __enter__(self) -> "CameraNode":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
