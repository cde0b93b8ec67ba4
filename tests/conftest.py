import sys, os
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

import threading
from typing import Any, Dict, List, Optional

import numpy as np
import pytest
from loguru import logger as loguru_logger

from utils.error_tracker import SensorConnectionError, SensorError
from utils.logger import Logger
from utils.settings import SensorCfg
from sensor.device import DecodeBuffer, RawImage, SensorDevice, copy_document
from sensor.publisher import MemoryPublisher
from sensor.schema import ArtifactKind, SchemaMask

Logger.configure_root_logger("WARNING")


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, secs: float) -> None:
        self.now += secs


def scenario_frame() -> Dict[ArtifactKind, RawImage]:
    """2x2 frame: distance 1..4, zero confidence."""
    return {
        ArtifactKind.CONFIDENCE: RawImage.from_array(np.zeros((2, 2), dtype=np.uint16)),
        ArtifactKind.DISTANCE: RawImage.from_array(
            np.array([[1.0, 2.0], [3.0, 4.0]], dtype=np.float32)
        ),
    }


class FakeDevice(SensorDevice):
    """
    Scripted head. Counts calls, fails on demand and can block inside
    ``wait_for_frame`` until released.
    """

    def __init__(self, clock: Optional[FakeClock] = None) -> None:
        self.clock = clock or FakeClock()
        self.calls: List[str] = []
        self.open_masks: List[SchemaMask] = []
        self.connect_failures = 0
        self.stream_failures = 0
        self.fail_frames = False
        self.wait_error: Optional[Exception] = None
        self.frame: Dict[ArtifactKind, RawImage] = scenario_frame()
        self.uvec = RawImage.from_array(np.ones((2, 2, 3), dtype=np.float32))
        self.extrinsics: List[float] = [0.1, 0.2, 0.3, 0.0, 0.0, 0.0]
        self.timestamp: Optional[float] = None
        self.config: Dict[str, Any] = {"ports": {"port2": {"state": "RUN"}}}
        self.config_error: Optional[SensorError] = None
        self.applied: List[Dict[str, Any]] = []
        self.entered = threading.Event()
        self.release: Optional[threading.Event] = None
        self.busy = False
        self.overlaps = 0
        self._handles = 0

    def connect(self, address: str, control_port: int, password: str = "") -> Any:
        self.calls.append("connect")
        if self.connect_failures > 0:
            self.connect_failures -= 1
            raise SensorConnectionError(-100, "camera unreachable")
        self._handles += 1
        return {"id": self._handles}

    def disconnect(self, handle: Any) -> None:
        self.calls.append("disconnect")

    def open_stream(self, handle: Any, mask: SchemaMask, data_port: int) -> Any:
        self.calls.append("open_stream")
        if self.stream_failures > 0:
            self.stream_failures -= 1
            raise SensorError(-200, "framegrabber refused")
        self.open_masks.append(SchemaMask(mask))
        return {"mask": SchemaMask(mask), "port": data_port}

    def close_stream(self, stream: Any) -> None:
        self.calls.append("close_stream")

    def wait_for_frame(self, stream: Any, buffer: DecodeBuffer, timeout_ms: int) -> bool:
        self.busy = True
        try:
            self.entered.set()
            if self.release is not None:
                self.release.wait(5.0)
            if self.wait_error is not None:
                raise self.wait_error
            if self.fail_frames:
                self.clock.advance(timeout_ms / 1000.0)
                return False
            if stream["mask"] & SchemaMask.IMG_UVEC:
                images = {ArtifactKind.UNIT_VECTORS: self.uvec}
            else:
                images = self.frame
            stamp = self.timestamp if self.timestamp is not None else self.clock()
            buffer.store(images, self.extrinsics, timestamp=stamp)
            return True
        finally:
            self.busy = False

    def _check_overlap(self) -> None:
        if self.busy:
            self.overlaps += 1

    def get_configuration(self, handle: Any) -> Dict[str, Any]:
        self._check_overlap()
        return copy_document(self.config)

    def set_configuration(self, handle: Any, document: Dict[str, Any]) -> None:
        self._check_overlap()
        if self.config_error is not None:
            raise self.config_error
        self.applied.append(copy_document(document))

    def software_trigger(self, stream: Any) -> None:
        self.calls.append("software_trigger")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def device(clock) -> FakeDevice:
    return FakeDevice(clock)


@pytest.fixture
def cfg() -> SensorCfg:
    return SensorCfg(
        ip="10.0.0.5",
        data_port=50012,
        schema_mask=int(SchemaMask.ALL_STREAMS),
        connect_settle_secs=0.0,
        retry_backoff_secs=0.0,
    )


@pytest.fixture
def publisher() -> MemoryPublisher:
    return MemoryPublisher()


@pytest.fixture
def log_messages():
    """Collect formatted log messages at INFO and above."""
    messages: List[str] = []
    sink_id = loguru_logger.add(lambda msg: messages.append(msg.record["message"]), level="INFO")
    yield messages
    loguru_logger.remove(sink_id)
