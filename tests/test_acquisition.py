import sys, os
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))
import time

import cv2
import numpy as np

from sensor.acquisition import AcquisitionLoop, LoopState
from sensor.device import RawImage
from sensor.formats import PixelFormat
from utils.settings import PublisherCfg
from sensor.publisher import DiskPublisher, MemoryPublisher
from sensor.schema import STREAM_ORDER, ArtifactKind, SchemaMask
from sensor.session import SessionManager


def make_loop(device, cfg, clock, publisher):
    manager = SessionManager(device, cfg)
    return AcquisitionLoop(manager, publisher, cfg, clock=clock)


def stream(loop):
    """Bootstrap, publish unit vectors and switch to the requested mask."""
    loop.step()
    assert loop.state is LoopState.CALIBRATION_PENDING
    loop.step()
    assert loop.state is LoopState.STREAMING


def test_unit_vectors_before_any_stream(device, cfg, clock, publisher):
    loop = make_loop(device, cfg, clock, publisher)
    loop.step()
    assert device.open_masks == [SchemaMask.CALIBRATION_ONLY]
    assert publisher.topics() == []

    loop.step()
    assert publisher.topics() == ["unit_vectors"]
    assert "unit_vectors" in publisher.latched
    assert device.open_masks == [SchemaMask.CALIBRATION_ONLY, SchemaMask.ALL_STREAMS]
    assert loop.active_mask == SchemaMask.ALL_STREAMS

    loop.step()
    assert publisher.topics()[0] == "unit_vectors"
    assert publisher.topics().count("unit_vectors") == 1
    uvec = publisher.latched["unit_vectors"]
    assert uvec.encoding == "32FC3"
    assert uvec.header.frame_id == "camera_optical_link"


def test_late_subscriber_gets_unit_vectors(device, cfg, clock, publisher):
    loop = make_loop(device, cfg, clock, publisher)
    stream(loop)
    received = []
    publisher.subscribe("unit_vectors", received.append)
    assert len(received) == 1


def test_bootstrap_retries_until_camera_answers(device, cfg, clock, publisher):
    device.connect_failures = 3
    loop = make_loop(device, cfg, clock, publisher)
    loop.step()
    assert device.calls.count("connect") == 4
    assert loop.stats.failed_initializations == 3
    assert loop.state is LoopState.CALIBRATION_PENDING


def test_distance_only_frame(device, cfg, clock, publisher):
    cfg.schema_mask = int(SchemaMask.IMG_RDIS)
    loop = make_loop(device, cfg, clock, publisher)
    stream(loop)
    publisher.clear()

    loop.step()
    assert publisher.topics() == ["confidence", "distance", "extrinsics"]
    confidence = publisher.last("confidence")
    distance = publisher.last("distance")
    extrinsics = publisher.last("extrinsics")
    assert distance.to_numpy().ravel().tolist() == [1.0, 2.0, 3.0, 4.0]
    assert confidence.to_numpy().ravel().tolist() == [0, 0, 0, 0]
    stamps = {confidence.header.stamp, distance.header.stamp, extrinsics.header.stamp}
    assert stamps == {clock.now}


def full_frame():
    h, w = 3, 4
    distance = np.full((h, w), 1.5, np.float32)
    gray = np.full((h, w), 100, np.uint8)
    ok, jpeg = cv2.imencode(".jpg", np.zeros((8, 8, 3), np.uint8))
    return {
        ArtifactKind.CONFIDENCE: RawImage.from_array(np.zeros((h, w), np.uint16)),
        ArtifactKind.XYZ: RawImage.from_array(np.ones((h, w, 3), np.float32)),
        ArtifactKind.DISTANCE: RawImage.from_array(distance),
        ArtifactKind.DISTANCE_NOISE: RawImage.from_array(distance * 0.01),
        ArtifactKind.AMPLITUDE: RawImage.from_array(distance * 10),
        ArtifactKind.RAW_AMPLITUDE: RawImage.from_array(np.ones((h, w), np.uint16)),
        ArtifactKind.GRAY: RawImage.from_array(gray),
        ArtifactKind.JPEG: RawImage(jpeg.tobytes(), jpeg.size, 1, PixelFormat.FORMAT_8U),
    }


def test_full_frame_publish_order_and_frames(device, cfg, clock, publisher):
    device.frame = full_frame()
    loop = make_loop(device, cfg, clock, publisher)
    stream(loop)
    publisher.clear()

    loop.step()
    assert publisher.topics() == [k.topic for k in STREAM_ORDER] + ["extrinsics"]
    assert publisher.last("cloud").header.frame_id == "camera_link"
    for topic in publisher.topics():
        if topic != "cloud":
            assert publisher.last(topic).header.frame_id == "camera_optical_link"
    assert publisher.last("cloud").row_step == 12 * 4


def test_missing_color_is_not_published(device, cfg, clock, publisher):
    loop = make_loop(device, cfg, clock, publisher)
    stream(loop)
    publisher.clear()
    loop.step()
    assert "rgb_image/compressed" not in publisher.topics()
    assert publisher.topics()[-1] == "extrinsics"


def test_stale_stream_reinitializes_once_with_active_mask(device, cfg, clock, publisher):
    loop = make_loop(device, cfg, clock, publisher)
    stream(loop)
    opens = len(device.open_masks)
    device.fail_frames = True

    # 12 waits of 500 ms: 6 s without a frame, tolerance 5 s
    for _ in range(12):
        loop.step()

    assert loop.stats.reinitializations == 1
    assert loop.stats.timeouts == 12
    assert device.open_masks[opens:] == [SchemaMask.ALL_STREAMS]
    assert loop.state is LoopState.STREAMING


def test_stale_during_calibration_keeps_calibration_mask(device, cfg, clock, publisher):
    loop = make_loop(device, cfg, clock, publisher)
    loop.step()
    device.fail_frames = True
    for _ in range(11):
        loop.step()
    assert loop.stats.reinitializations == 1
    assert device.open_masks == [SchemaMask.CALIBRATION_ONLY] * 2
    assert loop.state is LoopState.CALIBRATION_PENDING


def test_timeouts_are_logged_unless_triggered(device, cfg, clock, publisher, log_messages):
    loop = make_loop(device, cfg, clock, publisher)
    stream(loop)
    device.fail_frames = True
    loop.step()
    assert "Timeout waiting for camera!" in log_messages

    log_messages.clear()
    loop.apply_timing(500, 5.0, assume_triggered=True)
    loop.step()
    assert "Timeout waiting for camera!" not in log_messages
    assert loop.stats.timeouts == 2


def test_unsynced_clock_uses_host_time(device, cfg, clock, publisher, log_messages):
    device.timestamp = 5.0
    loop = make_loop(device, cfg, clock, publisher)
    stream(loop)
    for _ in range(3):
        clock.advance(0.1)
        loop.step()
        assert publisher.last("distance").header.stamp == clock.now

    unsynced = [m for m in log_messages if "not synced" in m]
    assert len(unsynced) == 1


def test_synced_clock_keeps_device_time(device, cfg, clock, publisher):
    device.timestamp = clock.now - 1.0
    loop = make_loop(device, cfg, clock, publisher)
    stream(loop)
    loop.step()
    assert publisher.last("distance").header.stamp == clock.now - 1.0


def test_restart_fetches_unit_vectors_again(device, cfg, clock, publisher):
    loop = make_loop(device, cfg, clock, publisher)
    stream(loop)
    loop.restart()
    loop.step()
    assert device.open_masks[-1] == SchemaMask.CALIBRATION_ONLY
    loop.step()
    assert publisher.topics().count("unit_vectors") == 2


def test_background_thread_start_stop(device, cfg):
    publisher = MemoryPublisher(history=50)
    loop = AcquisitionLoop(SessionManager(device, cfg), publisher, cfg)
    loop.start()
    deadline = time.time() + 5.0
    while publisher.last("extrinsics") is None and time.time() < deadline:
        time.sleep(0.01)
    loop.stop(timeout=5.0)
    assert publisher.last("extrinsics") is not None
    assert not loop.running
    assert loop.state is LoopState.STOPPED


def test_failing_subscriber_does_not_stop_acquisition(device, cfg):
    publisher = MemoryPublisher(history=50)
    seen = []

    def broken(payload):
        seen.append(payload)
        raise RuntimeError("subscriber failed")

    publisher.subscribe("distance", broken)
    loop = AcquisitionLoop(SessionManager(device, cfg), publisher, cfg)
    loop.start()
    deadline = time.time() + 5.0
    while len(seen) < 3 and time.time() < deadline:
        time.sleep(0.01)
    assert loop.running
    loop.stop(timeout=5.0)
    assert len(seen) >= 3


class BrokenCloudPublisher(MemoryPublisher):
    def publish(self, name, payload):
        if name == "cloud":
            raise RuntimeError("cloud sink unavailable")
        super().publish(name, payload)


def test_failed_publish_drops_only_that_artifact(device, cfg, clock):
    device.frame = full_frame()
    publisher = BrokenCloudPublisher()
    loop = make_loop(device, cfg, clock, publisher)
    stream(loop)
    publisher.clear()

    loop.step()
    expected = [k.topic for k in STREAM_ORDER if k is not ArtifactKind.XYZ] + ["extrinsics"]
    assert publisher.topics() == expected
    assert loop.stats.failed_publishes == 1
    assert loop.state is LoopState.STREAMING


def test_recording_without_open3d_keeps_other_artifacts(device, cfg, clock, tmp_path, monkeypatch):
    monkeypatch.setitem(sys.modules, "open3d", None)
    device.frame = full_frame()
    publisher = DiskPublisher(PublisherCfg(output_dir=tmp_path))
    loop = make_loop(device, cfg, clock, publisher)
    stream(loop)
    loop.step()
    loop.step()

    assert not publisher.record_clouds
    assert not any((tmp_path / "cloud").iterdir())
    assert sorted(p.name for p in (tmp_path / "distance").iterdir()) == ["000000.npy", "000001.npy"]
    assert (tmp_path / "extrinsics" / "000001.json").exists()
    assert loop.stats.failed_publishes == 0
    assert loop.stats.published["extrinsics"] == 2


def test_short_extrinsics_through_loop(device, cfg, clock, publisher):
    device.extrinsics = [1.0, 2.0, 3.0]
    loop = make_loop(device, cfg, clock, publisher)
    stream(loop)
    loop.step()
    loop.step()

    assert publisher.last("extrinsics").as_vector() == [1.0, 2.0, 3.0, 0.0, 0.0, 0.0]
    assert publisher.topics().count("extrinsics") == 2
    assert loop.stats.reinitializations == 0
    assert loop.state is LoopState.STREAMING
