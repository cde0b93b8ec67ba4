import sys, os
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))
from utils.error_tracker import SensorError
from sensor.schema import ArtifactKind, SchemaMask
from sensor.session import NOT_READY_CODE, SessionManager, SessionState


def test_initialize_builds_session(device, cfg):
    manager = SessionManager(device, cfg)
    assert manager.initialize(SchemaMask.IMG_RDIS, 50012)
    assert manager.state is SessionState.READY
    assert manager.session.requested_mask == SchemaMask.IMG_RDIS
    assert manager.session.data_port == 50012
    assert manager.session.camera_address == "10.0.0.5"
    assert device.calls == ["connect", "open_stream"]


def test_reinitialize_tears_down_in_order(device, cfg):
    manager = SessionManager(device, cfg)
    manager.initialize(SchemaMask.IMG_UVEC, 50012)
    manager.initialize(SchemaMask.IMG_RDIS, 50012)
    assert device.calls == [
        "connect",
        "open_stream",
        "close_stream",
        "disconnect",
        "connect",
        "open_stream",
    ]
    assert device.open_masks == [SchemaMask.IMG_UVEC, SchemaMask.IMG_RDIS]


def test_failed_stream_leaves_nothing_behind(device, cfg):
    manager = SessionManager(device, cfg)
    device.stream_failures = 1
    assert not manager.initialize(SchemaMask.IMG_RDIS, 50012)
    assert manager.state is SessionState.UNINITIALIZED
    assert manager.session is None
    assert device.calls == ["connect", "open_stream", "disconnect"]
    assert not manager.acquire_frame(100)


def test_failed_connect(device, cfg):
    manager = SessionManager(device, cfg)
    device.connect_failures = 1
    assert not manager.initialize(SchemaMask.IMG_RDIS, 50012)
    assert device.calls == ["connect"]
    assert manager.dump_configuration().code == NOT_READY_CODE


def test_settle_sleep_after_connect(device, cfg):
    slept = []
    cfg.connect_settle_secs = 1.0
    manager = SessionManager(device, cfg, sleep=slept.append)
    manager.initialize(SchemaMask.IMG_RDIS, 50012)
    assert slept == [1.0]


def test_acquire_and_snapshot(device, cfg, clock):
    manager = SessionManager(device, cfg)
    manager.initialize(SchemaMask.IMG_RDIS, 50012)
    assert manager.acquire_frame(500)
    snap = manager.snapshot([ArtifactKind.CONFIDENCE, ArtifactKind.DISTANCE])
    assert snap.timestamp == clock.now
    assert snap.image(ArtifactKind.DISTANCE).width == 2
    assert snap.image(ArtifactKind.AMPLITUDE).empty
    assert snap.extrinsics == [0.1, 0.2, 0.3, 0.0, 0.0, 0.0]


def test_acquire_maps_device_errors_to_false(device, cfg):
    manager = SessionManager(device, cfg)
    manager.initialize(SchemaMask.IMG_RDIS, 50012)
    device.wait_error = SensorError(-9, "lost")
    assert not manager.acquire_frame(500)
    device.wait_error = RuntimeError("boom")
    assert not manager.acquire_frame(500)


def test_acquire_without_session(device, cfg):
    manager = SessionManager(device, cfg)
    assert not manager.acquire_frame(500)
    assert device.calls == []


def test_configuration_results(device, cfg):
    manager = SessionManager(device, cfg)
    manager.initialize(SchemaMask.IMG_RDIS, 50012)
    result = manager.dump_configuration()
    assert result.ok and result.value == device.config
    device.config_error = SensorError(101000, "rejected")
    result = manager.apply_configuration({"ports": {}})
    assert not result.ok
    assert (result.code, result.message) == (101000, "rejected")


def test_close_releases_everything(device, cfg):
    manager = SessionManager(device, cfg)
    manager.initialize(SchemaMask.IMG_RDIS, 50012)
    manager.close()
    assert device.calls[-2:] == ["close_stream", "disconnect"]
    assert not manager.ready
    manager.close()
    assert device.calls.count("disconnect") == 1
