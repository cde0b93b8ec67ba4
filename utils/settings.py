"""Project wide configuration dataclasses and default values."""

from dataclasses import dataclass, field
from pathlib import Path

# Root dir
BASE_DIR = Path(__file__).resolve().parent.parent

# Vendor defaults for the O3-series heads
DEFAULT_IP = "192.168.0.69"
DEFAULT_CONTROL_PORT = 80
DEFAULT_DATA_PORT = 50010
DEFAULT_PASSWORD = ""

# RDIS | AMP | RAMP | CART | GRAY | DIS_NOISE, see sensor.schema.SchemaMask
DEFAULT_SCHEMA_MASK = 0x084F


@dataclass(frozen=True)
class Paths:
    """
    Filesystem locations used by the project: sample configs, recordings
    written by the disk publisher.
    """

    CONF_DIR: Path = BASE_DIR / "conf"
    RECORD_DIR: Path = BASE_DIR / ".recordings"


paths = Paths()


@dataclass(frozen=True)
class LoggingCfg:
    """
    Logging configuration for the project.

    - level: Log level ("INFO", "DEBUG", etc.)
    - json: Enable/disable structured JSON logging.
    - to_file: Add the file sink next to stdout.
    - log_dir: Directory where log files are stored.
    - log_format: Console log output format.
    - log_file_format: File log output format.
    """

    level: str = "INFO"
    json: bool = True
    to_file: bool = True
    log_dir: Path = Path(".logs")
    log_format: str = (
        "<green>{time:MM-DD HH:mm:ss}</green>"
        "[<level>{level:.3}</level>]"
        "[<cyan>{extra[module]:.16}</cyan>:<cyan>{line:<3}</cyan>]"
        "<level>{message}</level>"
    )
    log_file_format: str = "{time:YYYY-MM-DD HH:mm:ss}[{level}][{file}:{line}]{message}"


logging = LoggingCfg()


@dataclass
class TimeoutPreset:
    """Frame timeout pair applied when the data port changes state."""

    timeout_millis: int = 500
    timeout_tolerance_secs: float = 5.0


@dataclass
class SensorCfg:
    """
    Connection, streaming and resilience parameters of one sensor head.

    - ip / control_port / password: control (XML-RPC) connection.
    - data_port: PCIC port of the head; also selects the ``portN`` entry
      used by port state transitions.
    - schema_mask: artifact kinds requested once unit vectors are cached.
    - timeout_millis: how long one frame wait may block.
    - timeout_tolerance_secs: staleness after which the stream is rebuilt.
    - assume_sw_triggered: frames are paced externally, timeouts are quiet.
    - frame_latency_thresh: sensor/host clock gap (s) judged as unsynced.
    - soft_on / soft_off: timeout presets for the RUN and IDLE port states.
    - frame_id_base: prefix of the ``_link`` / ``_optical_link`` frames.
    - retry_backoff_secs: sleep between failed (re)initialisations.
    - connect_settle_secs: pause after opening the control connection.
    - backend: registered device backend name.
    """

    ip: str = DEFAULT_IP
    control_port: int = DEFAULT_CONTROL_PORT
    data_port: int = DEFAULT_DATA_PORT
    password: str = DEFAULT_PASSWORD
    schema_mask: int = DEFAULT_SCHEMA_MASK
    timeout_millis: int = 500
    timeout_tolerance_secs: float = 5.0
    assume_sw_triggered: bool = False
    frame_latency_thresh: float = 60.0
    soft_on: TimeoutPreset = field(default_factory=TimeoutPreset)
    soft_off: TimeoutPreset = field(
        default_factory=lambda: TimeoutPreset(500, 600.0)
    )
    frame_id_base: str = "camera"
    retry_backoff_secs: float = 1.0
    connect_settle_secs: float = 1.0
    backend: str = "simulated"


sensor = SensorCfg()


@dataclass
class PublisherCfg:
    """
    Output of the on-disk publisher.

    - output_dir: recordings root, one sub directory per topic.
    - every_n: keep one frame out of ``every_n``.
    """

    output_dir: Path = paths.RECORD_DIR
    every_n: int = 1


publisher = PublisherCfg()

__all__ = [
    "Paths",
    "LoggingCfg",
    "TimeoutPreset",
    "SensorCfg",
    "PublisherCfg",
    "DEFAULT_IP",
    "DEFAULT_CONTROL_PORT",
    "DEFAULT_DATA_PORT",
    "DEFAULT_PASSWORD",
    "DEFAULT_SCHEMA_MASK",
    "paths",
    "logging",
    "sensor",
    "publisher",
]
