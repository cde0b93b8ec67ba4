"""Control operations on a running head.

Every operation takes the session lock, so it never overlaps a frame wait,
and always answers with a :class:`ControlResult` instead of raising.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Callable, Dict, Optional

from utils.logger import Logger, LoggerType
from utils.settings import SensorCfg

from .acquisition import AcquisitionLoop
from .device import DeviceResult
from .session import NOT_READY_CODE, SessionManager

# Data ports are numbered from the first PCIC port
FIRST_DATA_PORT = 50010


class StatusCode(IntEnum):
    OK = 0
    ERROR = -1
    UNKNOWN = -2
    NOT_READY = NOT_READY_CODE
    NOT_IMPLEMENTED = -4


class PortState(str, Enum):
    IDLE = "IDLE"
    RUN = "RUN"


@dataclass(frozen=True)
class ControlResult:
    status: int
    message: str = "OK"

    @property
    def ok(self) -> bool:
        return self.status == StatusCode.OK

    @classmethod
    def from_device(cls, result: DeviceResult, message: Optional[str] = None) -> "ControlResult":
        if result.ok:
            return cls(StatusCode.OK, message if message is not None else "OK")
        return cls(result.code, result.message)

    @classmethod
    def not_implemented(cls, message: str) -> "ControlResult":
        return cls(StatusCode.NOT_IMPLEMENTED, message)


def port_document(data_port: int, state: PortState) -> Dict[str, Any]:
    """Minimal configuration document switching the data port's state."""
    port = int(data_port) % FIRST_DATA_PORT
    return {"ports": {f"port{port}": {"state": PortState(state).value}}}


class SessionControlFacade:
    """Configuration dump/apply, port state changes and triggering."""

    def __init__(
        self,
        manager: SessionManager,
        loop: AcquisitionLoop,
        cfg: SensorCfg,
        logger: Optional[LoggerType] = None,
    ) -> None:
        self.manager = manager
        self.loop = loop
        self.cfg = cfg
        self.logger = logger or Logger.get_logger("sensor.control")

    def _warn(self, name: str, result: ControlResult) -> ControlResult:
        if not result.ok:
            self.logger.warning(f"{name}: {result.status} - {result.message}")
        return result

    def dump_config(self) -> ControlResult:
        """Device configuration as a JSON string in ``message``."""
        with self.manager.lock:
            result = self.manager.dump_configuration()
        if not result.ok:
            return self._warn("Dump", ControlResult.from_device(result))
        try:
            return ControlResult(StatusCode.OK, json.dumps(result.value))
        except (TypeError, ValueError) as exc:
            return self._warn("Dump", ControlResult(StatusCode.ERROR, str(exc)))

    def apply_config(self, document: str | Dict[str, Any]) -> ControlResult:
        """
        Apply a JSON configuration document.

        There is no rollback: if the device rejects part of a document, the
        parts it accepted stay applied.
        """
        if isinstance(document, (str, bytes)):
            try:
                document = json.loads(document)
            except ValueError as exc:
                return self._warn("Config", ControlResult(StatusCode.ERROR, str(exc)))
        if not isinstance(document, dict):
            return self._warn(
                "Config",
                ControlResult(StatusCode.ERROR, "Configuration must be a JSON object"),
            )
        with self.manager.lock:
            result = self.manager.apply_configuration(document)
        return self._warn("Config", ControlResult.from_device(result))

    def set_port_state(self, target: PortState | str) -> ControlResult:
        """Switch the data port to IDLE or RUN and apply the matching timeout preset."""
        try:
            if not isinstance(target, PortState):
                target = PortState(str(target).upper())
        except ValueError:
            return ControlResult(StatusCode.ERROR, f"Unknown port state: {target}")

        document = port_document(self.cfg.data_port, target)
        preset = self.cfg.soft_on if target is PortState.RUN else self.cfg.soft_off
        with self.manager.lock:
            result = self.manager.apply_configuration(document)
            if not result.ok:
                return self._warn("PortState", ControlResult.from_device(result))
            self.loop.apply_timing(
                preset.timeout_millis, preset.timeout_tolerance_secs, assume_triggered=False
            )
        self.logger.warning(
            "The concept of applications is not available for this head - "
            "we use IDLE and RUN states instead"
        )
        return ControlResult(StatusCode.OK, json.dumps(document))

    def soft_on(self) -> ControlResult:
        return self.set_port_state(PortState.RUN)

    def soft_off(self) -> ControlResult:
        return self.set_port_state(PortState.IDLE)

    def software_trigger(self) -> ControlResult:
        """Always answers NOT_IMPLEMENTED; the device call is still issued and logged."""
        with self.manager.lock:
            result = self.manager.software_trigger()
        if not result.ok:
            self.logger.warning(f"Trigger: {result.code} - {result.message}")
        self.logger.warning("Triggering a camera head is currently not implemented")
        return ControlResult.not_implemented("Software trigger is currently not implemented")

    def services(self) -> Dict[str, Callable[..., ControlResult]]:
        return {
            "Dump": self.dump_config,
            "Config": self.apply_config,
            "Trigger": self.software_trigger,
            "SoftOff": self.soft_off,
            "SoftOn": self.soft_on,
        }
