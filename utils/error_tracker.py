"""Sensor error taxonomy and centralized unhandled exception tracking."""

from __future__ import annotations

import signal
import sys
import threading
import traceback
from typing import Callable, List, Optional

from utils.logger import Logger


class SensorError(Exception):
    """Failure reported by the sensor collaborator, with a numeric code."""

    def __init__(self, code: int, message: str = "") -> None:
        super().__init__(message or f"sensor error {code}")
        self.code = int(code)
        self.message = message or f"sensor error {code}"

    def __str__(self) -> str:
        return self.message


class SensorConnectionError(SensorError):
    """Raised when the control or data connection cannot be opened."""


class SensorConfigError(SensorError):
    """Raised when the device rejects a configuration document."""


class ErrorTracker:
    """Installable global exception hook that logs uncaught errors."""

    logger = Logger.get_logger("utils.error_tracker")
    _installed = False
    _orig_hook: Optional[Callable[..., None]] = None
    _orig_thread_hook: Optional[Callable[..., None]] = None
    _cleanup_funcs: List[Callable[[], None]] = []

    @classmethod
    def register_cleanup(cls, func: Callable[[], None]) -> None:
        """Register a cleanup function executed on fatal errors."""
        cls._cleanup_funcs.append(func)

    @classmethod
    def unregister_cleanup(cls, func: Callable[[], None]) -> None:
        if func in cls._cleanup_funcs:
            cls._cleanup_funcs.remove(func)

    @classmethod
    def _run_cleanup(cls) -> None:
        for func in list(cls._cleanup_funcs):
            try:
                func()
            except Exception as e:
                cls.logger.error(f"Cleanup failed: {e}")

    @classmethod
    def report(cls, exc: BaseException) -> None:
        """Log ``exc`` with its traceback without re-raising it."""
        message = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        cls.logger.error(f"Reported exception:\n{message}")

    @classmethod
    def install_excepthook(cls) -> None:
        """Log unhandled exceptions (main and worker threads) through the project logger."""
        if cls._installed:
            return

        cls._orig_hook = sys.excepthook
        cls._orig_thread_hook = threading.excepthook

        def _hook(exc_type, exc, tb) -> None:
            message = "".join(traceback.format_exception(exc_type, exc, tb))
            cls.logger.error(f"Unhandled exception:\n{message}")
            cls._run_cleanup()
            if cls._orig_hook:
                cls._orig_hook(exc_type, exc, tb)

        def _thread_hook(args: threading.ExceptHookArgs) -> None:
            message = "".join(
                traceback.format_exception(args.exc_type, args.exc_value, args.exc_traceback)
            )
            name = args.thread.name if args.thread else "?"
            cls.logger.error(f"Unhandled exception in thread {name}:\n{message}")

        sys.excepthook = _hook
        threading.excepthook = _thread_hook
        cls._installed = True
        cls.logger.debug("Global exception hook installed")

    @classmethod
    def install_signal_handlers(cls) -> None:
        """Shutdown gracefully on SIGINT or SIGTERM."""

        def _handler(signum, frame) -> None:
            cls.logger.info(f"Received signal {signum}")
            cls._run_cleanup()
            raise SystemExit(1)

        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
