"""Logging helpers built on top of loguru."""

from __future__ import annotations

import os
import sys
from datetime import datetime
from pathlib import Path

from loguru import logger as _logger
from loguru._logger import Logger as LoguruLogger

from utils.settings import logging as LOGCFG

LoggerType = LoguruLogger

_is_configured = False
_log_dir = LOGCFG.log_dir
_log_file = None


class Logger:
    """Project-wide logger wrapper using loguru and global config."""

    @staticmethod
    def _configure(level: str, json_format: bool, to_file: bool = True) -> None:
        """Configure log sinks on first use."""
        global _is_configured, _log_file
        _logger.remove()
        _logger.add(
            sys.stdout,
            level=level,
            serialize=False,
            format=LOGCFG.log_format,
        )
        if to_file:
            os.makedirs(_log_dir, exist_ok=True)
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            _log_file = Path(_log_dir) / f"{timestamp}.log.json"
            _logger.add(
                _log_file,
                level=level,
                serialize=json_format,
                format=LOGCFG.log_file_format,
                enqueue=True,
            )
        _is_configured = True

    @staticmethod
    def get_logger(
        name: str, level: str | None = None, json_format: bool | None = None
    ) -> LoguruLogger:
        """
        Return a configured loguru logger bound to ``name``.
        If level or json_format are not specified, uses global config.
        """
        if not _is_configured:
            Logger._configure(
                level or LOGCFG.level,
                json_format if json_format is not None else LOGCFG.json,
                LOGCFG.to_file,
            )
        return _logger.bind(module=name)

    @staticmethod
    def configure_root_logger(level: str = "WARNING") -> None:
        """Log to stdout only, at ``level`` (tests, one-shot CLI calls)."""
        global _is_configured
        _logger.remove()
        _logger.add(sys.stdout, level=level, format=LOGCFG.log_format)
        _is_configured = True

    @staticmethod
    def configure(
        level: str | None = None,
        log_dir: str | Path | None = None,
        json_format: bool | None = None,
        to_file: bool | None = None,
    ) -> None:
        """Manually configure the logger with given settings."""
        global _log_dir
        _log_dir = Path(log_dir) if log_dir is not None else LOGCFG.log_dir
        Logger._configure(
            level or LOGCFG.level,
            json_format if json_format is not None else LOGCFG.json,
            to_file if to_file is not None else LOGCFG.to_file,
        )

    @staticmethod
    def log_file() -> Path | None:
        """Path of the active file sink, if any."""
        return _log_file
