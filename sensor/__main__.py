"""Command line entry point: ``python -m sensor <command>``."""

from __future__ import annotations

import argparse
import sys
import time
from dataclasses import replace
from pathlib import Path

from utils.cli import Command, CommandDispatcher
from utils.config import DEFAULT_CONFIG_PATH, Config
from utils.logger import Logger
from utils.settings import PublisherCfg, SensorCfg

from .control import ControlResult, PortState
from .node import CameraNode
from .publisher import DiskPublisher, MemoryPublisher
from .schema import parse_mask

logger = Logger.get_logger("sensor.cli")


def _common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", type=Path, default=None, help="YAML config file")
    parser.add_argument("--ip", default=None, help="Override the camera address")
    parser.add_argument("--backend", default=None, help="Override the device backend")
    parser.add_argument(
        "--mask", default=None, help="Schema mask, an integer or IMG_RDIS|IMG_AMP style names"
    )


def _config_path(args: argparse.Namespace) -> Path | None:
    if args.config is not None:
        return args.config
    return DEFAULT_CONFIG_PATH if DEFAULT_CONFIG_PATH.exists() else None


def _sensor_cfg(args: argparse.Namespace) -> SensorCfg:
    path = _config_path(args)
    if path is not None:
        Config.load(path, force_reload=True)
        cfg = Config.sensor()
    else:
        cfg = SensorCfg()
    if args.ip:
        cfg = replace(cfg, ip=args.ip)
    if args.backend:
        cfg = replace(cfg, backend=args.backend)
    if args.mask:
        cfg = replace(cfg, schema_mask=int(parse_mask(args.mask)))
    return cfg


def _report(result: ControlResult) -> int:
    print(result.message)
    if not result.ok:
        logger.error(f"status {result.status}")
    return 0 if result.ok else 1


def _add_run(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--duration", type=float, default=None, help="Seconds to stream")
    parser.add_argument(
        "--record", action="store_true", help="Record artifacts to publisher.output_dir"
    )
    parser.add_argument("--output", type=Path, default=None, help="Record artifacts here")
    parser.add_argument("--every-n", type=int, default=None, help="Record every n-th frame")


def _publisher_cfg(args: argparse.Namespace) -> PublisherCfg:
    """The config file's ``publisher`` section with command line overrides."""
    cfg = Config.publisher() if _config_path(args) is not None else PublisherCfg()
    if args.output is not None:
        cfg = replace(cfg, output_dir=args.output)
    if args.every_n is not None:
        cfg = replace(cfg, every_n=args.every_n)
    return cfg


def _run(args: argparse.Namespace) -> int:
    cfg = _sensor_cfg(args)
    if args.record or args.output is not None:
        publisher = DiskPublisher(_publisher_cfg(args))
    else:
        publisher = MemoryPublisher(history=100)
    if Logger.log_file() is not None:
        logger.info(f"Logging to {Logger.log_file()}")
    with CameraNode(cfg=cfg, publisher=publisher) as node:
        start = time.time()
        while node.loop.running:
            if args.duration is not None and time.time() - start >= args.duration:
                break
            time.sleep(0.2)
    return 0


def _with_session(args: argparse.Namespace, action) -> int:
    """Connect once with the requested mask, run ``action`` on the facade, close."""
    cfg = _sensor_cfg(args)
    node = CameraNode(cfg=cfg)
    try:
        if not node.manager.initialize(cfg.schema_mask, cfg.data_port):
            logger.error(f"Could not connect to {cfg.ip}")
            return 2
        return _report(action(node.control))
    finally:
        node.manager.close()


def _dump(args: argparse.Namespace) -> int:
    return _with_session(args, lambda control: control.dump_config())


def _add_config(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("file", type=Path, help="JSON configuration document ('-' for stdin)")


def _config(args: argparse.Namespace) -> int:
    text = sys.stdin.read() if str(args.file) == "-" else args.file.read_text()
    return _with_session(args, lambda control: control.apply_config(text))


def _add_port(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("state", choices=[s.value.lower() for s in PortState])


def _port(args: argparse.Namespace) -> int:
    return _with_session(args, lambda control: control.set_port_state(args.state))


def main(argv: list[str] | None = None, track_exceptions: bool = True) -> int:
    dispatcher = CommandDispatcher(
        description="Time-of-flight head acquisition and control",
        commands=[
            Command("run", _run, _add_run, "Stream and publish artifacts"),
            Command("dump", _dump, None, "Print the device configuration"),
            Command("config", _config, _add_config, "Apply a JSON configuration"),
            Command("port", _port, _add_port, "Switch the data port to idle/run"),
        ],
        common_arguments=_common,
    )
    return dispatcher.run(argv, track_exceptions=track_exceptions)


if __name__ == "__main__":
    sys.exit(main())
