"""Subcommand dispatching for the project's command line tools."""

from __future__ import annotations

import argparse
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from utils.error_tracker import ErrorTracker
from utils.logger import Logger

logger = Logger.get_logger("utils.cli")

Handler = Callable[[argparse.Namespace], Optional[int]]
ArgumentHook = Callable[[argparse.ArgumentParser], None]


@dataclass
class Command:
    """Subcommand ``name`` handled by ``handler``; the exit status is its return value."""

    name: str
    handler: Handler
    add_arguments: Optional[ArgumentHook] = None
    help: str | None = None


@dataclass
class CommandDispatcher:
    """Options shared by every subcommand go through ``common_arguments``."""

    description: str
    commands: List[Command] = field(default_factory=list)
    common_arguments: Optional[ArgumentHook] = None

    def _build_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(description=self.description)
        if self.common_arguments:
            self.common_arguments(parser)
        subparsers = parser.add_subparsers(dest="command")
        for cmd in self.commands:
            sp = subparsers.add_parser(cmd.name, help=cmd.help)
            if cmd.add_arguments:
                cmd.add_arguments(sp)
            sp.set_defaults(func=cmd.handler)
        return parser

    def run(self, args: Optional[List[str]] = None, track_exceptions: bool = True) -> int:
        """
        Dispatch ``args`` and return the exit status.

        With ``track_exceptions`` the :class:`ErrorTracker` hooks are
        installed first, so uncaught errors and SIGINT/SIGTERM run the
        registered cleanups. Without a subcommand the help is printed and
        ``1`` returned.
        """
        if track_exceptions:
            ErrorTracker.install_excepthook()
            ErrorTracker.install_signal_handlers()

        parser = self._build_parser()
        try:
            ns = parser.parse_args(args)
        except SystemExit as exc:
            logger.error(f"Argument parsing failed: {exc}")
            raise

        if not hasattr(ns, "func"):
            parser.print_help()
            return 1
        return ns.func(ns) or 0
