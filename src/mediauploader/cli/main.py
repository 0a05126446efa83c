from __future__ import annotations

import argparse
import logging

from rich.console import Console

from mediauploader.cli.commands import serve_cmd, upload_cmd
from mediauploader.cli.context import CLIContext
from mediauploader.core.config import load_settings
from mediauploader.core.errors import UploaderError
from mediauploader.core.logging import configure_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mediaup",
        description="Resumable media uploads",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0)

    subparsers = parser.add_subparsers(dest="command", required=True)
    upload_cmd.register(subparsers)
    serve_cmd.register(subparsers)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.verbose)
    console = Console()

    ctx = CLIContext(settings=load_settings(), console=console)

    handler = getattr(args, "handler", None)
    if handler is None:
        parser.print_help()
        return 2

    try:
        return handler(args, ctx)
    except UploaderError as exc:
        logger.error(str(exc))
        return 1
