"""Command line entry point.

Usage::

    tinyimg [/e eps] [/k] source-image [destination-image]
    tinyimg [/e eps] [/k] source-image [source-image2 source-image3 ...]

Without ``/k`` the sources are optimized in place, except that exactly two
paths are read as a source and its destination.  With ``/k`` every source is
kept and the result is written next to it as ``<name>_tiny<ext>``.
"""

from __future__ import annotations

import argparse
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from . import config
from .errors import UsageError
from .image_processor import ImageProcessor

# Windows-style switches accepted as aliases of the dash options
SLASH_SWITCHES = {"/e": "-e", "/k": "-k", "/?": "-h", "/v": "-v"}

USAGE = (
    "\ttinyimg [/e eps] [/k] source-image [destination-image]\n"
    "\ttinyimg [/e eps] [/k] source-image [source-image2 source-image3 ...]"
)


def configure_logging(verbose: bool = False, log_file: Optional[Path] = None) -> logging.Logger:
    """Configure and return the application logger.

    The handler setup is idempotent so repeated calls (e.g., in tests) only
    adjust the level instead of stacking handlers.
    """
    logger = logging.getLogger(config.LOGGER_NAME)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    if logger.handlers:
        return logger

    formatter = logging.Formatter(config.LOG_FORMAT)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=config.LOG_MAX_BYTES,
            backupCount=config.LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger


class _ArgumentParser(argparse.ArgumentParser):
    """Raises :class:`UsageError` instead of exiting on bad arguments."""

    def error(self, message: str) -> None:  # type: ignore[override]
        raise UsageError(message)


def _tolerance(value: str) -> float:
    try:
        eps = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid tolerance: {value!r}") from None
    if eps != eps or eps < 0:
        raise argparse.ArgumentTypeError(f"tolerance must be a non-negative number: {value!r}")
    return eps


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="tinyimg",
        usage=f"\n{USAGE}",
        add_help=False,
        description="Re-encode images at the lowest quality that stays within a "
                    "perceptual tolerance, then shrink them losslessly.",
    )
    parser.add_argument(
        "-e", "--eps",
        type=_tolerance,
        default=config.DEFAULT_EPS,
        help=f"maximum perceptual difference (default {config.DEFAULT_EPS})",
    )
    parser.add_argument(
        "-k", "--keep",
        action="store_true",
        help=f"keep sources and write <name>{config.KEEP_SUFFIX}.<ext> beside them",
    )
    parser.add_argument("-h", "--help", action="store_true", help="show usage and exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="log every search probe")
    parser.add_argument("--log-file", type=Path, help="also write the log to this file")
    parser.add_argument("files", nargs="*", help="source image(s), optionally followed by a destination")
    return parser


def _normalize_switches(argv: Sequence[str]) -> List[str]:
    return [SLASH_SWITCHES.get(arg, arg) for arg in argv]


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    """Parse *argv*, accepting both ``/e`` and ``-e`` style switches.

    Switches may appear before, between or after the paths.

    Raises:
        UsageError: On a malformed tolerance or unknown option
    """
    return build_parser().parse_intermixed_args(_normalize_switches(argv))


def build_jobs(files: Sequence[str], keep: bool) -> List[Tuple[Path, Path]]:
    """Map the positional paths to ``(input, output)`` pairs."""
    paths = [Path(f) for f in files]
    if keep:
        return [
            (p, p.with_name(f"{p.stem}{config.KEEP_SUFFIX}{p.suffix}"))
            for p in paths
        ]
    if len(paths) == 2:
        return [(paths[0], paths[1])]
    return [(p, p) for p in paths]


def print_usage(stream=None) -> None:
    stream = stream or sys.stdout
    print("Usage:", file=stream)
    print(USAGE, file=stream)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the tool and return the process exit status.

    0 when every file was processed or usage was shown, 1 when any file
    failed, 2 on a usage error.
    """
    argv = sys.argv[1:] if argv is None else argv
    try:
        args = parse_args(argv)
    except UsageError as exc:
        print_usage(sys.stderr)
        print(f"tinyimg: error: {exc}", file=sys.stderr)
        return 2

    if args.help or not args.files:
        print_usage()
        return 0

    configure_logging(args.verbose, args.log_file)
    jobs = build_jobs(args.files, args.keep)
    outcomes = ImageProcessor().process_batch(jobs, args.eps)
    return 0 if all(outcome.ok for outcome in outcomes) else 1
