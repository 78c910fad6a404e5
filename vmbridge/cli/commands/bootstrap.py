"""Bootstrap command: prepare the sandbox VM and report progress."""

from __future__ import annotations

import argparse
import logging
import sys

from dotenv import load_dotenv
from pydantic import BaseModel

from vmbridge.archs.adapter.bootstrap import BootstrapProgress, SandboxBootstrap


class BootstrapArgs(BaseModel):
    """Validated arguments for the bootstrap command."""

    verbose: bool
    timeout: float | None


def setup_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Give up after this many seconds (default: wait until done)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose output (debug level logging)",
    )


def _print_progress(progress: BootstrapProgress) -> None:
    line = f"[{progress.progress:3d}%] {progress.phase}: {progress.message}"
    if progress.error:
        line += f" ({progress.error})"
    print(line, flush=True)


def main(args: argparse.Namespace) -> int:
    load_dotenv()
    bootstrap_args = BootstrapArgs(verbose=args.verbose, timeout=args.timeout)

    logging.basicConfig(
        level=logging.DEBUG if bootstrap_args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
        force=True,
    )

    bootstrap = SandboxBootstrap()
    bootstrap.on_progress(_print_progress)
    try:
        result = bootstrap.wait(timeout=bootstrap_args.timeout)
    finally:
        bootstrap.shutdown()

    print(f"Mode: {result.mode}")
    if result.error:
        print(f"Error: {result.error}", file=sys.stderr)
        return 1
    return 0
