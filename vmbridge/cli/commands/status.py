"""Status command: probe the platform's VM backend."""

from __future__ import annotations

import argparse
import json
import logging
import sys

from dotenv import load_dotenv
from pydantic import BaseModel

from vmbridge.archs.adapter.bootstrap import DEFAULT_PROBERS, backend_for_platform


class StatusArgs(BaseModel):
    """Validated arguments for the status command."""

    json_output: bool
    verbose: bool


def setup_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--json",
        dest="json_output",
        action="store_true",
        help="Print the status as JSON",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose output (debug level logging)",
    )


def main(args: argparse.Namespace) -> int:
    """Probe the backend and print its VmStatus.

    Returns:
        Exit code (0 = probe completed, regardless of availability)
    """
    load_dotenv()
    status_args = StatusArgs(json_output=args.json_output, verbose=args.verbose)

    logging.basicConfig(
        level=logging.DEBUG if status_args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
        force=True,
    )

    backend = backend_for_platform(sys.platform)
    status = DEFAULT_PROBERS[backend].check_status() if backend else None

    if status_args.json_output:
        payload = {
            "platform": sys.platform,
            "backend": backend,
            "status": status.to_dict() if status else None,
        }
        print(json.dumps(payload, indent=2))
        return 0

    print(f"Platform: {sys.platform}")
    if status is None:
        print("Backend:  none (commands run natively)")
        return 0
    print(f"Backend:  {backend}")
    for key, value in status.to_dict().items():
        print(f"  {key}: {value}")
    return 0
