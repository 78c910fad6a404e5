"""vmbridge CLI - probe, bootstrap and run commands in the sandbox."""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence

from vmbridge.cli.commands import bootstrap, exec_command, status


def create_parser() -> argparse.ArgumentParser:
    """Create the main CLI parser with subcommands.

    Returns:
        Configured ArgumentParser with all subcommands
    """
    parser = argparse.ArgumentParser(
        prog="vmbridge",
        description="Run commands and file operations inside a WSL2/Lima sandbox VM",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(
        dest="command",
        help="Available commands",
        required=False,
    )

    status_parser = subparsers.add_parser(
        "status",
        help="Probe the VM backend for this platform",
    )
    status.setup_parser(status_parser)
    status_parser.set_defaults(func=status.main)

    bootstrap_parser = subparsers.add_parser(
        "bootstrap",
        help="Create/start the VM and install the runtimes the sandbox needs",
    )
    bootstrap.setup_parser(bootstrap_parser)
    bootstrap_parser.set_defaults(func=bootstrap.main)

    exec_parser = subparsers.add_parser(
        "exec",
        help="Run one command in the sandbox for a workspace",
    )
    exec_command.setup_parser(exec_parser)
    exec_parser.set_defaults(func=exec_command.main)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """CLI main entry point.

    Args:
        argv: Command line arguments (uses sys.argv if None)

    Returns:
        Exit code (0 = success, non-0 = error)
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    # If no command provided, show help
    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        return args.func(args)
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return 130
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
