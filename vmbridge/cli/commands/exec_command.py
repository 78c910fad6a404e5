"""Exec command: run one command for a workspace through the sandbox adapter."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel

from vmbridge.archs.adapter.config import AdapterConfig, load_adapter_config
from vmbridge.archs.adapter.sandbox_adapter import SandboxAdapter
from vmbridge.archs.sandbox.base_executor import CommandResult

logger = logging.getLogger(__name__)


class ExecArgs(BaseModel):
    """Validated arguments for the exec command."""

    workspace: str
    command: str
    config: str | None
    session: str | None
    native: bool
    verbose: bool


def setup_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("workspace", type=str, help="Host workspace directory")
    parser.add_argument("command", type=str, help="Shell command to run")
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a sandbox YAML configuration file",
    )
    parser.add_argument(
        "--session",
        type=str,
        default=None,
        help="Session id; in VM mode the workspace is synced into a per-session sandbox",
    )
    parser.add_argument(
        "--native",
        action="store_true",
        help="Skip the VM and run natively",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose output (debug level logging)",
    )


def _load_config(exec_args: ExecArgs) -> AdapterConfig:
    overrides: dict[str, Any] = {"workspace_path": str(Path(exec_args.workspace).resolve())}
    if exec_args.native:
        overrides["force_native"] = True
    if exec_args.config:
        return load_adapter_config(exec_args.config, **overrides)
    return AdapterConfig(**overrides)


def main(args: argparse.Namespace) -> int:
    """Initialize the adapter, run the command and print its output.

    Returns:
        The command's exit code, or 1 if the sandbox rejected or failed it
    """
    load_dotenv()
    exec_args = ExecArgs(
        workspace=args.workspace,
        command=args.command,
        config=args.config,
        session=args.session,
        native=args.native,
        verbose=args.verbose,
    )

    logging.basicConfig(
        level=logging.DEBUG if exec_args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
        force=True,
    )

    adapter = SandboxAdapter()
    try:
        mode = adapter.initialize(_load_config(exec_args))
        logger.info(f"Running in {mode} mode")

        result: CommandResult | None
        if exec_args.session and mode in ("wsl", "lima"):
            sync = adapter.begin_session(exec_args.session)
            if sync is None or not sync.success:
                print(f"Error: failed to prepare session sandbox: {sync.error if sync else 'no sync engine'}", file=sys.stderr)
                return 1
            try:
                outcome = adapter.execute_in_session(exec_args.command, exec_args.session)
            finally:
                ended = adapter.end_session(exec_args.session)
                if ended is not None and not ended.success:
                    print(f"Warning: sync back failed: {ended.error}", file=sys.stderr)
            if not outcome.allowed:
                print(f"Command rejected: {outcome.validation.reason}", file=sys.stderr)
                return 1
            result = outcome.result
        else:
            result = adapter.execute_command(exec_args.command)

        assert result is not None
        if result.stdout:
            sys.stdout.write(result.stdout)
        if result.stderr:
            sys.stderr.write(result.stderr)
        return result.exit_code
    finally:
        adapter.shutdown()
