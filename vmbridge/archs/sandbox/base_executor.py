# Copyright (c) Nex-AGI. All rights reserved.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Base executor interface for sandboxed command execution and file operations.

Every execution backend (a VM bridge talking to an in-VM agent, or the native
host fallback) implements the same contract so callers never need to know
which one is active.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT_MS = 60000
MAX_OUTPUT_SIZE = 30000

BackendKind = Literal["wsl", "lima"]
SandboxMode = Literal["wsl", "lima", "native", "none"]


# =============================================================================
# Typed Sandbox Configuration
# =============================================================================


class SandboxConfig(BaseModel):
    """Configuration handed to an executor at initialization.

    Immutable once constructed; the caller owns it.
    """

    model_config = ConfigDict(frozen=True)

    workspace_path: str
    timeout: int | None = None  # milliseconds, per command
    env: dict[str, str] = Field(default_factory=dict)


@dataclass
class CommandResult:
    """
    Result of a command execution.

    Attributes:
        success: Whether the command exited with code 0
        stdout: Standard output from the command
        stderr: Standard error output from the command
        exit_code: Exit code of the command
        duration_ms: Execution duration in milliseconds
        error: Error message if execution failed
    """

    success: bool
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    duration_ms: int = 0
    error: str | None = None


@dataclass
class DirectoryEntry:
    """A single entry returned by ``list_directory``. ``size`` is only set for files."""

    name: str
    is_directory: bool
    size: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DirectoryEntry":
        return cls(
            name=str(data["name"]),
            is_directory=bool(data.get("isDirectory", False)),
            size=data.get("size"),
        )


class BaseExecutor(ABC):
    """
    Abstract base class for executors.

    Subclasses provide the actual command execution and file operations. All
    paths are host paths; VM-backed executors convert them before they cross
    into the VM.
    """

    @property
    @abstractmethod
    def is_ready(self) -> bool:
        """Whether the executor accepts operations."""

    @abstractmethod
    def initialize(self, config: SandboxConfig) -> None:
        """
        Prepare the executor for use.

        Args:
            config: Workspace, timeout and environment settings

        Raises:
            SandboxError: If the executor cannot be brought up
        """

    @abstractmethod
    def execute_command(
        self,
        command: str,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
    ) -> CommandResult:
        """
        Execute a shell command.

        Args:
            command: The shell command to execute
            cwd: Optional working directory
            env: Optional per-call environment variables

        Returns:
            CommandResult containing execution results
        """

    @abstractmethod
    def read_file(self, path: str) -> str:
        """
        Read a text file.

        Raises:
            SandboxFileNotFoundError: If the file does not exist
        """

    @abstractmethod
    def write_file(self, path: str, content: str) -> None:
        """Write a text file, creating parent directories as needed."""

    @abstractmethod
    def list_directory(self, path: str) -> list[DirectoryEntry]:
        """List the entries of a directory."""

    @abstractmethod
    def file_exists(self, path: str) -> bool:
        """Check whether a path exists."""

    @abstractmethod
    def delete_file(self, path: str) -> None:
        """Delete a file, or a directory recursively."""

    @abstractmethod
    def create_directory(self, path: str) -> None:
        """Create a directory and any missing parents."""

    @abstractmethod
    def copy_file(self, src: str, dest: str) -> None:
        """Copy a single file."""

    @abstractmethod
    def shutdown(self) -> None:
        """Release every resource held by the executor."""

    def run_agent_turn(
        self,
        prompt: str,
        *,
        cwd: str | None = None,
        model: str | None = None,
        max_turns: int | None = None,
        system_prompt: str | None = None,
        env: dict[str, str] | None = None,
    ) -> Iterator[dict[str, Any]]:
        """Drive one turn of the external agent CLI, yielding its messages.

        Only VM-backed executors support this.
        """
        raise SandboxUnsupportedError(f"{type(self).__name__} does not support agent turns")

    def __repr__(self) -> str:
        return f"{type(self).__name__}(ready={self.is_ready})"


def merge_envs(base: dict[str, str] | None, per_call: dict[str, str] | None) -> dict[str, str] | None:
    """Merge executor-level envs with per-call envs.

    Priority: per_call > base.

    Returns:
        Merged envs dict, or None if both are empty
    """
    if not base and not per_call:
        return None
    merged = dict(base or {})
    if per_call:
        merged.update(per_call)
    return merged or None


class SandboxError(Exception):
    """Base exception for sandbox-related errors."""

    pass


class SandboxUnavailableError(SandboxError):
    """Raised when the VM backend is not installed or cannot be detected."""

    pass


class SandboxSetupError(SandboxError):
    """Raised when creating, starting or provisioning the VM fails."""

    pass


class SandboxNotReadyError(SandboxError):
    """Raised when an operation is issued before the executor is ready."""

    pass


class SandboxUnsupportedError(SandboxError):
    """Raised when the active executor does not offer an operation."""

    pass


class SandboxTimeoutError(SandboxError):
    """Exception raised when a sandbox operation times out."""

    pass


class SandboxExecutionError(SandboxError):
    """Exception raised when command execution fails in the sandbox."""

    pass


class SandboxFileError(SandboxError):
    """Exception raised when file operations fail in the sandbox."""

    pass


class SandboxFileNotFoundError(SandboxFileError):
    """Exception raised when a file does not exist."""

    pass
