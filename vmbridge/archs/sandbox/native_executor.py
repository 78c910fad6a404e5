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
Native executor that runs commands directly on the host.

This is the fallback used when no VM backend is available. It provides no
isolation; commands run with the permissions of the current user, with the
workspace as default working directory.
"""

import logging
import os
import shutil
import subprocess
import time
from pathlib import Path
from typing_extensions import override

from .base_executor import (
    DEFAULT_COMMAND_TIMEOUT_MS,
    MAX_OUTPUT_SIZE,
    BaseExecutor,
    CommandResult,
    DirectoryEntry,
    SandboxConfig,
    SandboxExecutionError,
    SandboxFileError,
    SandboxFileNotFoundError,
    SandboxNotReadyError,
    merge_envs,
)

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124


class NativeExecutor(BaseExecutor):
    """Executor that runs ``bash -c`` and file operations on the host filesystem."""

    def __init__(self) -> None:
        self._config: SandboxConfig | None = None

    @property
    @override
    def is_ready(self) -> bool:
        return self._config is not None

    @property
    def workspace(self) -> Path:
        if self._config is None:
            raise SandboxNotReadyError("Native executor not initialized")
        return Path(self._config.workspace_path)

    @override
    def initialize(self, config: SandboxConfig) -> None:
        Path(config.workspace_path).mkdir(parents=True, exist_ok=True)
        self._config = config
        logger.info(f"[Native] Executor ready (workspace={config.workspace_path})")

    def _resolve_path(self, path: str) -> Path:
        """
        Resolve a path to an absolute path.

        Relative paths are resolved against the workspace; absolute paths are used as-is.
        """
        p = Path(path)
        if p.is_absolute():
            return p
        return self.workspace / p

    def _build_env(self, per_call: dict[str, str] | None) -> dict[str, str] | None:
        """Merge os.environ + config env + per-call env; None inherits the parent env."""
        merged = merge_envs(self._config.env if self._config else None, per_call)
        if merged is None:
            return None
        return {**os.environ, **merged}

    @override
    def execute_command(
        self,
        command: str,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
    ) -> CommandResult:
        """
        Execute a bash command on the host.

        Args:
            command: The bash command to execute
            cwd: Optional working directory (defaults to the workspace)
            env: Optional per-call environment variables

        Returns:
            CommandResult; a timeout kills the process and reports exit code 124
        """
        workspace = self.workspace
        timeout_ms = (self._config.timeout if self._config else None) or DEFAULT_COMMAND_TIMEOUT_MS
        start_time = time.time()

        try:
            process = subprocess.Popen(
                ["bash", "-c", command],
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
                cwd=str(self._resolve_path(cwd)) if cwd else str(workspace),
                env=self._build_env(env),
            )
        except OSError as e:
            logger.error(f"[Native] Failed to start command: {e}")
            raise SandboxExecutionError(f"Failed to start command: {e}") from e

        try:
            stdout, stderr = process.communicate(timeout=timeout_ms / 1000.0)
        except subprocess.TimeoutExpired:
            process.kill()
            stdout, stderr = process.communicate()
            logger.warning(f"[Native] Command timed out after {timeout_ms}ms: {command[:100]}")
            return CommandResult(
                success=False,
                stdout=(stdout or "")[:MAX_OUTPUT_SIZE],
                stderr=(stderr or "")[:MAX_OUTPUT_SIZE],
                exit_code=TIMEOUT_EXIT_CODE,
                duration_ms=int((time.time() - start_time) * 1000),
                error=f"Command timed out after {timeout_ms}ms",
            )

        return CommandResult(
            success=process.returncode == 0,
            stdout=(stdout or "")[:MAX_OUTPUT_SIZE],
            stderr=(stderr or "")[:MAX_OUTPUT_SIZE],
            exit_code=process.returncode,
            duration_ms=int((time.time() - start_time) * 1000),
            error=None if process.returncode == 0 else f"Command failed with exit code {process.returncode}",
        )

    @override
    def read_file(self, path: str) -> str:
        full_path = self._resolve_path(path)
        if not full_path.is_file():
            raise SandboxFileNotFoundError(f"File does not exist: {path}")
        try:
            return full_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise SandboxFileError(f"Failed to read file {path}: {e}") from e

    @override
    def write_file(self, path: str, content: str) -> None:
        full_path = self._resolve_path(path)
        try:
            full_path.parent.mkdir(parents=True, exist_ok=True)
            full_path.write_text(content, encoding="utf-8")
        except OSError as e:
            raise SandboxFileError(f"Failed to write file {path}: {e}") from e

    @override
    def list_directory(self, path: str) -> list[DirectoryEntry]:
        dir_path = self._resolve_path(path)
        if not dir_path.exists():
            raise SandboxFileNotFoundError(f"Directory does not exist: {path}")
        if not dir_path.is_dir():
            raise SandboxFileError(f"Path is not a directory: {path}")

        entries: list[DirectoryEntry] = []
        for child in sorted(dir_path.iterdir(), key=lambda p: p.name):
            is_dir = child.is_dir()
            entries.append(DirectoryEntry(name=child.name, is_directory=is_dir, size=None if is_dir else child.stat().st_size))
        return entries

    @override
    def file_exists(self, path: str) -> bool:
        return self._resolve_path(path).exists()

    @override
    def delete_file(self, path: str) -> None:
        full_path = self._resolve_path(path)
        if not full_path.exists():
            raise SandboxFileNotFoundError(f"File does not exist: {path}")
        try:
            if full_path.is_dir():
                shutil.rmtree(full_path)
            else:
                full_path.unlink()
        except OSError as e:
            raise SandboxFileError(f"Failed to delete {path}: {e}") from e

    @override
    def create_directory(self, path: str) -> None:
        try:
            self._resolve_path(path).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SandboxFileError(f"Failed to create directory {path}: {e}") from e

    @override
    def copy_file(self, src: str, dest: str) -> None:
        src_path = self._resolve_path(src)
        dest_path = self._resolve_path(dest)
        if not src_path.exists():
            raise SandboxFileNotFoundError(f"Source file does not exist: {src}")
        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(src_path, dest_path)
        except OSError as e:
            raise SandboxFileError(f"Failed to copy {src} to {dest}: {e}") from e

    @override
    def shutdown(self) -> None:
        self._config = None
        logger.info("[Native] Executor shut down")
