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

"""Executor contract, native execution and path security."""

from .base_executor import (
    BaseExecutor,
    CommandResult,
    DirectoryEntry,
    SandboxConfig,
    SandboxError,
    SandboxExecutionError,
    SandboxFileError,
    SandboxFileNotFoundError,
    SandboxNotReadyError,
    SandboxSetupError,
    SandboxTimeoutError,
    SandboxUnavailableError,
    SandboxUnsupportedError,
)
from .native_executor import NativeExecutor
from .path_converter import (
    DriveLetterPathConverter,
    IdentityPathConverter,
    PathConverter,
    lima_path_converter,
    wsl_path_converter,
)
from .path_guard import PathGuard, ValidationResult
from .path_resolver import MountedPath, PathResolver

__all__ = [
    "BaseExecutor",
    "NativeExecutor",
    "SandboxConfig",
    "CommandResult",
    "DirectoryEntry",
    "SandboxError",
    "SandboxUnavailableError",
    "SandboxSetupError",
    "SandboxNotReadyError",
    "SandboxUnsupportedError",
    "SandboxTimeoutError",
    "SandboxExecutionError",
    "SandboxFileError",
    "SandboxFileNotFoundError",
    "PathConverter",
    "DriveLetterPathConverter",
    "IdentityPathConverter",
    "wsl_path_converter",
    "lima_path_converter",
    "PathGuard",
    "ValidationResult",
    "PathResolver",
    "MountedPath",
]
