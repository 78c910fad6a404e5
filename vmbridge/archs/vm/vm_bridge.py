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
Executor backed by an agent process running inside a VM.

The bridge provisions the VM through its prober, deploys and spawns the
in-VM agent, and forwards every executor operation as a JSON-RPC call.
"""

import logging
import threading
import time
from collections.abc import Iterator
from dataclasses import replace
from enum import Enum
from pathlib import Path
from typing import Any, ClassVar

from typing_extensions import override

from vmbridge.archs.sandbox.base_executor import (
    DEFAULT_COMMAND_TIMEOUT_MS,
    BackendKind,
    BaseExecutor,
    CommandResult,
    DirectoryEntry,
    SandboxConfig,
    SandboxError,
    SandboxFileNotFoundError,
    SandboxNotReadyError,
    SandboxSetupError,
    SandboxUnavailableError,
    merge_envs,
)
from vmbridge.archs.sandbox.path_converter import PathConverter
from vmbridge.archs.transports.rpc.config import RpcConfig
from vmbridge.archs.transports.rpc.connection import RpcConnection
from vmbridge.archs.transports.rpc.errors import RpcApplicationError
from vmbridge.archs.transports.rpc.models import NOT_FOUND

from .process import run_process
from .vm_status import BaseVmProber, VmStatus

logger = logging.getLogger(__name__)

AGENT_SCRIPT_PATH = Path(__file__).parent / "agent" / "sandbox_agent.py"
VM_AGENT_DIR = "~/.vmbridge"
TRANSPORT_MARGIN_MS = 5000
AGENT_TURN_TIMEOUT_MS = 300000
SHUTDOWN_TIMEOUT_MS = 5000


class BridgeState(Enum):
    UNINITIALIZED = "uninitialized"
    STARTING = "starting"
    READY = "ready"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"


class VmBridge(BaseExecutor):
    """
    Base class for VM-backed executors.

    Subclasses bind a backend: its prober (lifecycle commands) and its path
    converter (host <-> VM paths).

    Args:
        cached_status: Status computed earlier (e.g. by the bootstrap); used
            instead of probing again when it shows a running instance
        rpc_config: Connection timeouts and framing
    """

    backend: ClassVar[BackendKind]
    prober: ClassVar[type[BaseVmProber]]
    path_converter: ClassVar[PathConverter]

    def __init__(self, *, cached_status: VmStatus | None = None, rpc_config: RpcConfig | None = None):
        self._cached_status = cached_status
        self._rpc_config = rpc_config or RpcConfig()
        self._state = BridgeState.UNINITIALIZED
        self._config: SandboxConfig | None = None
        self._status: VmStatus | None = None
        self._connection: RpcConnection | None = None
        self._lock = threading.Lock()

    @property
    def state(self) -> BridgeState:
        return self._state

    @property
    @override
    def is_ready(self) -> bool:
        return self._state is BridgeState.READY

    @property
    def status(self) -> VmStatus | None:
        return self._status

    @property
    def instance_name(self) -> str | None:
        if self._status and self._status.instance_name:
            return self._status.instance_name
        return self.prober.default_instance

    @property
    def pending_requests(self) -> int:
        return self._connection.pending_count if self._connection else 0

    # ------------------------------------------------------------------ lifecycle

    @override
    def initialize(self, config: SandboxConfig) -> None:
        """Provision the VM, start the agent and point it at the workspace.

        Raises:
            SandboxUnavailableError: If the backend is not installed
            SandboxSetupError: If the instance or a required runtime cannot be set up
            SandboxNotReadyError: If the agent does not answer pings in time
        """
        with self._lock:
            if self._state is BridgeState.READY:
                return
            if self._connection is not None:
                self._connection.close()
                self._connection = None

            self._config = config
            self._state = BridgeState.STARTING
            try:
                status = self._prepare_vm()
                self._status = status
                instance = self.instance_name
                assert instance is not None

                self._connection = RpcConnection(
                    self.build_agent_command(instance),
                    config=self._rpc_config,
                    name=f"{self.backend}-agent",
                    on_exit=self._on_agent_exit,
                )
                self._connection.start()
                self._connection.wait_until_ready()
                self._set_workspace(self.path_converter.to_vm(config.workspace_path), config.workspace_path)
            except BaseException:
                if self._connection is not None:
                    self._connection.close()
                    self._connection = None
                self._state = BridgeState.UNINITIALIZED
                raise

            self._state = BridgeState.READY
            logger.info(f"[{self.backend}] Bridge initialized (instance={instance})")

    def _prepare_vm(self) -> VmStatus:
        cached = self._cached_status
        if cached is not None and cached.available and cached.instance_running:
            logger.info(f"[{self.backend}] Using cached status from bootstrap")
            status = cached
        else:
            logger.info(f"[{self.backend}] No usable cached status, probing...")
            status = self.prober.check_status()

        if not status.available:
            raise SandboxUnavailableError(f"{self.backend} is not available on this system")

        instance = status.instance_name or self.prober.default_instance
        if instance is None:
            raise SandboxUnavailableError(f"No {self.backend} instance found")

        if not status.instance_exists:
            logger.info(f"[{self.backend}] Creating instance {instance}...")
            if not self.prober.create_instance(instance):
                raise SandboxSetupError(f"Failed to create {self.backend} instance {instance}")
        if not status.instance_running:
            logger.info(f"[{self.backend}] Starting instance {instance}...")
            if not self.prober.start_instance(instance):
                raise SandboxSetupError(f"Failed to start {self.backend} instance {instance}")
            status = self.prober.check_status()

        if not status.node_available:
            logger.info(f"[{self.backend}] Node.js not found, installing...")
            if not self.prober.install_node(instance):
                raise SandboxSetupError(f"Failed to install Node.js in {self.backend}")
            status = replace(status, node_available=True)

        if not status.python_available:
            logger.info(f"[{self.backend}] Python not found, installing...")
            if not self.prober.install_python(instance):
                raise SandboxSetupError(f"Failed to install Python in {self.backend}; the sandbox agent needs python3")
            status = replace(status, python_available=True)
        elif not status.pip_available:
            if not self.prober.install_pip(instance):
                logger.warning(f"[{self.backend}] Failed to install pip (non-critical, continuing...)")

        if not status.agent_cli_available:
            logger.info(f"[{self.backend}] Agent CLI not found in VM; agent turns will fail until it is installed")
        return status

    def deploy_agent(self, instance: str) -> str:
        """Copy the agent script into the VM and return its VM-side path."""
        vm_path = f"{VM_AGENT_DIR}/{AGENT_SCRIPT_PATH.name}"
        script = f"mkdir -p {VM_AGENT_DIR} && cat > {vm_path}"
        result = run_process(
            self.prober.vm_exec_args(script, instance),
            timeout_s=30,
            input_text=AGENT_SCRIPT_PATH.read_text(encoding="utf-8"),
        )
        if not result.ok:
            raise SandboxSetupError(f"Failed to deploy sandbox agent: {result.stderr.strip()[:300]}")
        return vm_path

    def build_agent_command(self, instance: str) -> list[str]:
        """Host command that runs the agent inside the VM with its stdio attached."""
        vm_path = self.deploy_agent(instance)
        return self.prober.vm_exec_args(f"exec python3 -u {vm_path}", instance)

    def _on_agent_exit(self, returncode: int | None) -> None:
        if self._state in (BridgeState.READY, BridgeState.STARTING):
            logger.warning(f"[{self.backend}] Agent exited unexpectedly (code={returncode}); re-initialize to continue")
            self._state = BridgeState.UNINITIALIZED

    @override
    def shutdown(self) -> None:
        with self._lock:
            connection = self._connection
            self._state = BridgeState.SHUTTING_DOWN
            if connection is not None:
                if connection.is_running:
                    try:
                        connection.request("shutdown", {}, timeout_ms=SHUTDOWN_TIMEOUT_MS)
                    except SandboxError as e:
                        logger.debug(f"[{self.backend}] shutdown request failed: {e}")
                connection.close()
            self._connection = None
            self._state = BridgeState.TERMINATED
        logger.info(f"[{self.backend}] Bridge shutdown complete")

    # ------------------------------------------------------------------ rpc

    def _require_connection(self) -> RpcConnection:
        connection = self._connection
        if self._state is not BridgeState.READY or connection is None:
            raise SandboxNotReadyError(f"{self.backend} bridge not initialized")
        return connection

    def _call(self, method: str, params: dict[str, Any], timeout_ms: int | None = None) -> Any:
        connection = self._require_connection()
        try:
            return connection.request(method, params, timeout_ms=timeout_ms)
        except RpcApplicationError as e:
            if e.code == NOT_FOUND:
                raise SandboxFileNotFoundError(e.message) from e
            raise

    def _set_workspace(self, vm_path: str, host_path: str | None) -> None:
        if self._connection is None:
            raise SandboxNotReadyError(f"{self.backend} bridge not initialized")
        self._connection.request("setWorkspace", {"path": vm_path, "hostPath": host_path})

    def set_workspace(self, vm_path: str, host_path: str | None = None) -> None:
        """Point the agent at another VM directory, e.g. a session sandbox."""
        self._require_connection()
        self._set_workspace(vm_path, host_path)

    # ------------------------------------------------------------------ executor

    @override
    def execute_command(
        self,
        command: str,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
    ) -> CommandResult:
        config = self._config
        timeout_ms = (config.timeout if config else None) or DEFAULT_COMMAND_TIMEOUT_MS
        start = time.time()
        result = self._call(
            "executeCommand",
            {
                "command": command,
                "cwd": self.path_converter.to_vm(cwd) if cwd else None,
                "env": merge_envs(config.env if config else None, env),
                "timeout": timeout_ms,
            },
            timeout_ms=timeout_ms + TRANSPORT_MARGIN_MS,
        )
        code = int(result.get("code", -1))
        return CommandResult(
            success=code == 0,
            stdout=result.get("stdout", ""),
            stderr=result.get("stderr", ""),
            exit_code=code,
            duration_ms=int((time.time() - start) * 1000),
            error=None if code == 0 else f"Command failed with exit code {code}",
        )

    @override
    def read_file(self, path: str) -> str:
        return str(self._call("readFile", {"path": self.path_converter.to_vm(path)})["content"])

    @override
    def write_file(self, path: str, content: str) -> None:
        self._call("writeFile", {"path": self.path_converter.to_vm(path), "content": content})

    @override
    def list_directory(self, path: str) -> list[DirectoryEntry]:
        result = self._call("listDirectory", {"path": self.path_converter.to_vm(path)})
        return [DirectoryEntry.from_dict(entry) for entry in result.get("entries", [])]

    @override
    def file_exists(self, path: str) -> bool:
        return bool(self._call("fileExists", {"path": self.path_converter.to_vm(path)})["exists"])

    @override
    def delete_file(self, path: str) -> None:
        self._call("deleteFile", {"path": self.path_converter.to_vm(path)})

    @override
    def create_directory(self, path: str) -> None:
        self._call("createDirectory", {"path": self.path_converter.to_vm(path)})

    @override
    def copy_file(self, src: str, dest: str) -> None:
        self._call("copyFile", {"src": self.path_converter.to_vm(src), "dest": self.path_converter.to_vm(dest)})

    @override
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
        """Run one agent CLI turn in the VM, yielding messages as the agent emits them."""
        connection = self._require_connection()
        params: dict[str, Any] = {
            "prompt": prompt,
            "cwd": self.path_converter.to_vm(cwd) if cwd else None,
            "model": model,
            "maxTurns": max_turns,
            "systemPrompt": system_prompt,
            "env": merge_envs(self._config.env if self._config else None, env),
        }
        return connection.stream("runAgentTurn", params, timeout_ms=AGENT_TURN_TIMEOUT_MS)

    def get_path_converter(self) -> PathConverter:
        return self.path_converter

    @override
    def __repr__(self) -> str:
        return f"{type(self).__name__}(state={self._state.value}, instance={self.instance_name})"
