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
Single entry point for sandboxed execution.

The adapter picks the platform's VM backend when it is usable and falls
back to native execution otherwise. Fallbacks never block: they are logged
and surfaced as notifications.
"""

import logging
import sys
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass, replace
from typing import Any

from vmbridge.archs.sandbox.base_executor import (
    BackendKind,
    BaseExecutor,
    CommandResult,
    DirectoryEntry,
    SandboxConfig,
    SandboxMode,
    SandboxNotReadyError,
)
from vmbridge.archs.sandbox.native_executor import NativeExecutor
from vmbridge.archs.sandbox.path_converter import IdentityPathConverter, PathConverter
from vmbridge.archs.sandbox.path_guard import GuardFlavor, PathGuard, ValidationResult
from vmbridge.archs.sandbox.path_resolver import PathResolver
from vmbridge.archs.sync.base_sync import BaseSyncEngine, SyncResult
from vmbridge.archs.sync.lima_sync import LimaSyncEngine
from vmbridge.archs.sync.wsl_sync import WslSyncEngine
from vmbridge.archs.vm.lima_bridge import LimaBridge
from vmbridge.archs.vm.vm_bridge import VmBridge
from vmbridge.archs.vm.vm_status import VmStatus
from vmbridge.archs.vm.wsl_bridge import WslBridge

from .bootstrap import SandboxBootstrap, backend_for_platform
from .config import AdapterConfig
from .notifications import Notification, NotificationHub

logger = logging.getLogger(__name__)

BridgeFactory = Callable[[VmStatus | None], VmBridge]
SyncEngineFactory = Callable[[str], BaseSyncEngine]

DEFAULT_BRIDGE_FACTORIES: dict[BackendKind, BridgeFactory] = {
    "wsl": lambda status: WslBridge(cached_status=status),
    "lima": lambda status: LimaBridge(cached_status=status),
}
DEFAULT_SYNC_ENGINE_FACTORIES: dict[BackendKind, SyncEngineFactory] = {
    "wsl": WslSyncEngine,
    "lima": LimaSyncEngine,
}
GUARD_FLAVORS: dict[BackendKind, GuardFlavor] = {"wsl": "linux", "lima": "darwin"}
BACKEND_NAMES: dict[BackendKind, str] = {"wsl": "WSL2", "lima": "Lima"}

_native_converter = IdentityPathConverter()


@dataclass
class GuardedCommandResult:
    """Outcome of a session command: the guard's verdict and, if allowed, the command result."""

    validation: ValidationResult
    result: CommandResult | None = None

    @property
    def allowed(self) -> bool:
        return self.validation.allowed


class SandboxAdapter:
    """
    Façade over the active executor (VM bridge or native).

    Args:
        bootstrap: Bootstrap whose cached status is reused (created if omitted)
        notifications: Hub that receives fallback/installation notices
        platform: Host platform (defaults to ``sys.platform``)
        bridge_factories: Bridge constructor per backend
        sync_engine_factories: Sync engine constructor per backend, given the instance name
        resolver: Mount table whose real paths the session guard also allows
    """

    def __init__(
        self,
        *,
        bootstrap: SandboxBootstrap | None = None,
        notifications: NotificationHub | None = None,
        platform: str | None = None,
        bridge_factories: dict[BackendKind, BridgeFactory] | None = None,
        sync_engine_factories: dict[BackendKind, SyncEngineFactory] | None = None,
        resolver: PathResolver | None = None,
    ):
        self._platform = platform or sys.platform
        self._bootstrap = bootstrap or SandboxBootstrap(platform=self._platform)
        self._notifications = notifications or NotificationHub()
        self._bridge_factories = bridge_factories or dict(DEFAULT_BRIDGE_FACTORIES)
        self._sync_engine_factories = sync_engine_factories or dict(DEFAULT_SYNC_ENGINE_FACTORIES)
        self._resolver = resolver

        self._init_lock = threading.Lock()
        self._executor: BaseExecutor | None = None
        self._mode: SandboxMode = "none"
        self._config: AdapterConfig | None = None
        self._vm_status: VmStatus | None = None
        self._sync_engine: BaseSyncEngine | None = None
        self._guard: PathGuard | None = None

    # ------------------------------------------------------------------ properties

    @property
    def mode(self) -> SandboxMode:
        return self._mode

    @property
    def is_wsl(self) -> bool:
        return self._mode == "wsl"

    @property
    def is_lima(self) -> bool:
        return self._mode == "lima"

    @property
    def is_native(self) -> bool:
        return self._mode == "native"

    @property
    def initialized(self) -> bool:
        return self._executor is not None

    @property
    def vm_status(self) -> VmStatus | None:
        return self._vm_status

    @property
    def notifications(self) -> NotificationHub:
        return self._notifications

    @property
    def bootstrap(self) -> SandboxBootstrap:
        return self._bootstrap

    @property
    def executor(self) -> BaseExecutor | None:
        return self._executor

    @property
    def sync_engine(self) -> BaseSyncEngine | None:
        """Sync engine of the active VM backend; None in native mode."""
        return self._sync_engine

    @property
    def guard(self) -> PathGuard | None:
        return self._guard

    @property
    def resolver(self) -> PathResolver | None:
        return self._resolver

    # ------------------------------------------------------------------ lifecycle

    def initialize(self, config: SandboxConfig) -> SandboxMode:
        """
        Select and initialize an executor.

        Concurrent callers share one initialization; once initialized this
        returns immediately. VM problems never raise here, they fall back to
        native mode.

        Returns:
            The resulting mode
        """
        with self._init_lock:
            if self._executor is not None:
                return self._mode

            adapter_config = config if isinstance(config, AdapterConfig) else AdapterConfig(**config.model_dump())
            self._config = adapter_config
            backend = backend_for_platform(self._platform)

            if adapter_config.force_native:
                logger.info("Native mode forced by configuration")
            elif backend is None:
                logger.info(f"No VM backend for platform {self._platform}, using native mode")
            elif self._initialize_vm(backend, adapter_config):
                return self._mode

            self._initialize_native(adapter_config)
            return self._mode

    def _initialize_vm(self, backend: BackendKind, config: AdapterConfig) -> bool:
        prober = self._bootstrap.prober_for(backend)
        name = BACKEND_NAMES[backend]

        status = self._bootstrap.get_cached_status()
        if status is None or (backend == "lima" and not status.instance_running):
            logger.info(f"No usable cached {name} status, probing...")
            status = prober.check_status()
            self._bootstrap.set_cached_status(status)
        self._vm_status = status

        if not status.available:
            self._notifications.publish(
                Notification(
                    level="warning",
                    title=f"{name} not available",
                    message=f"{name} was not found; commands will run directly on this machine.",
                    kind="backend_unavailable",
                )
            )
            return False

        # A stopped or missing instance reports no runtimes; the bridge starts it and installs them.
        if status.instance_running and not status.node_available:
            if not self._install_node(backend, prober.default_instance, config):
                return False
            status = self._vm_status
            assert status is not None

        try:
            bridge = self._bridge_factories[backend](status)
            bridge.initialize(config)
        except Exception as e:
            logger.error(f"{name} bridge initialization failed: {e}")
            self._notifications.publish(
                Notification(
                    level="error",
                    title=f"{name} sandbox failed to start",
                    message="Falling back to native execution.",
                    detail=str(e),
                    kind="init_failed",
                )
            )
            return False

        instance = bridge.instance_name or status.instance_name
        if instance is None:
            bridge.shutdown()
            return False
        self._executor = bridge
        self._mode = backend
        self._sync_engine = self._sync_engine_factories[backend](instance)
        self._guard = PathGuard(self._sync_engine, resolver=self._resolver, flavor=GUARD_FLAVORS[backend])
        logger.info(f"Sandbox initialized in {backend} mode (instance={instance})")
        return True

    def _install_node(self, backend: BackendKind, default_instance: str | None, config: AdapterConfig) -> bool:
        status = self._vm_status
        assert status is not None
        name = BACKEND_NAMES[backend]

        if not config.skip_install_prompts:
            approved = self._notifications.confirm(
                Notification(
                    level="info",
                    title="Install Node.js?",
                    message=f"Node.js is required inside {name} to run the agent. Install it now?",
                    kind="install_node",
                )
            )
            if not approved:
                logger.info(f"Node.js installation in {name} declined, using native mode")
                return False

        instance = status.instance_name or default_instance
        if instance is None or not self._bootstrap.prober_for(backend).install_node(instance):
            self._notifications.publish(
                Notification(
                    level="error",
                    title="Node.js installation failed",
                    message=f"Could not install Node.js in {name}; commands will run directly on this machine.",
                    kind="install_failed",
                )
            )
            return False
        self._vm_status = replace(status, node_available=True)
        return True

    def _initialize_native(self, config: AdapterConfig) -> None:
        executor = NativeExecutor()
        executor.initialize(config)
        self._executor = executor
        self._mode = "native"
        if self._platform == "win32":
            self._notifications.publish(
                Notification(
                    level="warning",
                    title="Running without sandbox",
                    message="Commands run directly on Windows without VM isolation.",
                    kind="native_fallback",
                )
            )
        logger.info("Sandbox initialized in native mode")

    def shutdown(self) -> None:
        """Sync back open sessions, stop the executor and reset to mode ``none``."""
        with self._init_lock:
            if self._sync_engine is not None:
                for session_id, result in self._sync_engine.cleanup_all_sessions().items():
                    if not result.success:
                        logger.error(f"Session {session_id} was not cleaned up: {result.error}")
            if self._executor is not None:
                self._executor.shutdown()
            self._executor = None
            self._sync_engine = None
            self._guard = None
            self._vm_status = None
            self._mode = "none"
            self._bootstrap.invalidate()
        logger.info("Sandbox adapter shut down")

    # ------------------------------------------------------------------ executor

    def _require_executor(self) -> BaseExecutor:
        executor = self._executor
        if executor is None:
            raise SandboxNotReadyError("Sandbox not initialized")
        return executor

    def execute_command(self, command: str, cwd: str | None = None, env: dict[str, str] | None = None) -> CommandResult:
        return self._require_executor().execute_command(command, cwd=cwd, env=env)

    def read_file(self, path: str) -> str:
        return self._require_executor().read_file(path)

    def write_file(self, path: str, content: str) -> None:
        self._require_executor().write_file(path, content)

    def list_directory(self, path: str) -> list[DirectoryEntry]:
        return self._require_executor().list_directory(path)

    def file_exists(self, path: str) -> bool:
        return self._require_executor().file_exists(path)

    def delete_file(self, path: str) -> None:
        self._require_executor().delete_file(path)

    def create_directory(self, path: str) -> None:
        self._require_executor().create_directory(path)

    def copy_file(self, src: str, dest: str) -> None:
        self._require_executor().copy_file(src, dest)

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
        return self._require_executor().run_agent_turn(
            prompt,
            cwd=cwd,
            model=model,
            max_turns=max_turns,
            system_prompt=system_prompt,
            env=env,
        )

    # ------------------------------------------------------------------ sessions

    def begin_session(self, session_id: str) -> SyncResult | None:
        """Copy the workspace into the session sandbox and point the agent at it.

        Returns None in native mode, where commands run in the workspace itself.
        """
        executor = self._require_executor()
        if not isinstance(executor, VmBridge) or self._sync_engine is None or self._config is None:
            return None

        result = self._sync_engine.init_sync(self._config.workspace_path, session_id)
        if result.success and result.sandbox_path:
            executor.set_workspace(result.sandbox_path, self._config.workspace_path)
        return result

    def execute_in_session(self, command: str, session_id: str) -> GuardedCommandResult:
        """Validate ``command`` for the session and run it inside the session sandbox."""
        executor = self._require_executor()
        if self._guard is None or self._config is None:
            return GuardedCommandResult(
                validation=ValidationResult(allowed=True, sanitized_command=command),
                result=executor.execute_command(command),
            )

        converted = self._guard.convert_path_in_command(command, session_id, self._config.workspace_path)
        validation = self._guard.validate_command(converted, session_id)
        if not validation.allowed:
            logger.warning(f"Command rejected for session {session_id}: {validation.reason}")
            return GuardedCommandResult(validation=validation)
        return GuardedCommandResult(
            validation=validation,
            result=executor.execute_command(validation.sanitized_command or converted),
        )

    def end_session(self, session_id: str) -> SyncResult | None:
        """Sync the session sandbox back to the workspace and remove it."""
        executor = self._require_executor()
        if self._sync_engine is None or self._config is None:
            return None

        result = self._sync_engine.sync_and_cleanup(session_id)
        if isinstance(executor, VmBridge) and executor.is_ready:
            workspace = self._config.workspace_path
            executor.set_workspace(executor.get_path_converter().to_vm(workspace), workspace)
        return result

    # ------------------------------------------------------------------ paths

    def get_path_converter(self) -> PathConverter:
        executor = self._executor
        if isinstance(executor, VmBridge):
            return executor.get_path_converter()
        return _native_converter

    def resolve_path(self, host_path: str) -> str:
        """Host path as seen by the active executor."""
        return self.get_path_converter().to_vm(host_path)

    def unresolve_result_path(self, vm_path: str) -> str:
        """Executor path as seen on the host."""
        return self.get_path_converter().to_host(vm_path)
