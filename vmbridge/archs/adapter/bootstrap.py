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
Background VM preparation.

The bootstrap probes the platform's backend once, creates/starts the
instance and installs missing runtimes, publishing progress as it goes.
Its result is cached so the adapter can initialize without probing again.
"""

import logging
import sys
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Literal

from vmbridge.archs.sandbox.base_executor import BackendKind, SandboxMode
from vmbridge.archs.vm.lima_prober import LimaProber
from vmbridge.archs.vm.vm_status import BaseVmProber, VmStatus
from vmbridge.archs.vm.wsl_prober import WslProber

logger = logging.getLogger(__name__)

BootstrapPhase = Literal[
    "idle",
    "checking",
    "creating",
    "starting",
    "installing_node",
    "installing_python",
    "installing_pip",
    "ready",
    "skipped",
    "error",
]

PLATFORM_BACKENDS: dict[str, BackendKind] = {"win32": "wsl", "darwin": "lima"}
DEFAULT_PROBERS: dict[BackendKind, type[BaseVmProber]] = {"wsl": WslProber, "lima": LimaProber}


def backend_for_platform(platform: str) -> BackendKind | None:
    return PLATFORM_BACKENDS.get(platform)


@dataclass
class BootstrapProgress:
    phase: BootstrapPhase
    message: str
    progress: int
    detail: str | None = None
    error: str | None = None


@dataclass
class BootstrapResult:
    mode: SandboxMode
    status: VmStatus | None = None
    error: str | None = None


ProgressListener = Callable[[BootstrapProgress], None]


class _BootstrapStepError(Exception):
    pass


class SandboxBootstrap:
    """
    Runs the probe/create/install sequence once on a worker thread.

    Args:
        platform: Host platform (defaults to ``sys.platform``)
        probers: Prober class per backend
        auto_install: Install missing Node.js/Python/pip; when False the
            adapter decides (and may ask the user) instead
    """

    def __init__(
        self,
        *,
        platform: str | None = None,
        probers: dict[BackendKind, type[BaseVmProber]] | None = None,
        auto_install: bool = True,
    ):
        self._platform = platform or sys.platform
        self._probers = probers or dict(DEFAULT_PROBERS)
        self._auto_install = auto_install
        self._lock = threading.Lock()
        self._executor: ThreadPoolExecutor | None = None
        self._future: Future[BootstrapResult] | None = None
        self._cached_status: VmStatus | None = None
        self._progress = BootstrapProgress(phase="idle", message="Not started", progress=0)
        self._listeners: list[ProgressListener] = []

    @property
    def backend(self) -> BackendKind | None:
        return backend_for_platform(self._platform)

    @property
    def progress(self) -> BootstrapProgress:
        return self._progress

    @property
    def is_complete(self) -> bool:
        future = self._future
        return future is not None and future.done()

    def prober_for(self, backend: BackendKind) -> type[BaseVmProber]:
        return self._probers[backend]

    def on_progress(self, listener: ProgressListener) -> Callable[[], None]:
        """Subscribe to progress updates; returns an unsubscribe function."""
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def get_cached_status(self) -> VmStatus | None:
        with self._lock:
            return self._cached_status

    def set_cached_status(self, status: VmStatus | None) -> None:
        with self._lock:
            self._cached_status = status

    def invalidate(self) -> None:
        """Drop the cached status and a completed run so the next start probes again."""
        with self._lock:
            self._cached_status = None
            if self._future is not None and self._future.done():
                self._future = None
        logger.info("Bootstrap cache invalidated")

    def start(self) -> Future[BootstrapResult]:
        """Launch the bootstrap in the background; later calls return the same future."""
        with self._lock:
            if self._future is None:
                if self._executor is None:
                    self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="vmbridge-bootstrap")
                self._future = self._executor.submit(self._run)
            return self._future

    def wait(self, timeout: float | None = None) -> BootstrapResult:
        return self.start().result(timeout=timeout)

    def shutdown(self) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=False)

    # ------------------------------------------------------------------ sequence

    def _emit(
        self,
        phase: BootstrapPhase,
        progress: int,
        message: str,
        *,
        detail: str | None = None,
        error: str | None = None,
    ) -> None:
        update = BootstrapProgress(phase=phase, message=message, progress=progress, detail=detail, error=error)
        self._progress = update
        logger.info(f"[Bootstrap] {phase} ({progress}%): {message}")
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(update)
            except Exception as e:
                logger.error(f"[Bootstrap] Progress listener failed: {e}")

    def _run(self) -> BootstrapResult:
        try:
            return self._bootstrap()
        except Exception as e:
            if not isinstance(e, _BootstrapStepError):
                logger.error(f"[Bootstrap] Unexpected failure: {e}")
            self._emit("error", self._progress.progress, "Sandbox setup failed, using native mode", error=str(e))
            return BootstrapResult(mode="native", status=self.get_cached_status(), error=str(e))

    def _bootstrap(self) -> BootstrapResult:
        backend = self.backend
        if backend is None:
            self._emit("skipped", 100, f"No VM backend for platform {self._platform}, using native mode")
            return BootstrapResult(mode="native")

        prober = self._probers[backend]
        self._emit("checking", 10, f"Checking {prober.backend}...")
        status = prober.check_status()
        self.set_cached_status(status)

        if not status.available:
            self._emit("ready", 100, f"{prober.backend} not available, using native mode")
            return BootstrapResult(mode="native", status=status)

        instance = status.instance_name or prober.default_instance
        if instance is None:
            raise _BootstrapStepError(f"No {prober.backend} instance found")

        if not status.instance_exists:
            self._emit("creating", 20, f"Creating {prober.backend} instance {instance}...")
            if not prober.create_instance(instance):
                raise _BootstrapStepError(f"Failed to create {prober.backend} instance {instance}")

        if not status.instance_running:
            self._emit("starting", 30, f"Starting {prober.backend} instance {instance}...")
            if not prober.start_instance(instance):
                raise _BootstrapStepError(f"Failed to start {prober.backend} instance {instance}")
            status = prober.check_status()
            self.set_cached_status(status)

        if self._auto_install:
            self._install_runtimes(prober, instance, status)

        self.set_cached_status(status)
        self._emit("ready", 100, f"{prober.backend} sandbox ready", detail=f"instance={instance}")
        return BootstrapResult(mode=backend, status=status)

    def _install_runtimes(self, prober: type[BaseVmProber], instance: str, status: VmStatus) -> None:
        if not status.node_available:
            self._emit("installing_node", 40, "Installing Node.js...")
            if not prober.install_node(instance):
                raise _BootstrapStepError(f"Failed to install Node.js in {prober.backend}")
            status.node_available = True
            status.runtime_version = prober.probe_node(instance)

        if not status.python_available:
            self._emit("installing_python", 60, "Installing Python...")
            if not prober.install_python(instance):
                raise _BootstrapStepError(f"Failed to install Python in {prober.backend}")
            status.python_available = True
            status.python_version = prober.probe_python(instance)

        if not status.pip_available:
            self._emit("installing_pip", 70, "Installing pip...")
            if prober.install_pip(instance):
                status.pip_available = True
            else:
                logger.warning("[Bootstrap] pip installation failed (non-critical, continuing...)")
