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

"""Tests for SandboxBootstrap."""

import pytest

from tests.fakes import make_prober
from vmbridge.archs.adapter.bootstrap import SandboxBootstrap, backend_for_platform
from vmbridge.archs.vm.vm_status import VmStatus


def _run(prober, *, auto_install=True, platform="darwin"):
    bootstrap = SandboxBootstrap(platform=platform, probers={"lima": prober}, auto_install=auto_install)
    phases = []
    bootstrap.on_progress(lambda update: phases.append(update.phase))
    result = bootstrap.wait(timeout=10)
    bootstrap.shutdown()
    return bootstrap, result, phases


class TestPlatforms:
    @pytest.mark.parametrize(("platform", "backend"), [("win32", "wsl"), ("darwin", "lima"), ("linux", None)])
    def test_backend_for_platform(self, platform, backend):
        assert backend_for_platform(platform) == backend

    def test_unsupported_platform_is_skipped(self):
        bootstrap, result, phases = _run(make_prober(), platform="linux")
        assert result.mode == "native"
        assert result.status is None
        assert phases == ["skipped"]
        assert bootstrap.progress.progress == 100


class TestSequence:
    def test_ready_vm(self):
        prober = make_prober()
        bootstrap, result, phases = _run(prober)
        assert result.mode == "lima"
        assert result.error is None
        assert phases == ["checking", "ready"]
        assert bootstrap.get_cached_status() is result.status
        assert bootstrap.is_complete
        assert prober.calls == ["check_status"]

    def test_unavailable_backend(self):
        bootstrap, result, phases = _run(make_prober(available=False))
        assert result.mode == "native"
        assert result.status is not None and not result.status.available
        assert phases == ["checking", "ready"]
        assert bootstrap.progress.message == "Fake not available, using native mode"
        assert bootstrap.get_cached_status() is result.status

    def test_creates_and_starts_instance(self):
        prober = make_prober(instance_exists=False, instance_running=False)
        _, result, phases = _run(prober)
        assert phases == ["checking", "creating", "starting", "ready"]
        assert prober.calls == ["check_status", "create_instance", "start_instance", "check_status"]
        assert result.mode == "lima"

    def test_installs_runtimes(self):
        prober = make_prober(node_available=False, python_available=False, pip_available=False)
        _, result, phases = _run(prober)
        assert phases == ["checking", "installing_node", "installing_python", "installing_pip", "ready"]
        assert result.status.node_available
        assert result.status.runtime_version == "v20.11.0"
        assert result.status.python_version == "3.12.3"
        assert result.status.pip_available

    def test_progress_increases(self):
        prober = make_prober(instance_exists=False, instance_running=False, node_available=False, python_available=False)
        bootstrap = SandboxBootstrap(platform="darwin", probers={"lima": prober})
        values = []
        bootstrap.on_progress(lambda update: values.append(update.progress))
        bootstrap.wait(timeout=10)
        assert values == sorted(values)
        assert values[-1] == 100

    def test_node_install_failure(self):
        prober = make_prober(node_available=False, install_node_ok=False)
        bootstrap, result, phases = _run(prober)
        assert result.mode == "native"
        assert result.error == "Failed to install Node.js in Fake"
        assert phases == ["checking", "installing_node", "error"]
        assert bootstrap.progress.error == result.error
        assert result.status is not None

    def test_auto_install_disabled(self):
        prober = make_prober(node_available=False, python_available=False)
        _, result, phases = _run(prober, auto_install=False)
        assert phases == ["checking", "ready"]
        assert "install_node" not in prober.calls
        assert not result.status.node_available

    def test_unexpected_probe_failure(self):
        prober = make_prober()

        def broken(cls):
            raise RuntimeError("limactl crashed")

        prober.check_status = classmethod(broken)
        _, result, phases = _run(prober)
        assert result.mode == "native"
        assert result.error == "limactl crashed"
        assert phases == ["checking", "error"]


class TestRunControl:
    def test_start_returns_same_future(self):
        prober = make_prober()
        bootstrap = SandboxBootstrap(platform="darwin", probers={"lima": prober})
        assert bootstrap.start() is bootstrap.start()
        bootstrap.wait(timeout=10)
        bootstrap.wait(timeout=10)
        assert prober.calls == ["check_status"]

    def test_invalidate_forces_new_run(self):
        prober = make_prober()
        bootstrap = SandboxBootstrap(platform="darwin", probers={"lima": prober})
        bootstrap.wait(timeout=10)
        bootstrap.invalidate()
        assert bootstrap.get_cached_status() is None
        assert not bootstrap.is_complete
        bootstrap.wait(timeout=10)
        assert prober.calls == ["check_status", "check_status"]

    def test_cached_status_can_be_seeded(self):
        bootstrap = SandboxBootstrap(platform="darwin", probers={"lima": make_prober()})
        status = VmStatus(available=True)
        bootstrap.set_cached_status(status)
        assert bootstrap.get_cached_status() is status

    def test_listener_failure_and_unsubscribe(self):
        bootstrap = SandboxBootstrap(platform="darwin", probers={"lima": make_prober()})
        seen = []

        def broken(update):
            raise ValueError("bad listener")

        bootstrap.on_progress(broken)
        unsubscribe = bootstrap.on_progress(seen.append)
        unsubscribe()
        result = bootstrap.wait(timeout=10)
        assert result.mode == "lima"
        assert seen == []

    def test_initial_progress(self):
        bootstrap = SandboxBootstrap(platform="darwin", probers={"lima": make_prober()})
        assert bootstrap.progress.phase == "idle"
        assert not bootstrap.is_complete
        assert bootstrap.backend == "lima"
