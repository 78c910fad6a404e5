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

"""Lima detection and instance lifecycle (macOS hosts)."""

import logging
import shutil
from typing_extensions import override

from .process import run_process, stream_process
from .vm_status import BaseVmProber, VmStatus

logger = logging.getLogger(__name__)

LIMACTL_BINARY = "limactl"
LIMA_INSTANCE_NAME = "claude-sandbox"
LIMA_TEMPLATE = "template:ubuntu"


def parse_instance_state(list_output: str, instance: str) -> tuple[bool, bool]:
    """Return ``(exists, running)`` for ``instance`` from ``limactl list`` output."""
    for line in list_output.splitlines():
        columns = line.split()
        if not columns or columns[0] != instance:
            continue
        return True, "Running" in columns[1:]
    return False, False


class LimaProber(BaseVmProber):
    """Probe and manage the Lima instance used as sandbox."""

    backend = "Lima"
    default_instance = LIMA_INSTANCE_NAME

    @classmethod
    @override
    def vm_exec_args(cls, script: str, instance: str) -> list[str]:
        return [LIMACTL_BINARY, "shell", instance, "--", "bash", "-c", script]

    @classmethod
    def is_installed(cls) -> bool:
        return shutil.which(LIMACTL_BINARY) is not None

    @classmethod
    def instance_state(cls, instance: str = LIMA_INSTANCE_NAME) -> tuple[bool, bool]:
        result = run_process([LIMACTL_BINARY, "list"], timeout_s=10)
        if not result.ok:
            logger.warning(f"[Lima] limactl list failed: {result.stderr.strip()[:200]}")
            return False, False
        return parse_instance_state(result.stdout, instance)

    @classmethod
    @override
    def check_status(cls) -> VmStatus:
        status = VmStatus(instance_name=LIMA_INSTANCE_NAME)
        if not cls.is_installed():
            logger.info("[Lima] limactl not found - Lima not installed")
            return status

        status.available = True
        status.instance_exists, status.instance_running = cls.instance_state()
        if status.instance_running:
            cls.probe_runtimes(status, LIMA_INSTANCE_NAME)
        logger.info(
            f"[Lima] exists={status.instance_exists} running={status.instance_running} "
            f"node={status.runtime_version} python={status.python_version}"
        )
        return status

    @classmethod
    @override
    def create_instance(cls, instance: str | None = None) -> bool:
        name = instance or LIMA_INSTANCE_NAME
        exists, _ = cls.instance_state(name)
        if exists:
            logger.info(f"[Lima] Instance {name} already exists")
            return True
        logger.info(f"[Lima] Creating instance {name} (this can take several minutes)...")
        return stream_process(
            [LIMACTL_BINARY, "create", f"--name={name}", "--mount-writable", "--tty=false", LIMA_TEMPLATE],
            timeout_s=600,
            log_prefix="[Lima create]",
        )

    @classmethod
    @override
    def start_instance(cls, instance: str | None = None) -> bool:
        name = instance or LIMA_INSTANCE_NAME
        _, running = cls.instance_state(name)
        if running:
            return True
        logger.info(f"[Lima] Starting instance {name}...")
        return stream_process([LIMACTL_BINARY, "start", "--tty=false", name], timeout_s=600, log_prefix="[Lima start]")

    @classmethod
    @override
    def stop_instance(cls, instance: str | None = None) -> bool:
        name = instance or LIMA_INSTANCE_NAME
        return stream_process([LIMACTL_BINARY, "stop", name], timeout_s=30, log_prefix="[Lima stop]")

    @classmethod
    @override
    def _install_node_with_package_manager(cls, instance: str) -> bool:
        result = cls.run_in_vm("sudo -n apt-get update && sudo -n apt-get install -y nodejs npm", instance, timeout_s=300)
        if not result.ok:
            logger.error(f"[Lima] apt nodejs install failed: {result.stderr.strip()[:300]}")
        return result.ok

    @classmethod
    @override
    def install_python(cls, instance: str) -> bool:
        script = "sudo -n apt-get update && sudo -n apt-get install -y python3 python3-pip python3-venv"
        result = cls.run_in_vm(script, instance, timeout_s=180)
        if not result.ok:
            logger.error(f"[Lima] python3 install failed: {result.stderr.strip()[:300]}")
        return cls.probe_python(instance) is not None
