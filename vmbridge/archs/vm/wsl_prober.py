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

"""WSL2 detection and provisioning (Windows hosts)."""

import logging
from typing_extensions import override

from .process import run_process
from .vm_status import BaseVmProber, VmStatus

logger = logging.getLogger(__name__)

WSL_BINARY = "wsl"
PREFERRED_DISTRO = "ubuntu"


def decode_wsl_output(data: bytes) -> str:
    """Decode ``wsl.exe`` output, which is UTF-16LE for some subcommands."""
    if not data:
        return ""
    if data.startswith(b"\xff\xfe") or (len(data) > 1 and data[1:2] == b"\x00"):
        text = data.decode("utf-16-le", errors="replace")
    else:
        text = data.decode("utf-8", errors="replace")
    return text.replace("\x00", "").replace("\ufeff", "")


def parse_distro_list(output: str) -> list[str]:
    distros: list[str] = []
    for line in output.splitlines():
        name = line.strip().lstrip("*").strip()
        if not name or name.lower().startswith("docker-desktop"):
            continue
        distros.append(name)
    return distros


def pick_distro(distros: list[str]) -> str | None:
    for name in distros:
        if PREFERRED_DISTRO in name.lower():
            return name
    return distros[0] if distros else None


class WslProber(BaseVmProber):
    """Probe and provision a WSL2 distribution."""

    backend = "WSL"

    @classmethod
    @override
    def vm_exec_args(cls, script: str, instance: str) -> list[str]:
        return [WSL_BINARY, "-d", instance, "--", "bash", "-c", script]

    @classmethod
    def list_distros(cls) -> list[str]:
        result = run_process([WSL_BINARY, "--list", "--quiet"], timeout_s=10, decoder=decode_wsl_output)
        if not result.ok:
            return []
        return parse_distro_list(result.stdout)

    @classmethod
    def test_distro(cls, distro: str) -> bool:
        result = cls.run_in_vm("echo OK", distro, timeout_s=10)
        return result.ok and "OK" in result.stdout

    @classmethod
    @override
    def check_status(cls) -> VmStatus:
        status = VmStatus()
        if not run_process([WSL_BINARY, "--status"], timeout_s=5, decoder=decode_wsl_output).ok:
            logger.info("[WSL] wsl --status failed; WSL2 is not available")
            return status

        distro = pick_distro(cls.list_distros())
        if distro is None:
            logger.info("[WSL] No Linux distribution installed")
            return status

        status.instance_name = distro
        status.instance_exists = True
        if not cls.test_distro(distro):
            logger.warning(f"[WSL] Distro {distro} did not respond")
            return status

        status.available = True
        status.instance_running = True
        cls.probe_runtimes(status, distro)
        logger.info(
            f"[WSL] distro={distro} node={status.runtime_version} python={status.python_version} "
            f"pip={status.pip_available} agent_cli={status.agent_cli_available}"
        )
        return status

    @classmethod
    @override
    def create_instance(cls, instance: str | None = None) -> bool:
        # Distros cannot be installed unattended (wsl --install needs elevation
        # and a reboot); report whether a usable one already exists.
        distros = cls.list_distros()
        if instance is not None:
            return instance in distros
        return pick_distro(distros) is not None

    @classmethod
    @override
    def start_instance(cls, instance: str | None = None) -> bool:
        distro = instance or pick_distro(cls.list_distros())
        if distro is None:
            return False
        return cls.test_distro(distro)

    @classmethod
    @override
    def stop_instance(cls, instance: str | None = None) -> bool:
        distro = instance or pick_distro(cls.list_distros())
        if distro is None:
            return False
        return run_process([WSL_BINARY, "--terminate", distro], timeout_s=30).ok

    @classmethod
    @override
    def _install_node_with_package_manager(cls, instance: str) -> bool:
        script = (
            "curl -fsSL https://deb.nodesource.com/setup_20.x | sudo -n -E bash - "
            "&& sudo -n apt-get install -y nodejs"
        )
        result = cls.run_in_vm(script, instance, timeout_s=300)
        if not result.ok:
            logger.error(f"[WSL] NodeSource install failed: {result.stderr.strip()[:300]}")
        return result.ok

    @classmethod
    @override
    def install_python(cls, instance: str) -> bool:
        if not cls.has_passwordless_sudo(instance):
            logger.error(f"[WSL] Installing python3 needs passwordless sudo in {instance}")
            return False
        script = "sudo -n apt-get update && sudo -n apt-get install -y python3 python3-pip python3-venv"
        result = cls.run_in_vm(script, instance, timeout_s=300)
        if not result.ok:
            logger.error(f"[WSL] python3 install failed: {result.stderr.strip()[:300]}")
        return cls.probe_python(instance) is not None
