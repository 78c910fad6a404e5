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

"""VM status facts and the lifecycle prober contract shared by every backend."""

import logging
import re
import shlex
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, ClassVar

from .process import ProcessResult, run_process

logger = logging.getLogger(__name__)

NVM_SOURCE = "source ~/.nvm/nvm.sh 2>/dev/null"
NVM_INSTALL_URL = "https://raw.githubusercontent.com/nvm-sh/nvm/v0.39.7/install.sh"
NODE_MAJOR_VERSION = "20"
AGENT_CLI_PACKAGE = "@anthropic-ai/claude-code"
AGENT_CLI_BINARY = "claude"

_VERSION_RE = re.compile(r"v?\d+\.\d+(?:\.\d+)?")


@dataclass
class VmStatus:
    """
    Facts discovered about a VM backend.

    Attributes:
        available: The backend CLI is installed and usable
        instance_exists: The expected distro/instance exists
        instance_running: The instance is running
        instance_name: WSL distro or Lima instance name
        node_available: Node.js is installed in the VM
        runtime_version: Node.js version string
        python_available: python3 is installed in the VM
        python_version: python3 version string
        pip_available: pip is usable for python3
        agent_cli_available: The external agent CLI is installed in the VM
    """

    available: bool = False
    instance_exists: bool = False
    instance_running: bool = False
    instance_name: str | None = None
    node_available: bool = False
    runtime_version: str | None = None
    python_available: bool = False
    python_version: str | None = None
    pip_available: bool = False
    agent_cli_available: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def parse_version(output: str) -> str | None:
    match = _VERSION_RE.search(output or "")
    return match.group(0) if match else None


class BaseVmProber(ABC):
    """
    Static lifecycle operations for one VM backend.

    Every operation is bounded by a timeout and reports failure as ``False``
    (or a ``False`` status field) instead of raising, so callers can fall back
    to native execution.
    """

    backend: ClassVar[str]
    default_instance: ClassVar[str | None] = None

    @classmethod
    @abstractmethod
    def vm_exec_args(cls, script: str, instance: str) -> list[str]:
        """Build the host command that runs ``script`` with bash inside the VM."""

    @classmethod
    @abstractmethod
    def check_status(cls) -> VmStatus: ...

    @classmethod
    @abstractmethod
    def create_instance(cls, instance: str | None = None) -> bool: ...

    @classmethod
    @abstractmethod
    def start_instance(cls, instance: str | None = None) -> bool: ...

    @classmethod
    @abstractmethod
    def stop_instance(cls, instance: str | None = None) -> bool: ...

    @classmethod
    @abstractmethod
    def install_python(cls, instance: str) -> bool: ...

    @classmethod
    @abstractmethod
    def _install_node_with_package_manager(cls, instance: str) -> bool: ...

    @classmethod
    def run_in_vm(cls, script: str, instance: str, timeout_s: float) -> ProcessResult:
        result = run_process(cls.vm_exec_args(script, instance), timeout_s=timeout_s)
        logger.debug(f"[{cls.backend}] {script[:120]!r} -> {result.exit_code}")
        return result

    # -- probes ---------------------------------------------------------------

    @classmethod
    def probe_runtimes(cls, status: VmStatus, instance: str) -> VmStatus:
        """Fill the runtime fields of ``status``; each probe failing only clears its own field."""
        node = cls.probe_node(instance)
        status.node_available = node is not None
        status.runtime_version = node

        python = cls.probe_python(instance)
        status.python_available = python is not None
        status.python_version = python

        status.pip_available = status.python_available and cls.probe_pip(instance)
        status.agent_cli_available = cls.probe_agent_cli(instance)
        return status

    @classmethod
    def probe_node(cls, instance: str) -> str | None:
        for script in ("node --version", f"{NVM_SOURCE} && node --version"):
            result = cls.run_in_vm(script, instance, timeout_s=10)
            if result.ok:
                version = parse_version(result.stdout)
                if version:
                    return version
        return None

    @classmethod
    def probe_python(cls, instance: str) -> str | None:
        result = cls.run_in_vm("python3 --version", instance, timeout_s=10)
        return parse_version(result.stdout or result.stderr) if result.ok else None

    @classmethod
    def probe_pip(cls, instance: str) -> bool:
        return cls.run_in_vm("python3 -m pip --version", instance, timeout_s=10).ok

    @classmethod
    def probe_agent_cli(cls, instance: str) -> bool:
        for script in (f"{AGENT_CLI_BINARY} --version", f"{NVM_SOURCE} && {AGENT_CLI_BINARY} --version"):
            if cls.run_in_vm(script, instance, timeout_s=10).ok:
                return True
        return False

    @classmethod
    def has_passwordless_sudo(cls, instance: str) -> bool:
        return cls.run_in_vm("sudo -n true", instance, timeout_s=10).ok

    # -- installers -----------------------------------------------------------

    @classmethod
    def install_node(cls, instance: str) -> bool:
        """Install Node.js: nvm first (no root needed), then the system package manager."""
        logger.info(f"[{cls.backend}] Installing Node.js via nvm in {instance}...")
        if cls._install_node_via_nvm(instance):
            return True
        logger.warning(f"[{cls.backend}] nvm install failed, trying the system package manager")
        if not cls.has_passwordless_sudo(instance):
            logger.error(f"[{cls.backend}] No passwordless sudo in {instance}; cannot install Node.js")
            return False
        if not cls._install_node_with_package_manager(instance):
            return False
        return cls.probe_node(instance) is not None

    @classmethod
    def _install_node_via_nvm(cls, instance: str) -> bool:
        steps = (
            (f"curl -o- {NVM_INSTALL_URL} | bash", 120),
            (f"{NVM_SOURCE} && nvm install {NODE_MAJOR_VERSION} && nvm alias default {NODE_MAJOR_VERSION}", 180),
        )
        for script, timeout_s in steps:
            result = cls.run_in_vm(script, instance, timeout_s=timeout_s)
            if not result.ok:
                logger.warning(f"[{cls.backend}] Step failed ({result.exit_code}): {result.stderr.strip()[:300]}")
                return False
        version = cls.probe_node(instance)
        if version:
            logger.info(f"[{cls.backend}] Node.js {version} installed via nvm")
        return version is not None

    @classmethod
    def install_pip(cls, instance: str) -> bool:
        """Install pip with apt when sudo is available, else with get-pip.py for the user."""
        if cls.has_passwordless_sudo(instance):
            script = "sudo -n apt-get update && sudo -n apt-get install -y python3-pip"
        else:
            script = "curl -sS https://bootstrap.pypa.io/get-pip.py -o /tmp/get-pip.py && python3 /tmp/get-pip.py --user"
        result = cls.run_in_vm(script, instance, timeout_s=180)
        if not result.ok:
            logger.error(f"[{cls.backend}] pip install failed: {result.stderr.strip()[:300]}")
        return cls.probe_pip(instance)

    @classmethod
    def install_agent_cli(cls, instance: str) -> bool:
        result = cls.run_in_vm(f"{NVM_SOURCE}; npm install -g {shlex.quote(AGENT_CLI_PACKAGE)}", instance, timeout_s=300)
        if not result.ok:
            logger.error(f"[{cls.backend}] Agent CLI install failed: {result.stderr.strip()[:300]}")
        return cls.probe_agent_cli(instance)
