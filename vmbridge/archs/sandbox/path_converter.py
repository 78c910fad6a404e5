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

"""Host <-> VM path conversion.

Converters are pure and total: input that does not match a known shape is
returned unchanged instead of raising.
"""

import logging
import re
from typing import Protocol

logger = logging.getLogger(__name__)

_DRIVE_PATH_RE = re.compile(r"^([A-Za-z]):[\\/]?(.*)$", re.DOTALL)
_MOUNT_PATH_RE = re.compile(r"^/mnt/([a-z])(/.*)?$", re.DOTALL)


class PathConverter(Protocol):
    """Bidirectional mapping between host paths and VM paths."""

    def to_vm(self, host_path: str) -> str: ...

    def to_host(self, vm_path: str) -> str: ...


class DriveLetterPathConverter:
    """Windows drive paths <-> WSL ``/mnt/<drive>`` paths.

    Example:
        >>> conv = DriveLetterPathConverter()
        >>> conv.to_vm("D:\\\\work\\\\app")
        '/mnt/d/work/app'
        >>> conv.to_host("/mnt/d/work/app")
        'D:\\\\work\\\\app'
    """

    def to_vm(self, host_path: str) -> str:
        if not isinstance(host_path, str) or not host_path:
            return host_path
        if host_path.startswith("\\\\"):
            logger.warning(f"UNC paths are not supported in the VM: {host_path}")
            return host_path
        match = _DRIVE_PATH_RE.match(host_path)
        if match is None:
            return host_path
        drive, rest = match.groups()
        rest = rest.replace("\\", "/").strip("/")
        vm_path = f"/mnt/{drive.lower()}"
        return f"{vm_path}/{rest}" if rest else vm_path

    def to_host(self, vm_path: str) -> str:
        if not isinstance(vm_path, str) or not vm_path:
            return vm_path
        match = _MOUNT_PATH_RE.match(vm_path)
        if match is None:
            return vm_path
        drive, rest = match.groups()
        rest = (rest or "").strip("/").replace("/", "\\")
        return f"{drive.upper()}:\\{rest}"


class IdentityPathConverter:
    """Lima mounts the host home hierarchy at the same absolute path."""

    def to_vm(self, host_path: str) -> str:
        return host_path

    def to_host(self, vm_path: str) -> str:
        return vm_path


wsl_path_converter = DriveLetterPathConverter()
lima_path_converter = IdentityPathConverter()
