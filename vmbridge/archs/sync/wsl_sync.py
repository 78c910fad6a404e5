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

"""Sync engine for WSL2 distributions."""

from typing_extensions import override

from vmbridge.archs.sandbox.path_converter import wsl_path_converter
from vmbridge.archs.vm.wsl_prober import WslProber

from .base_sync import BaseSyncEngine


class WslSyncEngine(BaseSyncEngine):
    """Runs sync scripts with ``wsl -d <distro> -- bash -c``; host files are reached via ``/mnt/<letter>``."""

    backend = "WSL"

    def __init__(self, distro: str):
        super().__init__(wsl_path_converter)
        self.distro = distro

    @override
    def _wrap(self, script: str) -> list[str]:
        return WslProber.vm_exec_args(script, self.distro)

    @override
    def _fallback_home(self) -> str:
        return "/root"
