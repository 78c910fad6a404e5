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

"""Sync engine for Lima instances."""

import getpass
from typing_extensions import override

from vmbridge.archs.sandbox.path_converter import lima_path_converter
from vmbridge.archs.vm.lima_prober import LIMA_INSTANCE_NAME, LimaProber

from .base_sync import BaseSyncEngine


class LimaSyncEngine(BaseSyncEngine):
    """Runs sync scripts with ``limactl shell <instance> -- bash -c``; host paths are identical in the VM."""

    backend = "Lima"

    def __init__(self, instance: str = LIMA_INSTANCE_NAME):
        super().__init__(lima_path_converter)
        self.instance = instance

    @override
    def _wrap(self, script: str) -> list[str]:
        return LimaProber.vm_exec_args(script, self.instance)

    @override
    def _fallback_home(self) -> str:
        # Lima creates the guest user with the host user's name.
        return f"/home/{getpass.getuser()}"
