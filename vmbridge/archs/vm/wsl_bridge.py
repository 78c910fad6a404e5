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

"""Executor that runs commands inside a WSL2 distribution."""

from typing import ClassVar

from vmbridge.archs.sandbox.base_executor import BackendKind
from vmbridge.archs.sandbox.path_converter import PathConverter, wsl_path_converter

from .vm_bridge import VmBridge
from .vm_status import BaseVmProber
from .wsl_prober import WslProber


class WslBridge(VmBridge):
    """VM bridge for Windows hosts; host drive paths appear under ``/mnt/<letter>`` in the VM."""

    backend: ClassVar[BackendKind] = "wsl"
    prober: ClassVar[type[BaseVmProber]] = WslProber
    path_converter: ClassVar[PathConverter] = wsl_path_converter
