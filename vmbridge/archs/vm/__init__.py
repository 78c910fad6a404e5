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

"""VM backends: lifecycle probing and the RPC bridge executors."""

from .lima_bridge import LimaBridge
from .lima_prober import LimaProber
from .vm_bridge import BridgeState, VmBridge
from .vm_status import BaseVmProber, VmStatus
from .wsl_bridge import WslBridge
from .wsl_prober import WslProber

__all__ = [
    "VmStatus",
    "BaseVmProber",
    "WslProber",
    "LimaProber",
    "VmBridge",
    "BridgeState",
    "WslBridge",
    "LimaBridge",
]
