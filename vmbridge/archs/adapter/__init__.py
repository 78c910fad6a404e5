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

"""Sandbox adapter, bootstrap and host notifications."""

from .bootstrap import BootstrapProgress, BootstrapResult, SandboxBootstrap
from .config import AdapterConfig, load_adapter_config
from .notifications import Notification, NotificationHub
from .sandbox_adapter import GuardedCommandResult, SandboxAdapter

__all__ = [
    "SandboxAdapter",
    "GuardedCommandResult",
    "SandboxBootstrap",
    "BootstrapProgress",
    "BootstrapResult",
    "AdapterConfig",
    "load_adapter_config",
    "Notification",
    "NotificationHub",
]
