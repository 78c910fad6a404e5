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

"""Workspace <-> VM sandbox synchronization."""

from .base_sync import SYNC_EXCLUDES, BaseSyncEngine, SyncResult, SyncSession, format_size
from .lima_sync import LimaSyncEngine
from .wsl_sync import WslSyncEngine

__all__ = [
    "SYNC_EXCLUDES",
    "BaseSyncEngine",
    "WslSyncEngine",
    "LimaSyncEngine",
    "SyncSession",
    "SyncResult",
    "format_size",
]
