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

"""Virtual filesystem mounts for sessions.

A caller registers ``MountedPath`` bindings per session. Virtual paths are then
resolved to real paths only when they stay inside a mount's real root, including
after symlinks are followed.
"""

import logging
import os
import posixpath
import threading
from dataclasses import dataclass
from typing import Literal

logger = logging.getLogger(__name__)

Operation = Literal["read", "write", "execute"]


@dataclass(frozen=True)
class MountedPath:
    virtual: str
    real: str


def _within(path: str, root: str) -> bool:
    try:
        return os.path.commonpath([path, root]) == root
    except ValueError:
        # Different drives on Windows, or mixed absolute/relative
        return False


class PathResolver:
    """Resolve session-scoped virtual paths to real filesystem paths."""

    def __init__(self) -> None:
        self._session_mounts: dict[str, list[MountedPath]] = {}
        self._lock = threading.Lock()

    def register_session(self, session_id: str, mounts: list[MountedPath]) -> None:
        with self._lock:
            self._session_mounts[session_id] = list(mounts)

    def unregister_session(self, session_id: str) -> None:
        with self._lock:
            self._session_mounts.pop(session_id, None)

    def get_mounts(self, session_id: str) -> list[MountedPath]:
        with self._lock:
            return list(self._session_mounts.get(session_id, []))

    def resolve(self, session_id: str, virtual_path: str) -> str | None:
        """Resolve a virtual path to a real path.

        Args:
            session_id: Session owning the mounts
            virtual_path: Absolute virtual path, e.g. ``/mnt/workspace/src/app.py``

        Returns:
            Real path, or None if the path is invalid or not authorized
        """
        normalized = self._normalize_virtual(virtual_path)
        if normalized is None:
            return None

        for mount in self.get_mounts(session_id):
            mount_root = self._normalize_virtual(mount.virtual)
            if mount_root is None:
                continue
            if normalized != mount_root and not normalized.startswith(mount_root.rstrip("/") + "/"):
                continue
            relative = normalized[len(mount_root) :].lstrip("/")
            real_path = os.path.join(mount.real, *relative.split("/")) if relative else mount.real
            if self.validate_path(real_path, mount.real):
                return os.path.normpath(real_path)
        return None

    def virtualize(self, session_id: str, real_path: str) -> str | None:
        """Convert a real path back to its virtual path, or None when not mounted."""
        normalized = os.path.normpath(real_path)
        for mount in self.get_mounts(session_id):
            root = os.path.normpath(mount.real)
            if not _within(normalized, root):
                continue
            relative = os.path.relpath(normalized, root).replace("\\", "/")
            if relative == ".":
                return mount.virtual
            return posixpath.join(mount.virtual, relative)
        return None

    def validate_path(self, resolved_path: str, mount_root: str) -> bool:
        """Check that a resolved path stays inside ``mount_root``, following symlinks."""
        normalized = os.path.normpath(resolved_path)
        root = os.path.normpath(mount_root)
        if not _within(normalized, root):
            logger.warning(f"Path escape attempt: {resolved_path} is outside {mount_root}")
            return False

        if os.path.exists(normalized):
            real = os.path.realpath(normalized)
            if not _within(real, os.path.realpath(root)):
                logger.warning(f"Symlink escape attempt: {normalized} -> {real}")
                return False
        return True

    def is_safe_for_operation(self, session_id: str, virtual_path: str, operation: Operation) -> bool:
        real_path = self.resolve(session_id, virtual_path)
        if real_path is None:
            return False
        if operation == "write":
            return os.access(os.path.dirname(real_path), os.W_OK)
        return operation in ("read", "execute")

    @staticmethod
    def _normalize_virtual(virtual_path: str) -> str | None:
        if not virtual_path.startswith("/"):
            return None
        if ".." in virtual_path.split("/"):
            logger.warning(f"Path traversal attempt detected: {virtual_path}")
            return None
        if "~" in virtual_path:
            logger.warning(f"Home directory reference detected: {virtual_path}")
            return None
        return posixpath.normpath(virtual_path)
