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

"""
Bidirectional rsync between a host workspace and a per-session VM directory.

Each conversation gets its own sandbox directory under the VM user's home.
The workspace is copied in when the session starts and copied back (with
deletions) when it ends, so commands never touch host files directly.
"""

import logging
import posixpath
import re
import shlex
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import ClassVar

from vmbridge.archs.sandbox.path_converter import PathConverter
from vmbridge.archs.vm.process import ProcessResult, run_process

logger = logging.getLogger(__name__)

SANDBOX_SUBDIR = ".claude/sandbox"
RSYNC_TIMEOUT_S = 300
COPY_TIMEOUT_S = 60

# Used for both directions; excluded paths are never deleted on the host.
SYNC_EXCLUDES: tuple[str, ...] = (
    "node_modules",
    ".git",
    "dist",
    "build",
    "__pycache__",
    "*.pyc",
    ".next",
    ".cache",
    "coverage",
    ".nyc_output",
    "venv",
    ".venv",
    "env",
    ".env.local",
    "*.log",
    ".DS_Store",
    "Thumbs.db",
)

_SESSION_ID_RE = re.compile(r"[A-Za-z0-9_.-]+")


@dataclass
class SyncSession:
    """
    Bookkeeping for one session's sandbox directory.

    Attributes:
        session_id: Conversation/session identifier
        host_path: Host workspace the sandbox mirrors
        sandbox_path: VM directory (``<home>/.claude/sandbox/<session_id>``)
        last_sync: Unix timestamp of the last successful sync
        file_count: Number of files after the last sync
        total_size: Total size in bytes after the last sync
        initialized: Whether the initial copy completed
    """

    session_id: str
    host_path: str
    sandbox_path: str
    last_sync: float = 0.0
    file_count: int = 0
    total_size: int = 0
    initialized: bool = False


@dataclass
class SyncResult:
    success: bool
    file_count: int = 0
    total_size: int = 0
    sandbox_path: str | None = None
    error: str | None = None


def validate_session_id(session_id: str) -> None:
    """Raise ValueError unless ``session_id`` is safe to use as a directory name."""
    if not _SESSION_ID_RE.fullmatch(session_id) or session_id in (".", ".."):
        raise ValueError(f"Invalid session id: {session_id!r}")


def format_size(num_bytes: int) -> str:
    size = float(num_bytes)
    for unit in ("B", "KB", "MB"):
        if size < 1024:
            return f"{int(size)} B" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


def build_rsync_script(src: str, dest: str) -> str:
    """rsync command mirroring ``src/`` into ``dest/`` with deletions and the shared excludes."""
    excludes = " ".join(f"--exclude={shlex.quote(pattern)}" for pattern in SYNC_EXCLUDES)
    return f"rsync -a --delete {excludes} {shlex.quote(src.rstrip('/') + '/')} {shlex.quote(dest.rstrip('/') + '/')}"


class BaseSyncEngine(ABC):
    """
    Session-scoped sync engine; subclasses choose how scripts reach the VM.

    Operations for one session id must not overlap; callers serialize them.
    The session map itself is guarded by a lock.
    """

    backend: ClassVar[str]

    def __init__(self, path_converter: PathConverter):
        self._converter = path_converter
        self._sessions: dict[str, SyncSession] = {}
        self._lock = threading.Lock()
        self._vm_home: str | None = None

    @abstractmethod
    def _wrap(self, script: str) -> list[str]:
        """Host command that runs ``script`` with bash in the VM."""

    @abstractmethod
    def _fallback_home(self) -> str: ...

    def _exec(self, script: str, timeout_s: float) -> ProcessResult:
        result = run_process(self._wrap(script), timeout_s=timeout_s)
        if not result.ok:
            logger.debug(f"[{self.backend} sync] {script[:120]!r} failed ({result.exit_code}): {result.stderr.strip()[:300]}")
        return result

    # ------------------------------------------------------------------ sessions

    def get_session(self, session_id: str) -> SyncSession | None:
        with self._lock:
            return self._sessions.get(session_id)

    def has_session(self, session_id: str) -> bool:
        return self.get_session(session_id) is not None

    def get_sandbox_path(self, session_id: str) -> str | None:
        session = self.get_session(session_id)
        return session.sandbox_path if session else None

    def clear_session(self, session_id: str) -> None:
        """Forget a session without syncing or deleting its directory."""
        with self._lock:
            self._sessions.pop(session_id, None)

    def clear_all_sessions(self) -> None:
        with self._lock:
            self._sessions.clear()

    def get_vm_home(self) -> str:
        if self._vm_home is None:
            result = self._exec("cd ~ && pwd", timeout_s=10)
            home = result.stdout.strip().splitlines()[-1] if result.ok and result.stdout.strip() else ""
            if not home.startswith("/"):
                home = self._fallback_home()
                logger.warning(f"[{self.backend} sync] Could not resolve VM home, using {home}")
            self._vm_home = home
        return self._vm_home

    # ------------------------------------------------------------------ sync

    def init_sync(self, host_path: str, session_id: str) -> SyncResult:
        """
        Create (or reuse) the session sandbox and copy the workspace into it.

        Args:
            host_path: Host workspace directory
            session_id: Session identifier; must match ``[A-Za-z0-9_.-]+``

        Returns:
            SyncResult describing the sandbox

        Raises:
            ValueError: If the session id is invalid
        """
        validate_session_id(session_id)

        existing = self.get_session(session_id)
        if existing is not None and existing.initialized:
            if self._exec(f"test -d {shlex.quote(existing.sandbox_path)}", timeout_s=10).ok:
                logger.info(f"[{self.backend} sync] Reusing sandbox for session {session_id}")
                return SyncResult(
                    success=True,
                    file_count=existing.file_count,
                    total_size=existing.total_size,
                    sandbox_path=existing.sandbox_path,
                )
            logger.warning(f"[{self.backend} sync] Sandbox for session {session_id} vanished, recreating")
            self.clear_session(session_id)

        sandbox_path = f"{self.get_vm_home()}/{SANDBOX_SUBDIR}/{session_id}"
        mkdir = self._exec(f"mkdir -p {shlex.quote(sandbox_path)}", timeout_s=30)
        if not mkdir.ok:
            return SyncResult(success=False, error=f"Failed to create sandbox: {mkdir.stderr.strip()}")

        logger.info(f"[{self.backend} sync] Syncing {host_path} -> {sandbox_path}")
        rsync = self._exec(build_rsync_script(self._converter.to_vm(host_path), sandbox_path), timeout_s=RSYNC_TIMEOUT_S)
        if not rsync.ok:
            logger.error(f"[{self.backend} sync] Initial sync failed: {rsync.stderr.strip()[:300]}")
            return SyncResult(success=False, sandbox_path=sandbox_path, error=f"rsync failed: {rsync.stderr.strip()}")

        file_count, total_size = self._collect_stats(sandbox_path)
        session = SyncSession(
            session_id=session_id,
            host_path=host_path,
            sandbox_path=sandbox_path,
            last_sync=time.time(),
            file_count=file_count,
            total_size=total_size,
            initialized=True,
        )
        with self._lock:
            self._sessions[session_id] = session
        logger.info(f"[{self.backend} sync] Session {session_id}: {file_count} files, {format_size(total_size)}")
        return SyncResult(success=True, file_count=file_count, total_size=total_size, sandbox_path=sandbox_path)

    def sync_back(self, session_id: str) -> SyncResult:
        """Mirror the sandbox back onto the host workspace, propagating deletions."""
        session = self.get_session(session_id)
        if session is None:
            return SyncResult(success=False, error=f"Session not found: {session_id}")

        logger.info(f"[{self.backend} sync] Syncing {session.sandbox_path} -> {session.host_path}")
        rsync = self._exec(
            build_rsync_script(session.sandbox_path, self._converter.to_vm(session.host_path)),
            timeout_s=RSYNC_TIMEOUT_S,
        )
        if not rsync.ok:
            logger.error(f"[{self.backend} sync] Sync back failed: {rsync.stderr.strip()[:300]}")
            return SyncResult(success=False, sandbox_path=session.sandbox_path, error=f"rsync failed: {rsync.stderr.strip()}")

        session.file_count, session.total_size = self._collect_stats(session.sandbox_path)
        session.last_sync = time.time()
        return SyncResult(
            success=True,
            file_count=session.file_count,
            total_size=session.total_size,
            sandbox_path=session.sandbox_path,
        )

    def cleanup(self, session_id: str) -> SyncResult:
        """
        Sync back, remove the sandbox directory, then forget the session.

        If the sync back fails the directory is kept so no work is lost.
        """
        synced = self.sync_back(session_id)
        if not synced.success:
            logger.error(f"[{self.backend} sync] Keeping sandbox for {session_id}: {synced.error}")
            return synced

        session = self.get_session(session_id)
        assert session is not None
        removed = self._exec(f"rm -rf {shlex.quote(session.sandbox_path)}", timeout_s=COPY_TIMEOUT_S)
        if not removed.ok:
            return SyncResult(
                success=False,
                sandbox_path=session.sandbox_path,
                error=f"Failed to remove sandbox: {removed.stderr.strip()}",
            )

        self.clear_session(session_id)
        logger.info(f"[{self.backend} sync] Session {session_id} cleaned up")
        return synced

    def sync_and_cleanup(self, session_id: str) -> SyncResult:
        if not self.has_session(session_id):
            logger.debug(f"[{self.backend} sync] No session {session_id} to clean up")
            return SyncResult(success=True)
        return self.cleanup(session_id)

    def cleanup_all_sessions(self) -> dict[str, SyncResult]:
        with self._lock:
            session_ids = list(self._sessions)
        return {session_id: self.sync_and_cleanup(session_id) for session_id in session_ids}

    def sync_file_to_sandbox(self, host_file: str, session_id: str, relative_dest: str | None = None) -> bool:
        """Copy a single host file into the sandbox without touching anything else."""
        session = self.get_session(session_id)
        if session is None:
            logger.warning(f"[{self.backend} sync] Session not found: {session_id}")
            return False

        vm_source = self._converter.to_vm(host_file)
        relative = (relative_dest or posixpath.basename(vm_source)).replace("\\", "/").lstrip("/")
        if not relative or ".." in relative.split("/"):
            logger.warning(f"[{self.backend} sync] Rejected destination {relative_dest!r}")
            return False

        dest = f"{session.sandbox_path}/{relative}"
        script = f"mkdir -p {shlex.quote(posixpath.dirname(dest))} && cp {shlex.quote(vm_source)} {shlex.quote(dest)}"
        return self._exec(script, timeout_s=COPY_TIMEOUT_S).ok

    def _collect_stats(self, sandbox_path: str) -> tuple[int, int]:
        quoted = shlex.quote(sandbox_path)
        result = self._exec(f"find {quoted} -type f | wc -l; du -sb {quoted} | cut -f1", timeout_s=60)
        values = result.stdout.split()
        try:
            return int(values[0]), int(values[1])
        except (IndexError, ValueError):
            logger.warning(f"[{self.backend} sync] Could not read stats for {sandbox_path}")
            return 0, 0

    # ------------------------------------------------------------------ paths

    def is_path_in_sandbox(self, path: str, session_id: str) -> bool:
        sandbox = self.get_sandbox_path(session_id)
        if sandbox is None:
            return False
        normalized = posixpath.normpath(path.replace("\\", "/"))
        return normalized == sandbox or normalized.startswith(sandbox.rstrip("/") + "/")

    def host_to_sandbox_path(self, host_path: str, session_id: str) -> str | None:
        session = self.get_session(session_id)
        if session is None:
            return None
        root = self._converter.to_vm(session.host_path).rstrip("/")
        vm_path = self._converter.to_vm(host_path).rstrip("/")
        if vm_path == root:
            return session.sandbox_path
        if vm_path.startswith(root + "/"):
            return session.sandbox_path + vm_path[len(root) :]
        return None

    def sandbox_to_host_path(self, sandbox_path: str, session_id: str) -> str | None:
        session = self.get_session(session_id)
        if session is None or not self.is_path_in_sandbox(sandbox_path, session_id):
            return None
        relative = posixpath.normpath(sandbox_path)[len(session.sandbox_path) :]
        root = self._converter.to_vm(session.host_path).rstrip("/")
        return self._converter.to_host(root + relative)
