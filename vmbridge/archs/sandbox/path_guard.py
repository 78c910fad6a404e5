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
Path and command validation for sandboxed sessions.

Every path and shell command headed for the VM is checked here first. A denial
is returned as a ``ValidationResult`` with a human readable reason, never
raised, so the request pipeline can explain the refusal to the user.
"""

import logging
import re
import shlex
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal, Protocol

if TYPE_CHECKING:
    from .path_resolver import PathResolver

logger = logging.getLogger(__name__)

GuardFlavor = Literal["linux", "darwin"]


@dataclass
class ValidationResult:
    allowed: bool
    reason: str | None = None
    sanitized_command: str | None = None
    sanitized_path: str | None = None


class GuardedSession(Protocol):
    sandbox_path: str
    initialized: bool


class SessionRegistry(Protocol):
    def get_session(self, session_id: str) -> GuardedSession | None: ...


FORBIDDEN_PATTERNS_LINUX: tuple[re.Pattern[str], ...] = (
    re.compile(r"^/mnt/"),  # host filesystem mounts
    re.compile(r"^/home/(?!.*/\.claude/sandbox)"),
    re.compile(r"^/root/(?!\.claude/sandbox|\.nvm)"),
    re.compile(r"^/etc/"),
    re.compile(r"^/var/"),
    re.compile(r"^/usr/"),
    re.compile(r"^/bin/"),
    re.compile(r"^/sbin/"),
    re.compile(r"^/lib"),
    re.compile(r"^/opt/"),
    re.compile(r"^/tmp/"),
    re.compile(r"^/proc/"),
    re.compile(r"^/sys/"),
    re.compile(r"^/dev/(?!null$)"),
)

FORBIDDEN_PATTERNS_DARWIN: tuple[re.Pattern[str], ...] = (
    re.compile(r"^/System/"),
    re.compile(r"^/Library/"),
    re.compile(r"^/private/"),
    re.compile(r"^/var/(?!folders)"),
    re.compile(r"^/usr/"),
    re.compile(r"^/bin/"),
    re.compile(r"^/sbin/"),
    re.compile(r"^/etc/"),
    re.compile(r"^/opt/"),
    re.compile(r"^/tmp/"),
    re.compile(r"^/dev/(?!null$)"),
    re.compile(r"^/Volumes/(?!Macintosh HD/Users)"),
    re.compile(r"^/Applications/"),
    re.compile(r"^/cores/"),
)

DANGEROUS_COMMAND_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\brm\s+(?:-[\w-]+\s+)*(?:-\w*[rR]\w*|--recursive)\s+(?:-[\w-]+\s+)*/"),
    re.compile(r"\bchmod\s+(?:-[\w-]+\s+)*\S+\s+/"),
    re.compile(r"\bchown\s+.*\s/"),
    re.compile(r"\bdd\s+.*of=/dev"),
    re.compile(r"\bmkfs"),
    re.compile(r"\bsudo\s+.*\brm\b"),
    re.compile(r"\b(?:curl|wget)\b[^|]*\|\s*(?:sudo\s+)?(?:ba|z|da)?sh\b"),
    re.compile(r">\s*/etc/"),
    re.compile(r">\s*/dev/(?!null\b)"),
)

ALLOWED_PATH_PREFIXES: tuple[str, ...] = ("/root/.nvm", "/dev/null")

_HOST_MOUNT_RE = re.compile(r"/mnt/[a-z]", re.IGNORECASE)
_TRAVERSAL_RE = re.compile(r"(^|[\s/=\"'])\.\.(?=$|[\s/\"';|&])")
_ABS_PATH_TOKEN_RE = re.compile(r"(?<![\w.~$-])(/[^\s;|&\"'<>()`]*)")
_DRIVE_FRAGMENT_RE = re.compile(r"([A-Za-z]):[\\/]([^\s;|&\"'<>]*)")

_SANDBOX_SEGMENT = "/.claude/sandbox/"

# Stands in for the session's own sandbox path while patterns are matched.
_SANDBOX_PLACEHOLDER = "SANDBOX_ROOT"


def _is_under(path: str, root: str) -> bool:
    root = root.rstrip("/")
    return path == root or path.startswith(root + "/")


def _has_traversal(path: str) -> bool:
    return ".." in path.split("/")


def _vm_home(sandbox_path: str) -> str | None:
    """Home of the VM user owning ``<home>/.claude/sandbox/<id>``."""
    index = sandbox_path.find(_SANDBOX_SEGMENT)
    return sandbox_path[:index] if index > 0 else None


class PathGuard:
    """
    Validate paths and shell commands against a session's sandbox.

    Args:
        sessions: Registry that knows each session's sandbox path (the sync engine)
        resolver: Optional resolver whose registered mounts are also allowed
        flavor: Which forbidden-pattern list applies
    """

    def __init__(
        self,
        sessions: SessionRegistry,
        *,
        resolver: "PathResolver | None" = None,
        flavor: GuardFlavor = "linux",
    ):
        self._sessions = sessions
        self._resolver = resolver
        self._flavor: GuardFlavor = flavor

    @property
    def forbidden_patterns(self) -> tuple[re.Pattern[str], ...]:
        return FORBIDDEN_PATTERNS_DARWIN if self._flavor == "darwin" else FORBIDDEN_PATTERNS_LINUX

    def _match_forbidden(self, path: str) -> re.Pattern[str] | None:
        for pattern in self.forbidden_patterns:
            if pattern.search(path):
                return pattern
        return None

    def _is_runtime_path(self, path: str, session: GuardedSession | None) -> bool:
        """Node runtime locations of the VM user: ``/root/.nvm``, ``/dev/null`` and ``<vm home>/.nvm``."""
        if any(_is_under(path, prefix) for prefix in ALLOWED_PATH_PREFIXES):
            return True
        home = _vm_home(session.sandbox_path) if session is not None else None
        return home is not None and _is_under(path, f"{home}/.nvm")

    def _is_allow_listed(self, path: str, session: GuardedSession | None) -> bool:
        # Only consulted once the forbidden table has not matched.
        if self._is_runtime_path(path, session):
            return True
        return "/node_modules/" in path and _SANDBOX_SEGMENT not in path

    def _is_mounted(self, path: str, session_id: str) -> bool:
        if self._resolver is None:
            return False
        return any(_is_under(path, mount.real.replace("\\", "/")) for mount in self._resolver.get_mounts(session_id))

    def is_path_allowed(self, path: str, session_id: str) -> ValidationResult:
        """Check if a path is allowed for the given session."""
        session = self._sessions.get_session(session_id)
        if session is None:
            return ValidationResult(allowed=False, reason="Session not found")

        normalized = path.replace("\\", "/")
        if _has_traversal(normalized):
            logger.warning(f"Path traversal attempt blocked: {path}")
            return ValidationResult(allowed=False, reason=f"Path traversal is not allowed: {path}")

        if _is_under(normalized, session.sandbox_path):
            return ValidationResult(allowed=True, sanitized_path=normalized)
        if self._is_runtime_path(normalized, session) or self._is_mounted(normalized, session_id):
            return ValidationResult(allowed=True, sanitized_path=normalized)

        pattern = self._match_forbidden(normalized)
        if pattern is not None:
            return ValidationResult(
                allowed=False,
                reason=f"Access denied: {normalized} matches forbidden pattern {pattern.pattern}",
            )
        if self._is_allow_listed(normalized, session):
            return ValidationResult(allowed=True, sanitized_path=normalized)
        return ValidationResult(
            allowed=False,
            reason=f"Access denied: {normalized} is outside sandbox {session.sandbox_path}",
        )

    def validate_command(self, command: str, session_id: str) -> ValidationResult:
        """Validate a shell command and scope it to the session's sandbox.

        Returns:
            ValidationResult whose ``sanitized_command`` first changes into the
            sandbox directory when the command is accepted.
        """
        session = self._sessions.get_session(session_id)
        scoped = command
        if session is not None and session.sandbox_path:
            own_root = re.compile(re.escape(session.sandbox_path.rstrip("/")) + r"(?=$|[/\s;|&\"'<>)])")
            scoped = own_root.sub(_SANDBOX_PLACEHOLDER, command)

        for pattern in DANGEROUS_COMMAND_PATTERNS:
            if pattern.search(scoped):
                logger.error(f"Blocked dangerous command: {command[:100]}")
                return ValidationResult(allowed=False, reason=f"Dangerous command pattern detected: {pattern.pattern}")

        if _HOST_MOUNT_RE.search(scoped):
            logger.error(f"Blocked host mount access in command: {command[:100]}")
            return ValidationResult(allowed=False, reason="Direct /mnt/ access is not allowed in sandbox mode")

        if _TRAVERSAL_RE.search(scoped):
            return ValidationResult(allowed=False, reason="Path traversal (..) is not allowed in sandbox mode")

        for token in _ABS_PATH_TOKEN_RE.findall(scoped):
            if self._is_runtime_path(token, session) or self._is_mounted(token, session_id):
                continue
            pattern = self._match_forbidden(token)
            if pattern is not None:
                logger.error(f"Blocked forbidden path {token} in command: {command[:100]}")
                return ValidationResult(
                    allowed=False,
                    reason=f"Access denied: {token} matches forbidden pattern {pattern.pattern}",
                )

        if session is None:
            return ValidationResult(allowed=False, reason="Session not found")

        if _DRIVE_FRAGMENT_RE.search(command):
            logger.info("Windows path detected in command, needs conversion")

        return ValidationResult(
            allowed=True,
            sanitized_command=f"cd {shlex.quote(session.sandbox_path)} && {command}",
        )

    def convert_path_in_command(self, command: str, session_id: str, host_workspace: str) -> str:
        """Rewrite drive-letter paths under the host workspace into sandbox paths.

        Fragments outside the workspace are left untouched; the command and
        path checks reject them later.
        """
        session = self._sessions.get_session(session_id)
        if session is None:
            return command

        workspace = host_workspace.replace("\\", "/").rstrip("/").lower()

        def _replace(match: re.Match[str]) -> str:
            drive, rest = match.groups()
            rest = rest.replace("\\", "/")
            full = f"{drive}:/{rest}"
            lowered = full.lower()
            if lowered == workspace or lowered.startswith(workspace + "/"):
                return session.sandbox_path + full[len(workspace) :]
            logger.info(f"Path outside workspace left unconverted: {match.group(0)}")
            return match.group(0)

        return _DRIVE_FRAGMENT_RE.sub(_replace, command)

    def get_sandbox_cwd(self, session_id: str) -> str | None:
        session = self._sessions.get_session(session_id)
        return session.sandbox_path if session else None

    def is_sandbox_active(self, session_id: str) -> bool:
        session = self._sessions.get_session(session_id)
        return session is not None and session.initialized
