"""Errors raised by the JSON-RPC connection.

Transport failures (the agent died, a call timed out) are kept apart from
application errors reported by the agent in a response's ``error`` field.
"""

from __future__ import annotations

from typing import Any

from vmbridge.archs.sandbox.base_executor import SandboxError, SandboxTimeoutError


class RpcTransportError(SandboxError):
    """The connection to the agent failed; the bridge must be re-initialized."""

    pass


class RpcTimeoutError(RpcTransportError, SandboxTimeoutError):
    """No response arrived within the call's timeout."""

    def __init__(self, method: str, timeout_ms: int):
        super().__init__(f"Request timeout: {method} (after {timeout_ms}ms)")
        self.method = method
        self.timeout_ms = timeout_ms


class RpcProcessExitedError(RpcTransportError):
    """The agent process exited while requests were in flight."""

    def __init__(self, message: str = "Agent process exited", returncode: int | None = None):
        super().__init__(message if returncode is None else f"{message} (code {returncode})")
        self.returncode = returncode


class RpcApplicationError(SandboxError):
    """The agent answered with an error response."""

    def __init__(self, code: int, message: str, data: Any | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def __repr__(self) -> str:
        return f"RpcApplicationError(code={self.code}, message={self.message!r})"
