from .archs.adapter import AdapterConfig, NotificationHub, SandboxAdapter, SandboxBootstrap
from .archs.sandbox import CommandResult, SandboxConfig, SandboxError

__all__ = [
    "SandboxAdapter",
    "SandboxBootstrap",
    "AdapterConfig",
    "SandboxConfig",
    "NotificationHub",
    "CommandResult",
    "SandboxError",
]
