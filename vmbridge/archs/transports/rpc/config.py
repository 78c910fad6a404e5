"""RPC transport configuration for vmbridge.

This module provides configuration for the JSON-RPC connection to the in-VM agent.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class RpcConfig:
    """Configuration for the JSON-RPC child-process connection.

    Attributes:
        encoding: Text encoding on the pipes (default: utf-8)
        delimiter: Message delimiter (default: "\\n")
        read_chunk_size: Bytes read from stdout per call (default: 65536)
        default_timeout_ms: Timeout applied when a call passes none (default: 60000)
        startup_timeout_ms: Overall readiness timeout (default: 30000)
        ready_initial_delay_ms: Delay before the first ping (default: 1000)
        ready_poll_interval_ms: Delay between pings (default: 500)
        ping_timeout_ms: Timeout of a single readiness ping (default: 2000)
        terminate_grace_s: Seconds to wait after terminate before kill (default: 3.0)
    """

    encoding: str = "utf-8"
    delimiter: str = "\n"
    read_chunk_size: int = 65536
    default_timeout_ms: int = 60000
    startup_timeout_ms: int = 30000
    ready_initial_delay_ms: int = 1000
    ready_poll_interval_ms: int = 500
    ping_timeout_ms: int = 2000
    terminate_grace_s: float = 3.0
