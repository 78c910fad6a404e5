"""Line-delimited JSON-RPC over a child process's stdio.

The connection owns the child process, writes requests from any thread and
dispatches responses and streamed event frames by id from a reader thread.
"""

from vmbridge.archs.transports.rpc.codec import LineCodec
from vmbridge.archs.transports.rpc.config import RpcConfig
from vmbridge.archs.transports.rpc.connection import RpcConnection
from vmbridge.archs.transports.rpc.errors import (
    RpcApplicationError,
    RpcProcessExitedError,
    RpcTimeoutError,
    RpcTransportError,
)

__all__ = [
    "LineCodec",
    "RpcConfig",
    "RpcConnection",
    "RpcTransportError",
    "RpcTimeoutError",
    "RpcProcessExitedError",
    "RpcApplicationError",
]
