"""JSON-RPC connection to a long-lived child process over its stdio.

One ``RpcConnection`` owns exactly one child process. Callers on any thread
issue requests; a single reader thread decodes stdout and settles the matching
``PendingRequest`` by id, so responses may arrive in any order.
"""

from __future__ import annotations

import logging
import queue
import subprocess
import threading
import time
import uuid
from collections.abc import Callable, Iterator, Mapping
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import IO, Any

from vmbridge.archs.sandbox.base_executor import SandboxNotReadyError
from vmbridge.archs.transports.rpc.codec import LineCodec
from vmbridge.archs.transports.rpc.config import RpcConfig
from vmbridge.archs.transports.rpc.errors import (
    RpcApplicationError,
    RpcProcessExitedError,
    RpcTimeoutError,
    RpcTransportError,
)
from vmbridge.archs.transports.rpc.models import (
    JsonRpcErrorResponse,
    JsonRpcEventFrame,
    JsonRpcIncoming,
    JsonRpcRequest,
)

logger = logging.getLogger(__name__)

_STREAM_END = object()


@dataclass
class PendingRequest:
    """One in-flight call, removed from the table exactly once."""

    id: str
    method: str
    future: Future[Any] = field(default_factory=Future)
    events: queue.Queue[Any] | None = None


class RpcConnection:
    """
    Request/response RPC over a child process's stdin/stdout.

    Example:
        >>> conn = RpcConnection(["python3", "sandbox_agent.py"])
        >>> conn.start()
        >>> conn.wait_until_ready()
        >>> conn.request("ping")
        {'pong': True, 'timestamp': ...}
        >>> conn.close()
    """

    def __init__(
        self,
        command: list[str],
        *,
        config: RpcConfig | None = None,
        env: Mapping[str, str] | None = None,
        name: str = "agent",
        on_exit: Callable[[int | None], None] | None = None,
    ):
        self._command = list(command)
        self._config = config or RpcConfig()
        self._env = dict(env) if env is not None else None
        self._name = name
        self._on_exit = on_exit

        self._codec = LineCodec(encoding=self._config.encoding, delimiter=self._config.delimiter)
        self._process: subprocess.Popen[bytes] | None = None
        self._pending: dict[str, PendingRequest] = {}
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._exited = False
        self._reader: threading.Thread | None = None
        self._stderr_reader: threading.Thread | None = None

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def is_running(self) -> bool:
        return self._process is not None and not self._exited and self._process.poll() is None

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def start(self) -> None:
        """Spawn the child process and its reader threads.

        Raises:
            RpcTransportError: If the process cannot be spawned or was already started
        """
        if self._process is not None:
            raise RpcTransportError(f"{self._name} connection already started")

        logger.info(f"Starting {self._name}: {' '.join(self._command)}")
        try:
            self._process = subprocess.Popen(
                self._command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=self._env,
            )
        except OSError as e:
            raise RpcTransportError(f"Failed to spawn {self._name}: {e}") from e

        assert self._process.stdout is not None and self._process.stderr is not None
        self._reader = threading.Thread(
            target=self._read_loop,
            args=(self._process.stdout,),
            name=f"{self._name}-rpc-reader",
            daemon=True,
        )
        self._stderr_reader = threading.Thread(
            target=self._drain_stderr,
            args=(self._process.stderr,),
            name=f"{self._name}-rpc-stderr",
            daemon=True,
        )
        self._reader.start()
        self._stderr_reader.start()

    def wait_until_ready(self) -> None:
        """Poll ``ping`` until the agent answers or the startup timeout expires.

        Raises:
            SandboxNotReadyError: If no ping succeeds before the startup timeout
            RpcProcessExitedError: If the agent exits while starting
        """
        cfg = self._config
        deadline = time.monotonic() + cfg.startup_timeout_ms / 1000
        time.sleep(cfg.ready_initial_delay_ms / 1000)

        while True:
            try:
                self.request("ping", {}, timeout_ms=cfg.ping_timeout_ms)
                logger.info(f"{self._name} is ready")
                return
            except (RpcTimeoutError, RpcApplicationError) as e:
                logger.debug(f"{self._name} not ready yet: {e}")

            if time.monotonic() + cfg.ready_poll_interval_ms / 1000 > deadline:
                raise SandboxNotReadyError(f"{self._name} startup timeout after {cfg.startup_timeout_ms}ms")
            time.sleep(cfg.ready_poll_interval_ms / 1000)

    def request(self, method: str, params: dict[str, Any] | None = None, timeout_ms: int | None = None) -> Any:
        """Send one request and block for its response.

        Args:
            method: RPC method name
            params: Method parameters
            timeout_ms: Call timeout, defaults to ``RpcConfig.default_timeout_ms``

        Returns:
            The ``result`` field of the response

        Raises:
            RpcTimeoutError: If no response arrives in time
            RpcProcessExitedError: If the agent is gone or exits mid-call
            RpcApplicationError: If the agent answers with an error
        """
        timeout_ms = timeout_ms or self._config.default_timeout_ms
        pending = self._register(method, streaming=False)
        try:
            self._send(pending, params)
            return pending.future.result(timeout=timeout_ms / 1000)
        except TimeoutError:
            logger.warning(f"{self._name} request {method} ({pending.id}) timed out after {timeout_ms}ms")
            raise RpcTimeoutError(method, timeout_ms) from None
        finally:
            self._discard(pending.id)

    def stream(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        timeout_ms: int | None = None,
    ) -> Iterator[dict[str, Any]]:
        """Send one request and yield its event frames as they arrive.

        The timeout bounds the wait for each frame, not the whole call. The
        final response's ``result`` becomes the generator's return value.
        """
        timeout_ms = timeout_ms or self._config.default_timeout_ms
        pending = self._register(method, streaming=True)
        assert pending.events is not None
        try:
            self._send(pending, params)
            while True:
                try:
                    item = pending.events.get(timeout=timeout_ms / 1000)
                except queue.Empty:
                    logger.warning(f"{self._name} stream {method} ({pending.id}) stalled for {timeout_ms}ms")
                    raise RpcTimeoutError(method, timeout_ms) from None
                if item is _STREAM_END:
                    break
                yield item
            return pending.future.result()
        finally:
            self._discard(pending.id)

    def close(self) -> None:
        """Stop the child process and fail everything still in flight."""
        process = self._process
        if process is None:
            return

        if process.stdin is not None:
            try:
                process.stdin.close()
            except OSError:
                pass

        if process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=self._config.terminate_grace_s)
            except subprocess.TimeoutExpired:
                logger.warning(f"{self._name} did not terminate, killing pid={process.pid}")
                process.kill()
                process.wait()

        if self._reader is not None and self._reader is not threading.current_thread():
            self._reader.join(timeout=self._config.terminate_grace_s)
        self._handle_exit(process.returncode)

    def _register(self, method: str, *, streaming: bool) -> PendingRequest:
        pending = PendingRequest(
            id=uuid.uuid4().hex,
            method=method,
            events=queue.Queue() if streaming else None,
        )
        with self._lock:
            if self._process is None or self._exited:
                raise RpcProcessExitedError(f"{self._name} is not running")
            self._pending[pending.id] = pending
        return pending

    def _discard(self, request_id: str) -> None:
        with self._lock:
            self._pending.pop(request_id, None)

    def _send(self, pending: PendingRequest, params: dict[str, Any] | None) -> None:
        assert self._process is not None and self._process.stdin is not None
        request = JsonRpcRequest(id=pending.id, method=pending.method, params=params or {})
        data = self._codec.encode(request)
        with self._write_lock:
            try:
                self._process.stdin.write(data)
                self._process.stdin.flush()
            except (OSError, ValueError) as e:
                raise RpcProcessExitedError(f"Failed to write to {self._name}: {e}") from e

    def _read_loop(self, stdout: IO[bytes]) -> None:
        read = getattr(stdout, "read1", stdout.read)
        try:
            while True:
                chunk = read(self._config.read_chunk_size)
                if not chunk:
                    break
                for message in self._codec.feed(chunk):
                    self._dispatch(message)
        except (OSError, ValueError) as e:
            logger.debug(f"{self._name} stdout closed: {e}")

        returncode: int | None = None
        if self._process is not None:
            try:
                returncode = self._process.wait(timeout=self._config.terminate_grace_s)
            except subprocess.TimeoutExpired:
                logger.warning(f"{self._name} closed stdout but is still running")
        self._handle_exit(returncode)

    def _drain_stderr(self, stderr: IO[bytes]) -> None:
        try:
            for raw in iter(stderr.readline, b""):
                line = raw.decode(self._config.encoding, errors="replace").rstrip()
                if line:
                    logger.debug(f"[{self._name}] {line}")
        except (OSError, ValueError):
            pass

    def _dispatch(self, message: JsonRpcIncoming) -> None:
        with self._lock:
            pending = self._pending.get(message.id)
            if pending is None:
                logger.debug(f"Ignoring {self._name} message for unknown request id {message.id}")
                return
            if isinstance(message, JsonRpcEventFrame):
                if pending.events is None:
                    logger.warning(f"Unexpected event frame for non-streaming request {pending.method}")
                else:
                    pending.events.put(message.event)
                return
            del self._pending[message.id]

        if isinstance(message, JsonRpcErrorResponse):
            error = message.error
            pending.future.set_exception(RpcApplicationError(error.code, error.message, error.data))
        else:
            pending.future.set_result(message.result)
        if pending.events is not None:
            pending.events.put(_STREAM_END)

    def _handle_exit(self, returncode: int | None) -> None:
        with self._lock:
            if self._exited:
                return
            self._exited = True
            orphaned = list(self._pending.values())
            self._pending.clear()

        logger.info(f"{self._name} process exited: code={returncode}, failing {len(orphaned)} pending request(s)")
        for pending in orphaned:
            pending.future.set_exception(RpcProcessExitedError(f"{self._name} process exited", returncode))
            if pending.events is not None:
                pending.events.put(_STREAM_END)

        if self._on_exit is not None:
            try:
                self._on_exit(returncode)
            except Exception as e:
                logger.error(f"{self._name} exit callback failed: {e}")
