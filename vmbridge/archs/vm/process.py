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

"""Bounded execution of external CLIs (wsl, limactl, rsync, ...).

Nothing here raises for a missing binary or an expired timeout; both are
reported in the returned ``ProcessResult`` so probes can degrade gracefully.
"""

import logging
import subprocess
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass

logger = logging.getLogger(__name__)

COMMAND_NOT_FOUND = 127
TIMED_OUT = 124


@dataclass
class ProcessResult:
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


def _decode_utf8(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def run_process(
    args: Sequence[str],
    *,
    timeout_s: float,
    decoder: Callable[[bytes], str] = _decode_utf8,
    input_text: str | None = None,
) -> ProcessResult:
    """Run a command to completion and capture its output.

    Args:
        args: Command and arguments (no shell)
        timeout_s: Upper bound in seconds; the process is killed when it expires
        decoder: Converts raw stdout/stderr bytes to text
        input_text: Optional text written to stdin

    Returns:
        ProcessResult; ``exit_code`` is 127 when the binary is missing and 124 on timeout
    """
    start = time.time()
    try:
        process = subprocess.Popen(
            list(args),
            stdin=subprocess.PIPE if input_text is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except OSError as e:
        logger.debug(f"Cannot run {args[0]}: {e}")
        return ProcessResult(exit_code=COMMAND_NOT_FOUND, stderr=str(e))

    try:
        stdout, stderr = process.communicate(
            input=input_text.encode("utf-8") if input_text is not None else None,
            timeout=timeout_s,
        )
    except subprocess.TimeoutExpired:
        process.kill()
        stdout, stderr = process.communicate()
        duration_ms = int((time.time() - start) * 1000)
        logger.warning(f"Command timed out after {timeout_s}s: {' '.join(args)[:200]}")
        return ProcessResult(
            exit_code=TIMED_OUT,
            stdout=decoder(stdout or b""),
            stderr=decoder(stderr or b""),
            timed_out=True,
            duration_ms=duration_ms,
        )

    return ProcessResult(
        exit_code=process.returncode,
        stdout=decoder(stdout or b""),
        stderr=decoder(stderr or b""),
        duration_ms=int((time.time() - start) * 1000),
    )


def stream_process(args: Sequence[str], *, timeout_s: float, log_prefix: str) -> bool:
    """Run a long command, forwarding its output to the log line by line.

    Returns:
        True if the process exited with code 0 before the timeout
    """
    try:
        process = subprocess.Popen(
            list(args),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
        )
    except OSError as e:
        logger.error(f"{log_prefix} failed to start: {e}")
        return False

    expired = threading.Event()

    def _kill() -> None:
        expired.set()
        process.kill()

    timer = threading.Timer(timeout_s, _kill)
    timer.start()
    try:
        assert process.stdout is not None
        for line in process.stdout:
            line = line.rstrip()
            if line:
                logger.info(f"{log_prefix} {line}")
        returncode = process.wait()
    finally:
        timer.cancel()

    if expired.is_set():
        logger.error(f"{log_prefix} timed out after {timeout_s}s")
        return False
    if returncode != 0:
        logger.error(f"{log_prefix} exited with code {returncode}")
    return returncode == 0
