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
Sandbox agent running inside the VM.

Reads JSON-RPC requests (one JSON object per line) from stdin and writes
responses to stdout. Logs go to stderr. Each request is handled on a worker
thread, so responses can be written out of order; the host matches them by id.

This file runs on the VM's system ``python3`` and must only use the standard
library.
"""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import subprocess
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, TextIO

logger = logging.getLogger("sandbox_agent")

PARSE_ERROR = -32700
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
SERVER_ERROR = -32000
NOT_FOUND = -32001
ACCESS_DENIED = -32003

DEFAULT_COMMAND_TIMEOUT_MS = 60000
AGENT_TURN_TIMEOUT_S = 300
MAX_WORKERS = 8

DANGEROUS_PATTERNS = (
    re.compile(r"\brm\s+(?:-[\w-]+\s+)*(?:-\w*[rR]\w*|--recursive)\s+(?:-[\w-]+\s+)*/(?:\s|$|\*)"),
    re.compile(r"\bmkfs"),
    re.compile(r"\bdd\s+.*of=/dev"),
    re.compile(r">\s*/dev/(?!null\b)"),
    re.compile(r"\bchmod\s+(?:-[\w-]+\s+)*777\s+/(?:\s|$)"),
    re.compile(r":\(\)\s*\{\s*:\|:&\s*\};:"),  # fork bomb
)
_TRAVERSAL_RE = re.compile(r"(^|[\s/=\"'])\.\.(?=$|[\s/\"';|&])")


class AgentError(Exception):
    def __init__(self, code: int, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class SandboxAgent:
    """Executes commands and file operations confined to one workspace."""

    def __init__(self, out: TextIO = sys.stdout):
        self.workspace: str | None = None
        self.host_path: str | None = None
        self._out = out
        self._write_lock = threading.Lock()
        self._stop = threading.Event()
        self._methods: dict[str, Callable[[str, dict[str, Any]], Any]] = {
            "ping": self.ping,
            "setWorkspace": self.set_workspace,
            "executeCommand": self.execute_command,
            "readFile": self.read_file,
            "writeFile": self.write_file,
            "listDirectory": self.list_directory,
            "fileExists": self.file_exists,
            "deleteFile": self.delete_file,
            "createDirectory": self.create_directory,
            "copyFile": self.copy_file,
            "runAgentTurn": self.run_agent_turn,
            "shutdown": self.shutdown,
        }

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    # ---------------------------------------------------------------- wire

    def send(self, message: dict[str, Any]) -> None:
        line = json.dumps(message, ensure_ascii=False)
        with self._write_lock:
            self._out.write(line + "\n")
            self._out.flush()

    def emit_event(self, request_id: str, event: dict[str, Any]) -> None:
        self.send({"jsonrpc": "2.0", "id": request_id, "event": event})

    def handle_line(self, line: str) -> None:
        try:
            request = json.loads(line)
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON from host: {e}")
            return
        if not isinstance(request, dict) or not isinstance(request.get("id"), str):
            logger.error(f"Request without string id dropped: {line[:200]}")
            return

        request_id = request["id"]
        method = request.get("method")
        params = request.get("params") or {}
        try:
            handler = self._methods.get(method) if isinstance(method, str) else None
            if handler is None:
                raise AgentError(METHOD_NOT_FOUND, f"Method not found: {method}")
            if not isinstance(params, dict):
                raise AgentError(INVALID_PARAMS, "params must be an object")
            result = handler(request_id, params)
            self.send({"jsonrpc": "2.0", "id": request_id, "result": result})
        except AgentError as e:
            self.send({"jsonrpc": "2.0", "id": request_id, "error": {"code": e.code, "message": e.message}})
        except Exception as e:
            logger.error(f"{method} failed: {e}")
            self.send({"jsonrpc": "2.0", "id": request_id, "error": {"code": SERVER_ERROR, "message": str(e)}})

        if method == "shutdown":
            self._stop.set()

    # ---------------------------------------------------------------- paths

    def validate_path(self, path: Any) -> str:
        """Resolve ``path`` against the workspace and refuse anything outside it."""
        if self.workspace is None:
            raise AgentError(ACCESS_DENIED, "Workspace is not set")
        if not isinstance(path, str) or not path:
            raise AgentError(INVALID_PARAMS, "path is required")
        candidate = path if os.path.isabs(path) else os.path.join(self.workspace, path)
        resolved = os.path.realpath(candidate)
        root = os.path.realpath(self.workspace)
        if os.path.commonpath([resolved, root]) != root:
            raise AgentError(ACCESS_DENIED, f"Path is outside the workspace: {path}")
        return resolved

    # ---------------------------------------------------------------- methods

    def ping(self, request_id: str, params: dict[str, Any]) -> dict[str, Any]:
        return {"pong": True, "timestamp": int(time.time() * 1000)}

    def set_workspace(self, request_id: str, params: dict[str, Any]) -> dict[str, Any]:
        path = params.get("path")
        if not isinstance(path, str) or not os.path.isabs(path):
            raise AgentError(INVALID_PARAMS, "setWorkspace requires an absolute path")
        os.makedirs(path, exist_ok=True)
        self.workspace = os.path.realpath(path)
        self.host_path = params.get("hostPath")
        logger.info(f"Workspace set to {self.workspace} (host: {self.host_path})")
        return {"success": True, "path": self.workspace}

    def execute_command(self, request_id: str, params: dict[str, Any]) -> dict[str, Any]:
        command = params.get("command")
        if not isinstance(command, str) or not command.strip():
            raise AgentError(INVALID_PARAMS, "command is required")
        for pattern in DANGEROUS_PATTERNS:
            if pattern.search(command):
                raise AgentError(ACCESS_DENIED, f"Dangerous command blocked: {pattern.pattern}")
        if _TRAVERSAL_RE.search(command):
            raise AgentError(ACCESS_DENIED, "Path traversal (..) is not allowed")

        cwd = self.validate_path(params["cwd"]) if params.get("cwd") else self.validate_path(self.workspace or "")
        env = dict(os.environ)
        env.update({str(k): str(v) for k, v in (params.get("env") or {}).items()})
        env["WORKSPACE"] = self.workspace or ""
        timeout_ms = int(params.get("timeout") or DEFAULT_COMMAND_TIMEOUT_MS)

        logger.info(f"Executing in {cwd}: {command[:200]}")
        process = subprocess.Popen(
            ["/bin/bash", "-c", command],
            cwd=cwd,
            env=env,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
        )
        try:
            stdout, stderr = process.communicate(timeout=timeout_ms / 1000)
            code = process.returncode
        except subprocess.TimeoutExpired:
            process.kill()
            stdout, stderr = process.communicate()
            stderr = (stderr or "") + f"\nCommand timed out after {timeout_ms}ms"
            code = 124
        return {"code": code, "stdout": stdout or "", "stderr": stderr or ""}

    def read_file(self, request_id: str, params: dict[str, Any]) -> dict[str, Any]:
        path = self.validate_path(params.get("path"))
        if not os.path.isfile(path):
            raise AgentError(NOT_FOUND, f"File not found: {params.get('path')}")
        with open(path, encoding="utf-8", errors="replace") as f:
            return {"content": f.read()}

    def write_file(self, request_id: str, params: dict[str, Any]) -> dict[str, Any]:
        path = self.validate_path(params.get("path"))
        content = params.get("content")
        if not isinstance(content, str):
            raise AgentError(INVALID_PARAMS, "content must be a string")
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)
        return {"success": True}

    def list_directory(self, request_id: str, params: dict[str, Any]) -> dict[str, Any]:
        path = self.validate_path(params.get("path"))
        if not os.path.isdir(path):
            raise AgentError(NOT_FOUND, f"Directory not found: {params.get('path')}")
        entries: list[dict[str, Any]] = []
        with os.scandir(path) as it:
            for entry in sorted(it, key=lambda e: e.name):
                is_dir = entry.is_dir()
                item: dict[str, Any] = {"name": entry.name, "isDirectory": is_dir}
                if not is_dir:
                    try:
                        item["size"] = entry.stat().st_size
                    except OSError:
                        item["size"] = None
                entries.append(item)
        return {"entries": entries}

    def file_exists(self, request_id: str, params: dict[str, Any]) -> dict[str, Any]:
        try:
            path = self.validate_path(params.get("path"))
        except AgentError:
            return {"exists": False}
        return {"exists": os.path.exists(path)}

    def delete_file(self, request_id: str, params: dict[str, Any]) -> dict[str, Any]:
        path = self.validate_path(params.get("path"))
        if path == os.path.realpath(self.workspace or ""):
            raise AgentError(ACCESS_DENIED, "Refusing to delete the workspace root")
        if os.path.isdir(path) and not os.path.islink(path):
            shutil.rmtree(path)
        elif os.path.lexists(path):
            os.remove(path)
        else:
            raise AgentError(NOT_FOUND, f"File not found: {params.get('path')}")
        return {"success": True}

    def create_directory(self, request_id: str, params: dict[str, Any]) -> dict[str, Any]:
        path = self.validate_path(params.get("path"))
        os.makedirs(path, exist_ok=True)
        return {"success": True}

    def copy_file(self, request_id: str, params: dict[str, Any]) -> dict[str, Any]:
        src = self.validate_path(params.get("src"))
        dest = self.validate_path(params.get("dest"))
        if not os.path.isfile(src):
            raise AgentError(NOT_FOUND, f"File not found: {params.get('src')}")
        os.makedirs(os.path.dirname(dest), exist_ok=True)
        shutil.copy2(src, dest)
        return {"success": True}

    def run_agent_turn(self, request_id: str, params: dict[str, Any]) -> dict[str, Any]:
        """Run the agent CLI once, streaming each stdout line as an event frame."""
        prompt = params.get("prompt")
        if not isinstance(prompt, str) or not prompt:
            raise AgentError(INVALID_PARAMS, "prompt is required")
        cwd = self.validate_path(params["cwd"]) if params.get("cwd") else self.validate_path(self.workspace or "")

        args = [os.environ.get("VMBRIDGE_AGENT_CLI", "claude"), "--print"]
        if params.get("model"):
            args += ["--model", str(params["model"])]
        if params.get("maxTurns"):
            args += ["--max-turns", str(params["maxTurns"])]
        if params.get("systemPrompt"):
            args += ["--system-prompt", str(params["systemPrompt"])]
        args.append(prompt)

        env = dict(os.environ)
        env.update({str(k): str(v) for k, v in (params.get("env") or {}).items()})

        logger.info(f"Running agent turn in {cwd}")
        try:
            process = subprocess.Popen(
                args,
                cwd=cwd,
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
            )
        except OSError as e:
            raise AgentError(SERVER_ERROR, f"Failed to start agent CLI: {e}") from e

        stderr_chunks: list[str] = []
        drain = threading.Thread(target=lambda: stderr_chunks.append(process.stderr.read() if process.stderr else ""))
        drain.start()
        timer = threading.Timer(AGENT_TURN_TIMEOUT_S, process.kill)
        timer.start()
        count = 0
        try:
            assert process.stdout is not None
            for raw in process.stdout:
                line = raw.rstrip("\n")
                if not line.strip():
                    continue
                try:
                    message = json.loads(line)
                    if not isinstance(message, dict):
                        message = {"type": "text", "content": line}
                except json.JSONDecodeError:
                    message = {"type": "text", "content": line}
                self.emit_event(request_id, message)
                count += 1
            code = process.wait()
        finally:
            timer.cancel()
            drain.join()

        if code != 0:
            raise AgentError(SERVER_ERROR, f"Agent CLI exited with code {code}: {''.join(stderr_chunks).strip()}")
        return {"exitCode": code, "messageCount": count}

    def shutdown(self, request_id: str, params: dict[str, Any]) -> dict[str, Any]:
        logger.info("Shutdown requested")
        return {"success": True}


def _method_of(line: str) -> str | None:
    try:
        request = json.loads(line)
    except json.JSONDecodeError:
        return None
    return request.get("method") if isinstance(request, dict) else None


def main() -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    agent = SandboxAgent()
    logger.info("Sandbox agent started")

    with ThreadPoolExecutor(max_workers=MAX_WORKERS) as pool:
        for line in sys.stdin:
            if agent.stopped:
                break
            if not line.strip():
                continue
            if _method_of(line) == "shutdown":
                agent.handle_line(line)
                break
            pool.submit(agent.handle_line, line)

    logger.info("Sandbox agent stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
