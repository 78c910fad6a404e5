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

"""Tests for the in-VM sandbox agent, driven in-process and as a subprocess."""

import io
import json
import os
import subprocess
import sys
from pathlib import Path

import pytest

from tests.fakes import write_fake_agent_cli
from vmbridge.archs.vm.agent.sandbox_agent import (
    ACCESS_DENIED,
    INVALID_PARAMS,
    METHOD_NOT_FOUND,
    NOT_FOUND,
    SERVER_ERROR,
    SandboxAgent,
)
from vmbridge.archs.vm.vm_bridge import AGENT_SCRIPT_PATH


class AgentHarness:
    def __init__(self):
        self.out = io.StringIO()
        self.agent = SandboxAgent(out=self.out)
        self._next_id = 0

    def frames(self, method, params=None):
        """Handle one request and return every frame written for it."""
        self._next_id += 1
        self.out.seek(0)
        self.out.truncate()
        request = {"jsonrpc": "2.0", "id": f"req-{self._next_id}", "method": method, "params": params or {}}
        self.agent.handle_line(json.dumps(request))
        frames = [json.loads(line) for line in self.out.getvalue().splitlines()]
        assert all(frame["id"] == f"req-{self._next_id}" for frame in frames)
        return frames

    def call(self, method, params=None):
        *_, final = self.frames(method, params)
        return final


@pytest.fixture
def harness(workspace):
    harness = AgentHarness()
    response = harness.call("setWorkspace", {"path": str(workspace), "hostPath": "C:\\proj"})
    assert response["result"]["success"]
    return harness


def _error_code(response):
    return response["error"]["code"]


class TestProtocol:
    def test_ping(self):
        response = AgentHarness().call("ping")
        assert response["jsonrpc"] == "2.0"
        assert response["result"]["pong"] is True
        assert isinstance(response["result"]["timestamp"], int)

    def test_unknown_method(self):
        assert _error_code(AgentHarness().call("formatDisk")) == METHOD_NOT_FOUND

    def test_params_must_be_object(self):
        harness = AgentHarness()
        harness.agent.handle_line(json.dumps({"jsonrpc": "2.0", "id": "x", "method": "ping", "params": [1]}))
        assert _error_code(json.loads(harness.out.getvalue())) == INVALID_PARAMS

    @pytest.mark.parametrize("line", ["not json", "[1, 2]", '{"method": "ping"}', '{"id": 7, "method": "ping"}'])
    def test_unanswerable_lines_produce_no_output(self, line):
        harness = AgentHarness()
        harness.agent.handle_line(line)
        assert harness.out.getvalue() == ""

    def test_shutdown_stops_agent(self):
        harness = AgentHarness()
        assert harness.call("shutdown")["result"] == {"success": True}
        assert harness.agent.stopped

    def test_operations_require_workspace(self):
        assert _error_code(AgentHarness().call("readFile", {"path": "/tmp/x"})) == ACCESS_DENIED


class TestWorkspace:
    def test_set_workspace_creates_directory(self, temp_dir):
        target = os.path.join(temp_dir, "fresh", "ws")
        harness = AgentHarness()
        response = harness.call("setWorkspace", {"path": target})
        assert response["result"]["path"] == os.path.realpath(target)
        assert os.path.isdir(target)

    def test_relative_workspace_rejected(self):
        assert _error_code(AgentHarness().call("setWorkspace", {"path": "relative/dir"})) == INVALID_PARAMS

    def test_host_path_remembered(self, harness):
        assert harness.agent.host_path == "C:\\proj"


class TestExecuteCommand:
    def test_runs_in_workspace(self, harness, workspace):
        result = harness.call("executeCommand", {"command": 'pwd; echo "$WORKSPACE"'})["result"]
        assert result["code"] == 0
        assert result["stdout"].split() == [os.path.realpath(workspace)] * 2

    def test_env_and_cwd(self, harness, workspace):
        result = harness.call("executeCommand", {"command": 'echo "$GREETING"; pwd', "cwd": "src", "env": {"GREETING": "hi"}})["result"]
        assert result["stdout"].split() == ["hi", os.path.realpath(workspace / "src")]

    def test_nonzero_exit_is_a_result(self, harness):
        result = harness.call("executeCommand", {"command": "echo err >&2; exit 4"})["result"]
        assert result == {"code": 4, "stdout": "", "stderr": "err\n"}

    def test_timeout(self, harness):
        result = harness.call("executeCommand", {"command": "sleep 5", "timeout": 200})["result"]
        assert result["code"] == 124
        assert "Command timed out after 200ms" in result["stderr"]

    @pytest.mark.parametrize("command", ["rm -rf /", "rm -rf / --no-preserve-root", "mkfs.ext4 /dev/sda1", "echo x > /dev/sda", "chmod 777 /"])
    def test_dangerous_commands_blocked(self, harness, command):
        assert _error_code(harness.call("executeCommand", {"command": command})) == ACCESS_DENIED

    def test_traversal_blocked(self, harness):
        assert _error_code(harness.call("executeCommand", {"command": "cat ../secret"})) == ACCESS_DENIED

    def test_cwd_outside_workspace(self, harness):
        assert _error_code(harness.call("executeCommand", {"command": "ls", "cwd": "/"})) == ACCESS_DENIED

    def test_missing_command(self, harness):
        assert _error_code(harness.call("executeCommand", {"command": "  "})) == INVALID_PARAMS


class TestFileMethods:
    def test_read(self, harness, workspace):
        assert harness.call("readFile", {"path": "README.md"})["result"] == {"content": "# demo\n"}
        absolute = str(workspace / "src" / "app.py")
        assert harness.call("readFile", {"path": absolute})["result"]["content"] == "print('hi')\n"

    def test_read_missing(self, harness):
        assert _error_code(harness.call("readFile", {"path": "missing.txt"})) == NOT_FOUND

    def test_read_outside_workspace(self, harness):
        assert _error_code(harness.call("readFile", {"path": "/etc/passwd"})) == ACCESS_DENIED
        assert _error_code(harness.call("readFile", {"path": "../outside.txt"})) == ACCESS_DENIED

    def test_symlink_escape(self, harness, workspace, temp_dir):
        secret = os.path.join(temp_dir, "secret.txt")
        with open(secret, "w") as f:
            f.write("secret")
        os.symlink(secret, workspace / "link.txt")
        assert _error_code(harness.call("readFile", {"path": "link.txt"})) == ACCESS_DENIED

    def test_write_then_read(self, harness, workspace):
        assert harness.call("writeFile", {"path": "out/new.txt", "content": "Grüße\n"})["result"] == {"success": True}
        assert (workspace / "out" / "new.txt").read_text(encoding="utf-8") == "Grüße\n"

    def test_write_requires_string_content(self, harness):
        assert _error_code(harness.call("writeFile", {"path": "a.txt", "content": 5})) == INVALID_PARAMS

    def test_list_directory(self, harness):
        entries = harness.call("listDirectory", {"path": "."})["result"]["entries"]
        assert entries == [
            {"name": "README.md", "isDirectory": False, "size": 7},
            {"name": "src", "isDirectory": True},
        ]

    def test_list_missing_directory(self, harness):
        assert _error_code(harness.call("listDirectory", {"path": "nope"})) == NOT_FOUND

    def test_file_exists(self, harness):
        assert harness.call("fileExists", {"path": "README.md"})["result"] == {"exists": True}
        assert harness.call("fileExists", {"path": "nope"})["result"] == {"exists": False}
        assert harness.call("fileExists", {"path": "/etc/passwd"})["result"] == {"exists": False}

    def test_delete(self, harness, workspace):
        harness.call("deleteFile", {"path": "src"})
        harness.call("deleteFile", {"path": "README.md"})
        assert os.listdir(workspace) == []

    def test_delete_missing(self, harness):
        assert _error_code(harness.call("deleteFile", {"path": "nope"})) == NOT_FOUND

    def test_delete_workspace_root_refused(self, harness, workspace):
        assert _error_code(harness.call("deleteFile", {"path": str(workspace)})) == ACCESS_DENIED
        assert workspace.is_dir()

    def test_create_directory_and_copy(self, harness, workspace):
        harness.call("createDirectory", {"path": "a/b"})
        assert (workspace / "a" / "b").is_dir()
        harness.call("copyFile", {"src": "src/app.py", "dest": "a/b/app.py"})
        assert (workspace / "a" / "b" / "app.py").read_text() == "print('hi')\n"

    def test_copy_missing_source(self, harness):
        assert _error_code(harness.call("copyFile", {"src": "nope.py", "dest": "x.py"})) == NOT_FOUND

    def test_copy_outside_workspace(self, harness):
        assert _error_code(harness.call("copyFile", {"src": "README.md", "dest": "/tmp/stolen.md"})) == ACCESS_DENIED


class TestRunAgentTurn:
    @pytest.fixture
    def fake_cli(self, temp_dir, monkeypatch):
        cli = write_fake_agent_cli(Path(temp_dir))
        monkeypatch.setenv("VMBRIDGE_AGENT_CLI", cli)
        return cli

    def test_streams_events_then_result(self, harness, fake_cli, workspace):
        frames = harness.frames("runAgentTurn", {"prompt": "do it", "model": "opus", "maxTurns": 3, "env": {"FAKE_MODEL_TAG": "tag"}})
        *events, final = frames
        assert [frame["event"]["type"] for frame in events] == ["init", "text", "result"]
        init, text, result = (frame["event"] for frame in events)
        assert init["argv"] == ["--print", "--model", "opus", "--max-turns", "3", "do it"]
        assert init["cwd"] == os.path.realpath(workspace)
        assert text == {"type": "text", "content": "plain text line"}
        assert result["model"] == "tag"
        assert final["result"] == {"exitCode": 0, "messageCount": 3}

    def test_failing_cli(self, harness, fake_cli, monkeypatch):
        monkeypatch.setenv("FAKE_CLI_EXIT", "2")
        final = harness.call("runAgentTurn", {"prompt": "do it"})
        assert _error_code(final) == SERVER_ERROR
        assert "exited with code 2" in final["error"]["message"]
        assert "cli warning" in final["error"]["message"]

    def test_missing_cli(self, harness, monkeypatch, temp_dir):
        monkeypatch.setenv("VMBRIDGE_AGENT_CLI", os.path.join(temp_dir, "no-such-cli"))
        final = harness.call("runAgentTurn", {"prompt": "do it"})
        assert _error_code(final) == SERVER_ERROR
        assert "Failed to start agent CLI" in final["error"]["message"]

    def test_prompt_required(self, harness):
        assert _error_code(harness.call("runAgentTurn", {"prompt": ""})) == INVALID_PARAMS


class TestAgentProcess:
    def test_serves_requests_until_shutdown(self, workspace):
        requests = [
            {"jsonrpc": "2.0", "id": "1", "method": "ping", "params": {}},
            {"jsonrpc": "2.0", "id": "2", "method": "setWorkspace", "params": {"path": str(workspace)}},
            {"jsonrpc": "2.0", "id": "3", "method": "readFile", "params": {"path": "README.md"}},
            {"jsonrpc": "2.0", "id": "4", "method": "shutdown", "params": {}},
        ]
        process = subprocess.Popen(
            [sys.executable, "-u", str(AGENT_SCRIPT_PATH)],
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            text=True,
        )
        assert process.stdin is not None and process.stdout is not None
        responses = {}
        for request in requests:
            process.stdin.write(json.dumps(request) + "\n")
            process.stdin.flush()
            response = json.loads(process.stdout.readline())
            responses[response["id"]] = response
        assert process.wait(timeout=10) == 0

        assert responses["1"]["result"]["pong"] is True
        assert responses["3"]["result"]["content"] == "# demo\n"
        assert responses["4"]["result"] == {"success": True}
