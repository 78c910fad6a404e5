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

"""Tests for bounded external process helpers."""

import logging

from vmbridge.archs.vm.process import COMMAND_NOT_FOUND, TIMED_OUT, run_process, stream_process


class TestRunProcess:
    def test_captures_output(self):
        result = run_process(["bash", "-c", "echo out; echo err >&2"], timeout_s=10)
        assert result.ok
        assert result.exit_code == 0
        assert result.stdout == "out\n"
        assert result.stderr == "err\n"
        assert not result.timed_out

    def test_nonzero_exit(self):
        result = run_process(["bash", "-c", "exit 3"], timeout_s=10)
        assert not result.ok
        assert result.exit_code == 3

    def test_missing_binary(self, temp_dir):
        result = run_process([f"{temp_dir}/no-such-binary", "--version"], timeout_s=10)
        assert not result.ok
        assert result.exit_code == COMMAND_NOT_FOUND
        assert result.stderr

    def test_timeout(self):
        result = run_process(["bash", "-c", "echo started; sleep 5"], timeout_s=0.3)
        assert not result.ok
        assert result.timed_out
        assert result.exit_code == TIMED_OUT
        assert result.duration_ms < 5000

    def test_input_text(self):
        result = run_process(["cat"], timeout_s=10, input_text="héllo\nworld")
        assert result.stdout == "héllo\nworld"

    def test_custom_decoder(self):
        result = run_process(["printf", "abc"], timeout_s=10, decoder=lambda data: data.decode("ascii").upper())
        assert result.stdout == "ABC"


class TestStreamProcess:
    def test_success_logs_lines(self, caplog):
        caplog.set_level(logging.INFO, logger="vmbridge.archs.vm.process")
        assert stream_process(["bash", "-c", "echo one; echo two >&2"], timeout_s=10, log_prefix="[test]")
        messages = [record.getMessage() for record in caplog.records]
        assert "[test] one" in messages
        assert "[test] two" in messages

    def test_failure(self):
        assert not stream_process(["bash", "-c", "exit 1"], timeout_s=10, log_prefix="[test]")

    def test_missing_binary(self, temp_dir):
        assert not stream_process([f"{temp_dir}/nope"], timeout_s=10, log_prefix="[test]")

    def test_timeout(self):
        assert not stream_process(["sleep", "5"], timeout_s=0.3, log_prefix="[test]")
