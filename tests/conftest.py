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
Pytest configuration and fixtures for vmbridge tests.

Real-process tests spawn the in-VM agent locally with the current
interpreter, so no VM is needed to run the suite.
"""

import os
import shutil
import tempfile
from pathlib import Path

import pytest

from tests.fakes import FAST_RPC_CONFIG
from vmbridge.archs.transports.rpc.config import RpcConfig


@pytest.fixture(autouse=True)
def clean_vmbridge_env(monkeypatch):
    """Keep host VMBRIDGE_* settings from leaking into tests."""
    for name in list(os.environ):
        if name.startswith("VMBRIDGE_"):
            monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    temp_path = tempfile.mkdtemp()

    yield temp_path

    if os.path.exists(temp_path):
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def workspace(temp_dir):
    """Host workspace with a couple of files."""
    root = Path(temp_dir) / "workspace"
    (root / "src").mkdir(parents=True)
    (root / "README.md").write_text("# demo\n", encoding="utf-8")
    (root / "src" / "app.py").write_text("print('hi')\n", encoding="utf-8")
    return root


@pytest.fixture
def rpc_config() -> RpcConfig:
    return FAST_RPC_CONFIG
