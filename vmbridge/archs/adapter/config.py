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

"""Adapter configuration."""

import logging
import os

from pydantic import Field, ValidationError

from vmbridge.archs.sandbox.base_executor import SandboxConfig
from vmbridge.archs.utils.common import ConfigError, env_flag, load_yaml_with_vars

logger = logging.getLogger(__name__)

FORCE_NATIVE_ENV = "VMBRIDGE_FORCE_NATIVE"
SKIP_INSTALL_PROMPTS_ENV = "VMBRIDGE_SKIP_INSTALL_PROMPTS"


class AdapterConfig(SandboxConfig):
    """
    Sandbox configuration plus adapter-level switches.

    Attributes:
        force_native: Skip VM detection and run natively
        skip_install_prompts: Install missing VM runtimes without asking
    """

    force_native: bool = Field(default_factory=lambda: env_flag(FORCE_NATIVE_ENV))
    skip_install_prompts: bool = Field(default_factory=lambda: env_flag(SKIP_INSTALL_PROMPTS_ENV))


def load_adapter_config(path: str | os.PathLike[str], **overrides: object) -> AdapterConfig:
    """Load an AdapterConfig from YAML; keyword overrides win over file values.

    Example YAML::

        workspace_path: ${this_file_dir}/workspace
        timeout: 120000
        env:
          API_KEY: ${env.API_KEY}

    Raises:
        ConfigError: If the file cannot be loaded or fails validation
    """
    data = load_yaml_with_vars(path)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")

    data.update({key: value for key, value in overrides.items() if value is not None})
    try:
        config = AdapterConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid sandbox config in {path}: {e}") from e
    logger.info(f"Loaded sandbox config from {path}")
    return config
