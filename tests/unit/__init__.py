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
Unit tests for nexau framework components.

This module contains unit tests that test individual components in isolation.
Each test should focus on a single function, method, or class without external dependencies.
"""

# Import existing test modules
# Note: Some modules are placeholders and will be implemented later
try:
    from .test_config import *
except ImportError:
    pass

try:
    from .test_llm import *
except ImportError:
    pass

try:
    from .test_agent import *
except ImportError:
    pass

# Future imports (to be implemented)
# from .test_execution import *
# from .test_tools import *

__all__ = [
    # Add test class names as they are implemented
]
