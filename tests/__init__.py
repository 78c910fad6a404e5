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
Test suite for the NexAU framework.

This module contains comprehensive tests for all components of the nexau framework,
including unit tests, integration tests, and end-to-end tests.

Test Structure:
- unit/: Unit tests for individual components
- integration/: Integration tests for component interactions
- e2e/: End-to-end tests for complete workflows
- examples/: Tests for example code functionality

Running Tests:
- Run all tests: pytest
- Run unit tests only: pytest tests/unit/
- Run with coverage: pytest --cov=nexau --cov-report=html
- Run specific test file: pytest tests/unit/test_agent.py
"""

__version__ = "1.0.0"
