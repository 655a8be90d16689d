"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for azure_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

TEST_TENANT_ID = "11111111-2222-3333-4444-555555555555"


@pytest.fixture
def tenant_id() -> str:
    return TEST_TENANT_ID
