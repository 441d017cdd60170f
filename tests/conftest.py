"""Test configuration and fixtures."""
import sys
from pathlib import Path

import pytest

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))
sys.path.insert(0, str(project_root / "tests"))

from helpers import FakeSource, MemoryBlobStore  # noqa: E402


@pytest.fixture
def store():
    return MemoryBlobStore()


@pytest.fixture
def source():
    return FakeSource()
