"""Pytest configuration and fixtures

Makes the top-level modules importable without an install and provides an
in-memory ledger so the scenario can run without a test validator.
"""

import sys
from pathlib import Path

import pytest

# Add project root to sys.path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from demo_config import DemoConfig  # noqa: E402
from fake_ledger import FakeLedger  # noqa: E402


@pytest.fixture
def cfg() -> DemoConfig:
    return DemoConfig()


@pytest.fixture
def ledger(cfg) -> FakeLedger:
    return FakeLedger(cfg)
