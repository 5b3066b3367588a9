"""
pytest configuration for dns-sinkhole tests

This file ensures tests can find the dns_sinkhole package and the shared
test helpers regardless of environment
"""

import sys
from pathlib import Path

import pytest
from prometheus_client import CollectorRegistry

# Add parent directory to path so tests can import dns_sinkhole
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

# Add tests directory so test modules can import test_utils
tests_dir = Path(__file__).parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))


@pytest.fixture
def registry():
    """Fresh Prometheus registry so counters start at zero in every test"""
    return CollectorRegistry()
