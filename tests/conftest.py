"""
conftest.py — Shared Fixtures
===============================
Small protocol parameters keep the sequential transform fast in tests.
"""

import pytest

from proof_core.models import NetworkLocation, NodeIdentity, ProtocolConfig


@pytest.fixture
def location():
    return NetworkLocation(ip="10.0.0.5", port=9000)


@pytest.fixture
def identity(location):
    return NodeIdentity.generate(location)


@pytest.fixture
def small_config():
    """4 chunks, 200 iterations each, checkpoint every 50."""
    return ProtocolConfig(
        standard_chunk_count=4,
        min_iterations=200,
        checkpoint_interval=50,
    )
