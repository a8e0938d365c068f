"""
Component Test Mocks

Shared mock implementations for component testing.
These mocks replace real I/O dependencies (database, NATS).
"""

from .db_mock import MockDispatchStore
from .nats_mock import MockEventBus

# Service-specific mocks should be in tests/component/{service}/mocks.py

__all__ = [
    'MockDispatchStore',
    'MockEventBus',
]
