"""
Component Test Layer Configuration

Structure:
    tests/component/
    ├── dispatch_service/   Dispatch service component tests
    └── mocks/              Shared in-memory store and event bus

Usage:
    pytest tests/component -v
    pytest tests/component/dispatch_service -v
"""
import os

# Set testing environment BEFORE any imports
os.environ["ENV"] = "testing"
os.environ["NATS_ENABLED"] = "false"


def pytest_configure(config):
    """Configure custom markers"""
    config.addinivalue_line(
        "markers", "component: marks tests as component tests"
    )
