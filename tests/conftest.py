"""
Root conftest.py - Global configuration for all test layers.

Test Layers:
    - component/  : Component tests (in-memory store, mocked optimizer/bus)
    - unit/       : Unit tests (pure functions, no I/O)
"""
import os
import sys

# Add project root to path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

os.environ.setdefault("ENV", "testing")


def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line("markers", "component: Component tests")
    config.addinivalue_line("markers", "unit: Unit tests")
