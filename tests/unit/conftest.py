"""
Unit Test Layer Configuration

Structure:
    tests/unit/
    └── dispatch_service/   Pure dispatch logic (pricing, transitions, codecs)

Usage:
    pytest tests/unit -v
    pytest tests/unit -m unit -v
"""


def pytest_configure(config):
    """Configure custom markers"""
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
