"""
pytest configuration for export client tests.

Adds src directory to Python path for imports and keeps the MIXPANEL_*
environment from leaking into configuration tests.
"""

import sys
from pathlib import Path

import pytest

# Add src directory to Python path
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))

MIXPANEL_ENV_VARS = (
    "MIXPANEL_PRODUCT",
    "MIXPANEL_API_KEY",
    "MIXPANEL_API_SECRET",
    "MIXPANEL_BASE_URL",
)


@pytest.fixture(autouse=True)
def clean_mixpanel_env(monkeypatch):
    """Unset MIXPANEL_* variables so a developer's shell cannot change results."""
    for name in MIXPANEL_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def reset_log_context():
    """Clear structured log context between tests."""
    from core.logging.context import clear_log_context

    clear_log_context()
    yield
    clear_log_context()
