"""Pytest configuration and fixtures."""

import os

import pytest

# Set before any cortex_insights import reads settings at collection time
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-key")
os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ["CORTEX_ENV"] = "test"


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Set up test environment variables."""
    from cortex_insights.core.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
