"""Shared pytest configuration for erengine tests."""

import pytest

from erengine.config import get_settings

from fixtures import *  # noqa: F401,F403


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Make every test see settings built from its own environment."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
