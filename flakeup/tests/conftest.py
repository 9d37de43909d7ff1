"""Shared pytest fixtures for flakeup tests.

Kept minimal — only what several test modules need.
"""

import pytest

from flakeup.config import clear_settings_cache


@pytest.fixture(autouse=True)
def _clear_settings():
    """Clear the settings cache before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()
