"""
Pytest configuration and shared fixtures.
"""
import os
import pytest


@pytest.fixture(autouse=True)
def clean_setupinfo_env(monkeypatch):
    """Keep SETUPINFO_* variables of the developer shell out of the tests."""
    for name in list(os.environ):
        if name.startswith("SETUPINFO_"):
            monkeypatch.delenv(name, raising=False)
