"""Shared test fixtures."""

import pytest

from cask import Application, Context


@pytest.fixture
async def app():
    """Create a fresh application, stopped after the test."""
    app = Application()
    yield app
    # Releases the shutdown signal listener if the test started the app
    await app.stop()


@pytest.fixture
def context():
    """Create a fresh standalone context."""
    return Context("test")
