"""Shared pytest fixtures for PayNow QR tests."""

import pytest
import structlog


@pytest.fixture(autouse=True)
def reset_structlog():
    """The CLI configures structlog globally; put the defaults back after each test."""
    yield
    structlog.reset_defaults()
