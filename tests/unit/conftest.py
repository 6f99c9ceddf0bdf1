"""Shared fixtures for unit tests."""

import logging

import pytest


@pytest.fixture(autouse=True)
def enable_log_propagation():
    """Ensure front door logs reach the root logger so caplog can catch them."""
    logger = logging.getLogger("frontdoor")
    old_propagate = logger.propagate
    logger.propagate = True
    yield
    logger.propagate = old_propagate
