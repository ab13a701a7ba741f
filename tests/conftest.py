"""
Shared fixtures for consul-backup tests.
"""

import logging

import pytest

from backup.consul_backup.main import PACKAGE_LOGGER


@pytest.fixture(autouse=True)
def restore_package_logger():
    """Undo setup_logging() so caplog keeps seeing package records."""
    log = logging.getLogger(PACKAGE_LOGGER)
    handlers, level, propagate = list(log.handlers), log.level, log.propagate
    yield
    log.handlers = handlers
    log.setLevel(level)
    log.propagate = propagate
