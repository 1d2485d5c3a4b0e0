"""
tests/unit/conftest.py - Fixtures for DB-free unit tests.

Services read secrets, TTLs and bcrypt rounds from current_app.config, so the
unit tests that exercise them push a bare Flask app context built from the
testing config. No database, no extensions, no blueprints.
"""

from __future__ import annotations

import pytest
from flask import Flask

from backend import config as app_config


@pytest.fixture
def app_ctx():
    """A pushed app context carrying TestingConfig. Yields the app."""
    flask_app = Flask(__name__)
    flask_app.config.from_object(app_config.TestingConfig)
    with flask_app.app_context():
        yield flask_app
