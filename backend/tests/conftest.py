"""
Pytest fixtures for stockroom backend tests.

Every test gets its own app: in-memory SQLite, in-memory flat storage,
no background maintenance and no startup migration.
"""

import pytest

from stockroom import create_app
from stockroom.context import get_store_context
from stockroom.extensions import db

from factories import TEST_CONFIG


@pytest.fixture(scope='function')
def app():
    """Create application for testing."""
    app = create_app(dict(TEST_CONFIG))

    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def ctx(app):
    """Store context of the test app."""
    return get_store_context(app)


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def runner(app):
    return app.test_cli_runner()
