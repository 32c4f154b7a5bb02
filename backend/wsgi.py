# backend/wsgi.py
import atexit
import os

from stockroom import create_app, start_maintenance
from stockroom.context import get_store_context
from stockroom.services import store_service

app = create_app()


def _release_store():
    with app.app_context():
        store_service.shutdown(get_store_context(app))


# The Flask CLI imports this module as FLASK_APP; only a served app runs the loop.
if os.environ.get("FLASK_RUN_FROM_CLI") != "true":
    # Registered first so it runs after the scheduler's own exit-time quick sync.
    atexit.register(_release_store)
    start_maintenance(app)
