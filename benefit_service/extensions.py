from flask import current_app
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

LOCKING_EXTENSION = 'benefit_locking'


def current_locking():
    """Concurrency strategy shared by every request of the running app."""
    return current_app.extensions[LOCKING_EXTENSION]
