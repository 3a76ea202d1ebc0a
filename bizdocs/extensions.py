"""
Central place for Flask extensions.

This avoids circular imports and keeps create_app clean.
Extensions are initialized in create_app() in __init__.py, where the app context is available.

atomic() is the unit of work used by every composite write (document + line items,
conversions, payments). Routes open it; services only add/flush.
"""

from contextlib import contextmanager

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager
from flask_wtf import CSRFProtect

# Global extension instances - these are imported and initialized in create_app() in __init__.py with the app context.
db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()
csrf = CSRFProtect()


@contextmanager
def atomic():
    """
    Run the enclosed block as one transaction.

    Commits on success. On any exception the session is rolled back and the
    exception re-raised, so no partially written document survives.
    """
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
