"""
Flask extension singletons for BuildBooks.

Created unbound here and bound in buildbooks.create_app(), so models,
blueprints and the store can import them without circular imports.
"""

from flask_login import LoginManager
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from flask_wtf import CSRFProtect
from sqlalchemy import MetaData

# Deterministic constraint names so Flask-Migrate (Alembic batch mode on
# SQLite) can alter or drop them, e.g. uq_invoice_conversion_key.
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

db = SQLAlchemy(metadata=MetaData(naming_convention=NAMING_CONVENTION))
migrate = Migrate(render_as_batch=True)

# JSON API: no login page to redirect to; see create_app's unauthorized_handler.
login_manager = LoginManager()
login_manager.session_protection = "strong"

csrf = CSRFProtect()
