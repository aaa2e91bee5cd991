"""
Flask extension instances, shared by models, engine modules and blueprints.

They are bound to an app in create_app(); importing this module has no side effects,
so models.py and the engine can import db without importing the app factory.

- db:            Flask-SQLAlchemy (documents, items, stock, journal, audit)
- migrate:       Flask-Migrate / Alembic (`flask db upgrade`)
- login_manager: Flask-Login (current_user -> security.Actor)
- csrf:          Flask-WTF CSRF protection for mutating requests
"""

from flask_login import LoginManager
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from flask_wtf import CSRFProtect

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()
csrf = CSRFProtect()
