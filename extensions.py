# extensions.py

from flask_sqlalchemy import SQLAlchemy

# Single source of truth for the db object.
# Initialized here, bound to an app in create_app().
db = SQLAlchemy()
