"""
PhD Workflow Service
SQLAlchemy extension instance shared by every model module.

Models import ``db`` from here; the app factory binds it with
``db.init_app(app)``.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
