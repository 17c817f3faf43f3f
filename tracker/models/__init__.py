"""
Project Tracker Core
SQLAlchemy models package.

All models share the single ``db`` instance created here and bound to the
application in ``create_app``.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
