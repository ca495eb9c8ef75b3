"""
Migration Conference Platform
Domain models.

The ``db`` extension lives here so every model module (and the app factory)
imports the same SQLAlchemy instance.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
