"""
OpEx Hub: SQLAlchemy extension instance.

Every model module imports ``db`` from here so that the application factory
can bind a single engine/session per app:

    from opexhub.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
