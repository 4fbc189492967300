"""
WSGI entry point; also the Flask-Migrate / Alembic target.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db migrate -m "description"
    flask --app wsgi db upgrade
"""

from opexhub import create_app

app = create_app()
