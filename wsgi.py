"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi run
    gunicorn wsgi:app
"""

from migconf import create_app

app = create_app()
