"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi expire-scopes
    gunicorn wsgi:app
"""

from orgadmin import create_app

app = create_app()
