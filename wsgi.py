"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi sweep-phase-transitions
    gunicorn wsgi:app
"""

from showops import create_app

app = create_app()
