"""
WSGI / Flask CLI entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi create-admin --username admin --email admin@example.edu
    flask --app wsgi db migrate -m "description"
    flask --app wsgi db upgrade
"""

from portal import create_app

app = create_app()
