"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db migrate -m "description"
    flask --app wsgi db upgrade
    flask --app wsgi create-user admin "Admin Developer"
    gunicorn wsgi:app
"""

from tracker import create_app

app = create_app()
