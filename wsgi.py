"""
WSGI / Flask CLI entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi seed-checklist
    gunicorn wsgi:app
"""

from retail_audit import create_app

app = create_app()
