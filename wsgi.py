"""
Application entry point.

Usage:
    flask --app wsgi run-job purge_stale_exports
    flask --app wsgi generate-export 42
"""

from dossier_exports import create_app

app = create_app()
