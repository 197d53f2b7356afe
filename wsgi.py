"""
WSGI entry point for the PhD workflow service.

    gunicorn wsgi:app                 # serve
    flask --app wsgi db upgrade       # apply migrations/versions
    python wsgi.py                    # local development server
"""

import os

from app import create_app

app = create_app(os.getenv("APP_ENV"))

if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.getenv("PORT", "5000")))
