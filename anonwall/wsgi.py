"""
WSGI entrypoint for running the app with Gunicorn or other WSGI servers.

Usage (example):
  gunicorn -w 1 -b 0.0.0.0:8000 anonwall.wsgi:app

More than one worker needs a shared cache for the like guard and the
throttle counters:
  CACHE_REDIS_URL=redis://localhost:6379/0 gunicorn -w 4 -b 0.0.0.0:8000 anonwall.wsgi:app

This module exposes `app`, created via the application's factory.
"""

import logging
import os

from dotenv import load_dotenv

from . import create_app

load_dotenv()

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
)

# Create the Flask application via the factory
app = create_app()


if __name__ == "__main__":
    # Optional local run for quick checks
    port = int(os.environ.get("PORT", "8000"))
    app.run(host="0.0.0.0", port=port)
