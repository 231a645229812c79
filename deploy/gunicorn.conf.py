"""Gunicorn configuration for the Gridbook API."""

import os

# Worker class: uvicorn ASGI worker
worker_class = "uvicorn.workers.UvicornWorker"

workers = int(os.environ.get("GRIDBOOK_WORKERS", "2"))

# Localhost only; a reverse proxy terminates public traffic
bind = f"127.0.0.1:{os.environ.get('GRIDBOOK_PORT', '8000')}"

# Each worker opens its own SQLite connections per request
preload_app = False

timeout = 120

# Logging
accesslog = "-"  # stdout
loglevel = os.environ.get("GRIDBOOK_LOG_LEVEL", "info")
