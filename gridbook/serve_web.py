#!/usr/bin/env python3
"""
Gridbook Production Server

Production entry point for serving the API via gunicorn/uvicorn.

Usage:
    # Direct run
    python -m gridbook.serve_web

    # With gunicorn
    gunicorn -c deploy/gunicorn.conf.py 'gridbook.serve_web:create_app()'

Environment variables:
    GRIDBOOK_DB_PATH      — SQLite database file (default: ./gridbook.db)
    GRIDBOOK_PORT         — Server port (default: 8000)
    GRIDBOOK_WORKERS      — Number of worker processes (default: 2)
    GRIDBOOK_LOG_LEVEL    — Log level (default: info)
    GRIDBOOK_CORS_ORIGINS — Comma-separated allowed origins (default: *)
"""

import logging
import os
import sys

logger = logging.getLogger(__name__)


def create_app():
    """Application factory for gunicorn.

    Creates the store schema once so that workers start against a ready
    database, then returns the FastAPI app.
    """
    from gridbook_core import get_db, get_db_path

    conn = get_db()
    conn.close()
    logger.info("Using database %s", get_db_path())

    from gridbook.app import app
    return app


def main():
    """CLI entry point — run directly with uvicorn (no gunicorn needed)."""
    import argparse

    parser = argparse.ArgumentParser(description='Gridbook Production Server')
    parser.add_argument('--db-path', type=str, default=None,
                        help='SQLite database file (overrides GRIDBOOK_DB_PATH env)')
    parser.add_argument('--port', type=int, default=None,
                        help='Server port (overrides GRIDBOOK_PORT env, default: 8000)')
    parser.add_argument('--workers', type=int, default=None,
                        help='Number of workers (overrides GRIDBOOK_WORKERS env, default: 2)')
    parser.add_argument('--log-level', type=str, default=None,
                        help='Log level (overrides GRIDBOOK_LOG_LEVEL env, default: info)')
    args = parser.parse_args()

    # CLI args override env vars; workers inherit the environment
    if args.db_path:
        os.environ['GRIDBOOK_DB_PATH'] = os.path.abspath(args.db_path)
    if args.port:
        os.environ['GRIDBOOK_PORT'] = str(args.port)
    if args.workers:
        os.environ['GRIDBOOK_WORKERS'] = str(args.workers)
    if args.log_level:
        os.environ['GRIDBOOK_LOG_LEVEL'] = args.log_level

    port = int(os.environ.get('GRIDBOOK_PORT', '8000'))
    workers = int(os.environ.get('GRIDBOOK_WORKERS', '2'))
    log_level = os.environ.get('GRIDBOOK_LOG_LEVEL', 'info')
    db_path = os.environ.get('GRIDBOOK_DB_PATH') or os.path.abspath('gridbook.db')

    print("=" * 60)
    print("Gridbook (Production)")
    print("=" * 60)
    print(f"Database: {db_path}")
    print(f"Bind:     0.0.0.0:{port}")
    print(f"Workers:  {workers}")
    print("=" * 60)
    print()

    import uvicorn
    uvicorn.run(
        'gridbook.serve_web:create_app',
        host='0.0.0.0',
        port=port,
        workers=workers,
        log_level=log_level,
        factory=True,
    )


if __name__ == '__main__':
    try:
        main()
    except KeyboardInterrupt:
        print("\nShutting down Gridbook...")
        sys.exit(0)
