#!/usr/bin/env python3
"""
Gridbook Desktop Launcher

Starts the API server on localhost and opens the API docs in the browser.
"""

import webbrowser
from threading import Timer
import sys
import os


def open_browser(port):
    """Open default browser after a short delay."""
    webbrowser.open(f'http://localhost:{port}/docs')


def main():
    import argparse
    parser = argparse.ArgumentParser()
    parser.add_argument('--db-path', type=str, default=None,
                        help='SQLite database file (overrides GRIDBOOK_DB_PATH)')
    parser.add_argument('--port', type=int, default=8080,
                        help='Server port (default: 8080)')
    parser.add_argument('--no-browser', action='store_true',
                        help='Do not open the browser')
    args = parser.parse_args()

    port = args.port
    resolved_db_path = os.path.abspath(args.db_path) if args.db_path else None

    print("=" * 60)
    print("Gridbook")
    print("=" * 60)
    if resolved_db_path:
        print(f"Database: {resolved_db_path}")
    print(f"Server running at: http://localhost:{port}")
    print("Press Ctrl+C to stop the server")
    print("=" * 60)
    print()

    if not args.no_browser:
        Timer(1.5, lambda: open_browser(port)).start()

    try:
        import uvicorn

        if resolved_db_path:
            from gridbook_core import _set_paths_for_testing
            _set_paths_for_testing(resolved_db_path)

        from .app import app
        uvicorn.run(app, host='127.0.0.1', port=port, log_level='info')
    except ImportError as e:
        print(f"Error: Could not import app: {e}", file=sys.stderr)
        sys.exit(1)
    except OSError as e:
        print(f"Error: Could not start server: {e}", file=sys.stderr)
        print(f"Port {port} might already be in use.", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    try:
        main()
    except KeyboardInterrupt:
        print("\n\nShutting down Gridbook...")
        sys.exit(0)
