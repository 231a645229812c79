"""gridbook_core — pure-stdlib store and API client for Gridbook."""

__version__ = "0.1.0"

from .store import (
    StoreError,
    get_db, get_db_path, ensure_schema, transaction,
    new_id, is_valid_id, utc_now, dump_json, load_json,
    _set_paths_for_testing, _reset_paths,
)
from .api_client import (
    GridbookClient,
    ClientError, ApiError, ApiConnectionError, ApiSSLError, BulkDeleteError,
)
