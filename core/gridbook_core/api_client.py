"""
api_client.py — Gridbook HTTP API client (pure stdlib)

Wraps the JSON API served by ``gridbook.app``. Every response carries a
``{success, data, message, errors}`` envelope; failures are raised as
``ApiError`` with the HTTP status and any per-field errors attached.

No external dependencies — uses only Python stdlib (urllib, json, ssl).
"""

import json
import logging
import os
import ssl
import urllib.error
import urllib.parse
import urllib.request
from concurrent.futures import ThreadPoolExecutor, as_completed

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://127.0.0.1:8080"


def _create_ssl_context():
    """Create an SSL context for HTTPS API URLs.

    Supports the following environment variables:
      - GRIDBOOK_SSL_CERT: Path to a custom CA certificate bundle (PEM).
      - GRIDBOOK_SSL_VERIFY: Set to "0" to disable certificate
            verification (troubleshooting only).

    Returns:
        ssl.SSLContext or None (None = use urllib defaults).
    """
    ssl_verify = os.environ.get("GRIDBOOK_SSL_VERIFY", "1").strip()
    ssl_cert = os.environ.get("GRIDBOOK_SSL_CERT", "").strip()

    if ssl_verify == "0":
        logger.warning(
            "SSL certificate verification disabled (GRIDBOOK_SSL_VERIFY=0). "
            "This is insecure and should only be used for troubleshooting."
        )
        ctx = ssl.create_default_context()
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
        return ctx

    if ssl_cert:
        if not os.path.isfile(ssl_cert):
            logger.warning("GRIDBOOK_SSL_CERT file not found: %s", ssl_cert)
            return None
        logger.info("Using custom CA bundle: %s", ssl_cert)
        return ssl.create_default_context(cafile=ssl_cert)

    return None


def _is_ssl_error(exc):
    """Check whether an exception is caused by SSL certificate verification."""
    if isinstance(exc, ssl.SSLError):
        return True
    if isinstance(exc, urllib.error.URLError):
        return isinstance(getattr(exc, "reason", None), ssl.SSLError)
    return False


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ClientError(Exception):
    """Base exception for API client operations."""


class ApiConnectionError(ClientError):
    """Raised when the API server cannot be reached."""


class ApiSSLError(ApiConnectionError):
    """Raised when an SSL certificate verification error occurs."""


class ApiError(ClientError):
    """Raised when the API answers with ``success: false``.

    ``errors`` holds the per-field error map for validation failures.
    """

    def __init__(self, message, status=None, errors=None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.errors = errors or {}


class BulkDeleteError(ClientError):
    """Raised when some deletes of a bulk delete failed.

    Successful deletes are not reverted: ``deleted`` lists them and
    ``failures`` maps every failed id to its error message.
    """

    def __init__(self, deleted, failures):
        self.deleted = list(deleted)
        self.failures = dict(failures)
        super().__init__(
            f"Failed to delete {len(self.failures)} of "
            f"{len(self.deleted) + len(self.failures)} entries"
        )


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class GridbookClient:
    """Thin client over the Gridbook JSON API."""

    def __init__(self, base_url=None, timeout=10, max_workers=8):
        url = base_url or os.environ.get("GRIDBOOK_API_URL") or DEFAULT_API_URL
        self.base_url = url.rstrip("/")
        self.timeout = timeout
        self.max_workers = max_workers
        self._ssl_ctx = _create_ssl_context() if self.base_url.startswith("https") else None

    def _request(self, method, path, body=None, query=None):
        """Send one request and unwrap the response envelope.

        Returns:
            The ``data`` member of a successful response (or the whole
            envelope when it has no ``data``).

        Raises:
            ApiError: The server answered with ``success: false``.
            ApiSSLError: SSL certificate verification failed.
            ApiConnectionError: Any other transport failure.
        """
        url = f"{self.base_url}{path}"
        if query:
            url += "?" + urllib.parse.urlencode(query)

        payload = None
        headers = {"User-Agent": "Gridbook", "Accept": "application/json"}
        if body is not None:
            payload = json.dumps(body).encode("utf-8")
            headers["Content-Type"] = "application/json"

        req = urllib.request.Request(url, data=payload, headers=headers, method=method)
        logger.debug("%s %s", method, url)
        try:
            with urllib.request.urlopen(req, timeout=self.timeout,
                                        context=self._ssl_ctx) as resp:
                raw = resp.read().decode("utf-8")
                status = resp.status
        except urllib.error.HTTPError as e:
            raw = e.read().decode("utf-8", errors="replace")
            status = e.code
        except (urllib.error.URLError, OSError) as e:
            if _is_ssl_error(e):
                raise ApiSSLError(f"SSL certificate verification failed: {e}") from e
            raise ApiConnectionError(f"Failed to reach {self.base_url}: {e}") from e

        try:
            envelope = json.loads(raw) if raw else {}
        except json.JSONDecodeError as e:
            raise ApiError(f"Invalid JSON response (HTTP {status})", status=status) from e

        if not isinstance(envelope, dict) or not envelope.get("success"):
            envelope = envelope if isinstance(envelope, dict) else {}
            message = envelope.get("message") or f"Request failed (HTTP {status})"
            raise ApiError(message, status=status, errors=envelope.get("errors"))
        return envelope.get("data", envelope)

    # -- tables -------------------------------------------------------------

    def list_tables(self):
        return self._request("GET", "/api/tables")

    def create_table(self, name):
        return self._request("POST", "/api/tables", {"name": name})

    def get_table(self, table_id):
        return self._request("GET", f"/api/tables/{table_id}")

    def delete_table(self, table_id):
        return self._request("DELETE", f"/api/tables/{table_id}")

    # -- fields -------------------------------------------------------------

    def list_fields(self, table_id):
        return self._request("GET", f"/api/tables/{table_id}/fields")

    def create_field(self, table_id, name, field_type, options=None):
        body = {"name": name, "type": field_type}
        if options is not None:
            body["options"] = list(options)
        return self._request("POST", f"/api/tables/{table_id}/fields", body)

    def update_field(self, table_id, field_id, name, field_type, options=None):
        body = {"fieldId": field_id, "name": name, "type": field_type}
        if options is not None:
            body["options"] = list(options)
        return self._request("PUT", f"/api/tables/{table_id}/fields", body)

    def delete_field(self, table_id, field_id):
        return self._request("DELETE", f"/api/tables/{table_id}/fields",
                             query={"fieldId": field_id})

    # -- entries ------------------------------------------------------------

    def list_entries(self, table_id):
        return self._request("GET", f"/api/tables/{table_id}/entries")

    def create_entry(self, table_id, data):
        return self._request("POST", f"/api/tables/{table_id}/entries", {"data": data})

    def update_entry(self, table_id, entry_id, data):
        return self._request("PUT", f"/api/tables/{table_id}/entries",
                             {"entryId": entry_id, "data": data})

    def delete_entry(self, table_id, entry_id):
        return self._request("DELETE", f"/api/tables/{table_id}/entries",
                             query={"entryId": entry_id})

    def delete_entries(self, table_id, entry_ids):
        """Delete several entries concurrently, one request per entry.

        Not atomic. Returns the deleted ids in input order when all
        succeed; otherwise raises BulkDeleteError listing both outcomes.
        """
        entry_ids = list(entry_ids)
        if not entry_ids:
            return []

        done = set()
        failures = {}
        workers = max(1, min(self.max_workers, len(entry_ids)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {pool.submit(self.delete_entry, table_id, eid): eid
                       for eid in entry_ids}
            for future in as_completed(futures):
                eid = futures[future]
                try:
                    future.result()
                except ClientError as e:
                    logger.warning("Delete of entry %s failed: %s", eid, e)
                    failures[eid] = str(e)
                else:
                    done.add(eid)

        deleted = [eid for eid in entry_ids if eid in done]
        if failures:
            raise BulkDeleteError(deleted, failures)
        return deleted
