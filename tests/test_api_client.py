"""
Tests for gridbook_core.api_client — envelope handling and bulk delete.

Uses unittest.mock to avoid real network calls.
"""

import io
import json
import ssl
import threading
import urllib.error
from unittest import mock

import pytest

from gridbook_core.api_client import (
    ApiConnectionError,
    ApiError,
    ApiSSLError,
    BulkDeleteError,
    GridbookClient,
    _create_ssl_context,
    _is_ssl_error,
)


def _mock_response(body, status=200):
    resp = mock.MagicMock()
    resp.read.return_value = json.dumps(body).encode("utf-8")
    resp.status = status
    resp.__enter__ = mock.Mock(return_value=resp)
    resp.__exit__ = mock.Mock(return_value=False)
    return resp


def _http_error(url, code, body):
    return urllib.error.HTTPError(url, code, "error", {},
                                  io.BytesIO(json.dumps(body).encode("utf-8")))


URLOPEN = "gridbook_core.api_client.urllib.request.urlopen"


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class TestRequests:
    def test_unwraps_data(self):
        client = GridbookClient("http://api.test/")
        tables = [{"id": "1", "name": "Contacts"}]
        with mock.patch(URLOPEN, return_value=_mock_response(
                {"success": True, "data": tables})) as urlopen:
            assert client.list_tables() == tables
        req = urlopen.call_args[0][0]
        assert req.full_url == "http://api.test/api/tables"
        assert req.get_method() == "GET"

    def test_sends_json_body(self):
        client = GridbookClient("http://api.test")
        with mock.patch(URLOPEN, return_value=_mock_response(
                {"success": True, "data": {"id": "f"}})) as urlopen:
            client.create_field("t1", "Status", "multiple_choice", ("a", "b"))
        req = urlopen.call_args[0][0]
        assert req.get_method() == "POST"
        assert json.loads(req.data) == {"name": "Status", "type": "multiple_choice",
                                        "options": ["a", "b"]}
        assert req.get_header("Content-type") == "application/json"

    def test_delete_uses_query(self):
        client = GridbookClient("http://api.test")
        with mock.patch(URLOPEN, return_value=_mock_response(
                {"success": True, "message": "Entry deleted successfully"})) as urlopen:
            result = client.delete_entry("t1", "e1")
        assert urlopen.call_args[0][0].full_url == \
            "http://api.test/api/tables/t1/entries?entryId=e1"
        assert result["message"] == "Entry deleted successfully"

    def test_base_url_from_env(self, monkeypatch):
        monkeypatch.setenv("GRIDBOOK_API_URL", "http://other:9000/")
        assert GridbookClient().base_url == "http://other:9000"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class TestErrors:
    def test_http_error_carries_field_errors(self):
        client = GridbookClient("http://api.test")
        err = _http_error("http://api.test/x", 400, {
            "success": False, "message": "Data validation failed",
            "errors": {"Age": "Must be a valid number."}})
        with mock.patch(URLOPEN, side_effect=err):
            with pytest.raises(ApiError) as exc:
                client.create_entry("t1", {"Age": "abc"})
        assert exc.value.status == 400
        assert exc.value.message == "Data validation failed"
        assert exc.value.errors == {"Age": "Must be a valid number."}

    def test_conflict(self):
        client = GridbookClient("http://api.test")
        err = _http_error("http://api.test/x", 409, {
            "success": False, "message": 'Table with name "a" already exists.'})
        with mock.patch(URLOPEN, side_effect=err):
            with pytest.raises(ApiError) as exc:
                client.create_table("a")
        assert exc.value.status == 409
        assert exc.value.errors == {}

    def test_invalid_json(self):
        client = GridbookClient("http://api.test")
        resp = _mock_response({})
        resp.read.return_value = b"<html>"
        with mock.patch(URLOPEN, return_value=resp):
            with pytest.raises(ApiError):
                client.list_tables()

    def test_connection_error(self):
        client = GridbookClient("http://api.test")
        with mock.patch(URLOPEN, side_effect=urllib.error.URLError("refused")):
            with pytest.raises(ApiConnectionError):
                client.list_tables()

    def test_ssl_error(self):
        client = GridbookClient("http://api.test")
        err = urllib.error.URLError(ssl.SSLError("certificate verify failed"))
        with mock.patch(URLOPEN, side_effect=err):
            with pytest.raises(ApiSSLError):
                client.list_tables()

    def test_is_ssl_error(self):
        assert _is_ssl_error(ssl.SSLError("x"))
        assert _is_ssl_error(urllib.error.URLError(ssl.SSLError("x")))
        assert not _is_ssl_error(urllib.error.URLError("refused"))


class TestSSLContext:
    def test_default_is_none(self, monkeypatch):
        monkeypatch.delenv("GRIDBOOK_SSL_VERIFY", raising=False)
        monkeypatch.delenv("GRIDBOOK_SSL_CERT", raising=False)
        assert _create_ssl_context() is None

    def test_verify_disabled(self, monkeypatch):
        monkeypatch.setenv("GRIDBOOK_SSL_VERIFY", "0")
        ctx = _create_ssl_context()
        assert ctx.verify_mode == ssl.CERT_NONE

    def test_missing_cert_file(self, monkeypatch, tmp_path):
        monkeypatch.delenv("GRIDBOOK_SSL_VERIFY", raising=False)
        monkeypatch.setenv("GRIDBOOK_SSL_CERT", str(tmp_path / "missing.pem"))
        assert _create_ssl_context() is None


# ---------------------------------------------------------------------------
# Bulk delete
# ---------------------------------------------------------------------------

class TestBulkDelete:
    def test_all_succeed_in_input_order(self):
        client = GridbookClient("http://api.test")
        with mock.patch.object(client, "delete_entry", return_value={"success": True}) as de:
            assert client.delete_entries("t1", ["c", "a", "b"]) == ["c", "a", "b"]
        assert sorted(c.args[1] for c in de.call_args_list) == ["a", "b", "c"]

    def test_requests_run_concurrently(self):
        client = GridbookClient("http://api.test", max_workers=3)
        barrier = threading.Barrier(3, timeout=5)

        def delete(table_id, entry_id):
            barrier.wait()
            return {"success": True}

        with mock.patch.object(client, "delete_entry", side_effect=delete):
            assert client.delete_entries("t1", ["a", "b", "c"]) == ["a", "b", "c"]

    def test_partial_failure(self):
        client = GridbookClient("http://api.test")

        def delete(table_id, entry_id):
            if entry_id == "b":
                raise ApiError("Entry not found", status=404)
            return {"success": True}

        with mock.patch.object(client, "delete_entry", side_effect=delete):
            with pytest.raises(BulkDeleteError) as exc:
                client.delete_entries("t1", ["a", "b", "c"])
        assert exc.value.deleted == ["a", "c"]
        assert exc.value.failures == {"b": "Entry not found"}
        assert str(exc.value) == "Failed to delete 1 of 3 entries"

    def test_empty(self):
        assert GridbookClient("http://api.test").delete_entries("t1", []) == []
