"""
Shared test fixtures for the Gridbook test suite.

  - db_path: empty store file in tmp_path, wired in as the active database
  - db: open connection to that store
  - client: TestClient wired to db_path
  - contacts_table: "Contacts" table with Name/Age/Email/Status fields
"""

import pytest

import gridbook_core
from gridbook.app import app


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "test_gridbook.db")
    gridbook_core._set_paths_for_testing(path)
    yield path
    gridbook_core._reset_paths()


@pytest.fixture
def db(db_path):
    conn = gridbook_core.get_db(db_path)
    yield conn
    conn.close()


@pytest.fixture
def client(db_path):
    from starlette.testclient import TestClient
    with TestClient(app) as client:
        yield client


@pytest.fixture
def contacts_table(client):
    """Create a table with one field of several types; returns its dict."""
    resp = client.post('/api/tables', json={'name': 'Contacts'})
    assert resp.status_code == 201
    table = resp.json()['data']
    for body in (
        {'name': 'Name', 'type': 'text'},
        {'name': 'Age', 'type': 'number'},
        {'name': 'Email', 'type': 'email'},
        {'name': 'Status', 'type': 'multiple_choice', 'options': ['Lead', 'Customer']},
    ):
        resp = client.post(f"/api/tables/{table['id']}/fields", json=body)
        assert resp.status_code == 201
    return client.get(f"/api/tables/{table['id']}").json()['data']
