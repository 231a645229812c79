"""
Tests for the table, field and entry REST endpoints.
"""

import uuid


def _entries_url(table):
    return f"/api/tables/{table['id']}/entries"


def _fields_url(table):
    return f"/api/tables/{table['id']}/fields"


def _field(table, name):
    return next(f for f in table['fields'] if f['name'] == name)


# ═══════════════════════════════════════════════════════════════════════
# Tables
# ═══════════════════════════════════════════════════════════════════════

def test_list_tables_empty(client):
    resp = client.get('/api/tables')
    assert resp.status_code == 200
    assert resp.json() == {'success': True, 'data': []}


def test_create_table(client):
    """POST /api/tables trims the name and starts with no fields."""
    resp = client.post('/api/tables', json={'name': '  Projects  '})
    assert resp.status_code == 201
    body = resp.json()
    assert body['success'] is True
    assert body['data']['name'] == 'Projects'
    assert body['data']['fields'] == []
    assert uuid.UUID(body['data']['id'])

    listing = client.get('/api/tables').json()['data']
    assert [t['name'] for t in listing] == ['Projects']
    assert 'fields' not in listing[0]


def test_create_table_blank_name(client):
    for body in ({'name': '   '}, {}, {'name': 42}):
        resp = client.post('/api/tables', json=body)
        assert resp.status_code == 400
        assert resp.json()['success'] is False


def test_create_table_duplicate_name_case_insensitive(client):
    assert client.post('/api/tables', json={'name': 'Contacts'}).status_code == 201
    resp = client.post('/api/tables', json={'name': 'contacts'})
    assert resp.status_code == 409
    assert resp.json()['message'] == 'Table with name "contacts" already exists.'
    assert len(client.get('/api/tables').json()['data']) == 1


def test_get_table(client, contacts_table):
    resp = client.get(f"/api/tables/{contacts_table['id']}")
    assert resp.status_code == 200
    data = resp.json()['data']
    assert [f['name'] for f in data['fields']] == ['Name', 'Age', 'Email', 'Status']
    assert _field(data, 'Status')['options'] == ['Lead', 'Customer']
    assert _field(data, 'Name')['options'] is None


def test_get_table_not_found(client):
    resp = client.get(f"/api/tables/{uuid.uuid4()}")
    assert resp.status_code == 404
    assert resp.json() == {'success': False, 'message': 'Table not found'}


def test_get_table_malformed_id(client):
    resp = client.get('/api/tables/not-an-id')
    assert resp.status_code == 400
    assert resp.json()['message'] == 'Invalid Table ID format'


def test_delete_table_cascades(client, contacts_table):
    for name in ('Ann', 'Bob', 'Cy'):
        client.post(_entries_url(contacts_table), json={'data': {'Name': name}})

    resp = client.delete(f"/api/tables/{contacts_table['id']}")
    assert resp.status_code == 200
    assert resp.json()['message'] == 'Table and 3 associated entries deleted successfully'

    assert client.get(f"/api/tables/{contacts_table['id']}").status_code == 404
    assert client.get(_entries_url(contacts_table)).status_code == 404


def test_delete_table_not_found(client):
    assert client.delete(f"/api/tables/{uuid.uuid4()}").status_code == 404


# ═══════════════════════════════════════════════════════════════════════
# Fields
# ═══════════════════════════════════════════════════════════════════════

def test_list_fields(client, contacts_table):
    resp = client.get(_fields_url(contacts_table))
    assert resp.status_code == 200
    assert [f['type'] for f in resp.json()['data']] == ['text', 'number', 'email',
                                                        'multiple_choice']


def test_create_field_duplicate_name(client, contacts_table):
    resp = client.post(_fields_url(contacts_table), json={'name': 'age', 'type': 'text'})
    assert resp.status_code == 409
    assert resp.json()['message'] == 'Field with name "age" already exists in this table.'


def test_create_field_unknown_type(client, contacts_table):
    resp = client.post(_fields_url(contacts_table), json={'name': 'X', 'type': 'color'})
    assert resp.status_code == 400
    assert 'type' in resp.json()['errors']


def test_create_multiple_choice_requires_options(client, contacts_table):
    resp = client.post(_fields_url(contacts_table),
                       json={'name': 'Tier', 'type': 'multiple_choice', 'options': []})
    assert resp.status_code == 400
    assert resp.json()['errors']['options'] == 'Options are required for multiple choice fields.'

    resp = client.post(_fields_url(contacts_table),
                       json={'name': 'Tier', 'type': 'multiple_choice', 'options': ['A', ' ']})
    assert resp.status_code == 400
    assert resp.json()['errors']['options'] == 'Options must not be blank.'


def test_create_field_on_missing_table(client):
    resp = client.post(f"/api/tables/{uuid.uuid4()}/fields", json={'name': 'X', 'type': 'text'})
    assert resp.status_code == 404


def test_update_field_rename_rewrites_entries(client, contacts_table):
    client.post(_entries_url(contacts_table), json={'data': {'Name': 'Ann', 'Age': 30}})
    age = _field(contacts_table, 'Age')

    resp = client.put(_fields_url(contacts_table),
                      json={'fieldId': age['id'], 'name': 'Years', 'type': 'number'})
    assert resp.status_code == 200
    assert resp.json()['data']['name'] == 'Years'

    entry = client.get(_entries_url(contacts_table)).json()['data'][0]
    assert entry['data']['Years'] == 30
    assert 'Age' not in entry['data']


def test_update_field_options_blank(client, contacts_table):
    status = _field(contacts_table, 'Status')
    resp = client.put(_fields_url(contacts_table),
                      json={'fieldId': status['id'], 'name': 'Status',
                            'type': 'multiple_choice', 'options': []})
    assert resp.status_code == 400


def test_update_field_not_found(client, contacts_table):
    resp = client.put(_fields_url(contacts_table),
                      json={'fieldId': str(uuid.uuid4()), 'name': 'X', 'type': 'text'})
    assert resp.status_code == 404


def test_delete_field_removes_values(client, contacts_table):
    client.post(_entries_url(contacts_table), json={'data': {'Name': 'Ann', 'Age': 30}})
    age = _field(contacts_table, 'Age')

    resp = client.delete(_fields_url(contacts_table), params={'fieldId': age['id']})
    assert resp.status_code == 200
    assert resp.json()['message'] == 'Field "Age" deleted successfully'

    entry = client.get(_entries_url(contacts_table)).json()['data'][0]
    assert 'Age' not in entry['data']
    assert entry['data']['Name'] == 'Ann'


def test_delete_field_missing_id(client, contacts_table):
    resp = client.delete(_fields_url(contacts_table))
    assert resp.status_code == 400
    assert resp.json()['message'] == 'Invalid Field ID format'


# ═══════════════════════════════════════════════════════════════════════
# Entries
# ═══════════════════════════════════════════════════════════════════════

def test_create_entry_normalizes_number(client, contacts_table):
    resp = client.post(_entries_url(contacts_table), json={'data': {'Age': '42'}})
    assert resp.status_code == 201
    data = resp.json()['data']
    assert data['data']['Age'] == 42
    assert data['data']['Name'] is None
    assert data['tableId'] == contacts_table['id']


def test_create_entry_invalid_number(client, contacts_table):
    resp = client.post(_entries_url(contacts_table), json={'data': {'Age': 'abc'}})
    assert resp.status_code == 400
    body = resp.json()
    assert body['message'] == 'Data validation failed'
    assert body['errors']['Age'] == 'Must be a valid number.'
    assert client.get(_entries_url(contacts_table)).json()['data'] == []


def test_create_entry_unknown_field(client, contacts_table):
    resp = client.post(_entries_url(contacts_table), json={'data': {'Phone': '555'}})
    assert resp.status_code == 400
    assert resp.json()['errors']['Phone'] == \
        'Field "Phone" does not exist in the table definition.'


def test_create_entry_reports_every_field(client, contacts_table):
    resp = client.post(_entries_url(contacts_table), json={'data': {
        'Age': 'x', 'Email': 'nope', 'Status': 'Partner'}})
    errors = resp.json()['errors']
    assert errors == {
        'Age': 'Must be a valid number.',
        'Email': 'Must be a valid email address.',
        'Status': 'Must be one of: Lead, Customer.',
    }


def test_create_entry_data_must_be_object(client, contacts_table):
    for body in ({'data': [1, 2]}, {'data': 'x'}, {}):
        resp = client.post(_entries_url(contacts_table), json=body)
        assert resp.status_code == 400
        assert resp.json()['message'] == 'Request body must contain a non-array "data" object.'


def test_list_entries_creation_order(client, contacts_table):
    for name in ('first', 'second', 'third'):
        client.post(_entries_url(contacts_table), json={'data': {'Name': name}})
    entries = client.get(_entries_url(contacts_table)).json()['data']
    assert [e['data']['Name'] for e in entries] == ['first', 'second', 'third']


def test_update_entry(client, contacts_table):
    created = client.post(_entries_url(contacts_table),
                          json={'data': {'Name': 'Ann'}}).json()['data']
    resp = client.put(_entries_url(contacts_table), json={
        'entryId': created['id'], 'data': {'Name': 'Ann', 'Status': 'Customer'}})
    assert resp.status_code == 200
    assert resp.json()['data']['data']['Status'] == 'Customer'


def test_update_entry_invalid_keeps_old_data(client, contacts_table):
    created = client.post(_entries_url(contacts_table),
                          json={'data': {'Age': 5}}).json()['data']
    resp = client.put(_entries_url(contacts_table), json={
        'entryId': created['id'], 'data': {'Age': 'five'}})
    assert resp.status_code == 400
    entry = client.get(_entries_url(contacts_table)).json()['data'][0]
    assert entry['data']['Age'] == 5


def test_update_entry_not_found(client, contacts_table):
    resp = client.put(_entries_url(contacts_table), json={
        'entryId': str(uuid.uuid4()), 'data': {}})
    assert resp.status_code == 404
    assert resp.json()['message'] == 'Entry not found'


def test_delete_entry(client, contacts_table):
    created = client.post(_entries_url(contacts_table),
                          json={'data': {'Name': 'Ann'}}).json()['data']
    resp = client.delete(_entries_url(contacts_table), params={'entryId': created['id']})
    assert resp.status_code == 200
    assert resp.json()['message'] == 'Entry deleted successfully'
    assert client.get(_entries_url(contacts_table)).json()['data'] == []

    resp = client.delete(_entries_url(contacts_table), params={'entryId': created['id']})
    assert resp.status_code == 404


def test_delete_entry_of_other_table(client, contacts_table):
    created = client.post(_entries_url(contacts_table),
                          json={'data': {'Name': 'Ann'}}).json()['data']
    other = client.post('/api/tables', json={'name': 'Other'}).json()['data']
    resp = client.delete(_entries_url(other), params={'entryId': created['id']})
    assert resp.status_code == 404
    assert len(client.get(_entries_url(contacts_table)).json()['data']) == 1


def test_malformed_payload_uses_envelope(client, contacts_table):
    resp = client.post(_fields_url(contacts_table), json={'name': 'X', 'options': 'abc'})
    assert resp.status_code == 400
    body = resp.json()
    assert body['success'] is False
    assert body['message'] == 'Invalid request payload'


def test_create_entry_oversized_number(client, contacts_table):
    resp = client.post(_entries_url(contacts_table), json={'data': {'Age': '9' * 5000}})
    assert resp.status_code == 400
    body = resp.json()
    assert body['success'] is False
    assert body['errors'] == {'Age': 'Must be a valid number.'}


def test_type_change_keeps_rows_editable(client, contacts_table):
    created = client.post(_entries_url(contacts_table),
                          json={'data': {'Name': 'Ann', 'Age': 30}}).json()['data']
    age = _field(contacts_table, 'Age')
    resp = client.put(_fields_url(contacts_table),
                      json={'fieldId': age['id'], 'name': 'Age', 'type': 'text'})
    assert resp.status_code == 200

    entry = client.get(_entries_url(contacts_table)).json()['data'][0]
    assert entry['data']['Age'] == '30'

    resp = client.put(_entries_url(contacts_table), json={
        'entryId': created['id'], 'data': dict(entry['data'], Name='Anna')})
    assert resp.status_code == 200
    assert resp.json()['data']['data'] == dict(entry['data'], Name='Anna')
