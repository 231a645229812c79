"""
Gridbook Web API
FastAPI application serving table, field and entry CRUD over JSON
"""

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from typing import Any, Optional
import logging
import os
import sqlite3

logger = logging.getLogger(__name__)

from gridbook_core import get_db, StoreError
from gridbook import __version__ as ENGINE_VERSION

from .crud_engine import CrudEngine, CrudError

app = FastAPI(title="Gridbook")


def _cors_origins():
    raw = os.environ.get('GRIDBOOK_CORS_ORIGINS', '*')
    return [o.strip() for o in raw.split(',') if o.strip()] or ['*']


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type"],
)


# ---------------------------------------------------------------------------
# Pydantic request/response models
# ---------------------------------------------------------------------------

class FieldItem(BaseModel):
    id: str
    name: str
    type: str
    options: Optional[list[str]] = None

class TableSummary(BaseModel):
    id: str
    name: str
    createdAt: str
    updatedAt: str

class TableItem(TableSummary):
    fields: list[FieldItem]

class EntryItem(BaseModel):
    id: str
    tableId: str
    data: dict[str, Any]
    createdAt: str
    updatedAt: str

class TableListResponse(BaseModel):
    success: bool
    data: list[TableSummary]

class TableResponse(BaseModel):
    success: bool
    data: TableItem

class FieldListResponse(BaseModel):
    success: bool
    data: list[FieldItem]

class FieldResponse(BaseModel):
    success: bool
    data: FieldItem

class EntryListResponse(BaseModel):
    success: bool
    data: list[EntryItem]

class EntryResponse(BaseModel):
    success: bool
    data: EntryItem

class MessageResponse(BaseModel):
    success: bool
    message: str

class ErrorResponse(BaseModel):
    success: bool = False
    message: str
    errors: Optional[dict[str, str]] = None


class TableCreate(BaseModel):
    name: Optional[str] = None

class FieldCreate(BaseModel):
    name: Optional[str] = None
    type: Optional[str] = None
    options: Optional[list[str]] = None

class FieldUpdate(FieldCreate):
    fieldId: Optional[str] = None

class EntryCreate(BaseModel):
    data: Any = None

class EntryUpdate(EntryCreate):
    entryId: Optional[str] = None


ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


# ---------------------------------------------------------------------------
# Response envelope helpers
# ---------------------------------------------------------------------------

def _ok(data=None, status_code=200, message=None):
    body = {'success': True}
    if data is not None:
        body['data'] = data
    if message:
        body['message'] = message
    return JSONResponse(body, status_code=status_code)


def _fail(message, status_code, errors=None):
    body = {'success': False, 'message': message}
    if errors:
        body['errors'] = errors
    return JSONResponse(body, status_code=status_code)


def _run(label, operation, status_code=200):
    """Run ``operation(engine)`` on a fresh connection and wrap the result.

    CrudError subclasses map to their status code; store failures are
    logged and reported as a generic 500.
    """
    conn = None
    try:
        conn = get_db()
        result = operation(CrudEngine(conn))
    except CrudError as e:
        return _fail(e.message, e.status_code, e.errors)
    except (sqlite3.Error, StoreError):
        logger.exception("[%s] store failure", label)
        return _fail('Server Error', 500)
    finally:
        if conn is not None:
            conn.close()
    if isinstance(result, JSONResponse):
        return result
    return _ok(result, status_code=status_code)


@app.exception_handler(RequestValidationError)
async def _request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed payloads get the standard envelope with a 400."""
    errors = {}
    for err in exc.errors():
        loc = [str(p) for p in err.get('loc', ()) if p not in ('body', 'query')]
        errors['.'.join(loc) or 'body'] = err.get('msg', 'Invalid value')
    return _fail('Invalid request payload', 400, errors)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

@app.get('/api/health')
def api_health():
    """Liveness probe."""
    return _ok({'status': 'ok', 'version': ENGINE_VERSION})


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------

@app.get('/api/tables', response_model=TableListResponse, responses=ERROR_RESPONSES)
def api_tables():
    """List all tables (without fields)."""
    return _run('API_TABLES_GET', lambda engine: engine.list_tables())


@app.post('/api/tables', status_code=201, response_model=TableResponse,
          responses=ERROR_RESPONSES)
def api_table_create(body: TableCreate):
    """Create a table from a name; names are unique case-insensitively."""
    return _run('API_TABLES_POST',
                lambda engine: engine.create_table(body.name).to_dict(),
                status_code=201)


@app.get('/api/tables/{table_id}', response_model=TableResponse, responses=ERROR_RESPONSES)
def api_table_get(table_id: str):
    """Get one table with its field list."""
    return _run('API_TABLE_GET', lambda engine: engine.get_table(table_id).to_dict())


@app.delete('/api/tables/{table_id}', response_model=MessageResponse,
            responses=ERROR_RESPONSES)
def api_table_delete(table_id: str):
    """Delete a table and every entry that belongs to it."""
    def operation(engine):
        removed = engine.delete_table(table_id)
        return _ok(message=f'Table and {removed} associated entries deleted successfully')
    return _run('API_TABLE_DELETE', operation)


# ---------------------------------------------------------------------------
# Fields
# ---------------------------------------------------------------------------

@app.get('/api/tables/{table_id}/fields', response_model=FieldListResponse,
         responses=ERROR_RESPONSES)
def api_fields(table_id: str):
    """List a table's fields in display order."""
    return _run('API_TABLE_FIELDS_GET',
                lambda engine: [f.to_dict() for f in engine.list_fields(table_id)])


@app.post('/api/tables/{table_id}/fields', status_code=201, response_model=FieldResponse,
          responses=ERROR_RESPONSES)
def api_field_create(table_id: str, body: FieldCreate):
    """Append a field to a table."""
    return _run('API_TABLE_FIELDS_POST',
                lambda engine: engine.create_field(
                    table_id, body.name, body.type, body.options).to_dict(),
                status_code=201)


@app.put('/api/tables/{table_id}/fields', response_model=FieldResponse,
         responses=ERROR_RESPONSES)
def api_field_update(table_id: str, body: FieldUpdate):
    """Rename, retype or change the options of a field."""
    return _run('API_TABLE_FIELDS_PUT',
                lambda engine: engine.update_field(
                    table_id, body.fieldId, body.name, body.type, body.options).to_dict())


@app.delete('/api/tables/{table_id}/fields', response_model=MessageResponse,
            responses=ERROR_RESPONSES)
def api_field_delete(table_id: str, field_id: Optional[str] = Query(None, alias='fieldId')):
    """Remove a field (and its values) from a table."""
    def operation(engine):
        fdef = engine.delete_field(table_id, field_id)
        return _ok(message=f'Field "{fdef.name}" deleted successfully')
    return _run('API_TABLE_FIELDS_DELETE', operation)


# ---------------------------------------------------------------------------
# Entries
# ---------------------------------------------------------------------------

@app.get('/api/tables/{table_id}/entries', response_model=EntryListResponse,
         responses=ERROR_RESPONSES)
def api_entries(table_id: str):
    """List a table's entries in creation order."""
    return _run('API_TABLE_ENTRIES_GET', lambda engine: engine.list_entries(table_id))


@app.post('/api/tables/{table_id}/entries', status_code=201, response_model=EntryResponse,
          responses=ERROR_RESPONSES)
def api_entry_create(table_id: str, body: EntryCreate):
    """Validate and store a new entry."""
    return _run('API_TABLE_ENTRIES_POST',
                lambda engine: engine.create_entry(table_id, body.data),
                status_code=201)


@app.put('/api/tables/{table_id}/entries', response_model=EntryResponse,
         responses=ERROR_RESPONSES)
def api_entry_update(table_id: str, body: EntryUpdate):
    """Revalidate and replace an entry's data."""
    return _run('API_TABLE_ENTRIES_PUT',
                lambda engine: engine.update_entry(table_id, body.entryId, body.data))


@app.delete('/api/tables/{table_id}/entries', response_model=MessageResponse,
            responses=ERROR_RESPONSES)
def api_entry_delete(table_id: str, entry_id: Optional[str] = Query(None, alias='entryId')):
    """Delete one entry of a table."""
    def operation(engine):
        engine.delete_entry(table_id, entry_id)
        return _ok(message='Entry deleted successfully')
    return _run('API_TABLE_ENTRIES_DELETE', operation)


if __name__ == '__main__':
    import argparse
    import uvicorn
    parser = argparse.ArgumentParser()
    parser.add_argument('--db-path', type=str, default=None,
                        help='SQLite database file (overrides GRIDBOOK_DB_PATH)')
    parser.add_argument('--port', type=int, default=8080,
                        help='Server port (default: 8080)')
    args = parser.parse_args()
    if args.db_path:
        from gridbook_core import _set_paths_for_testing
        _set_paths_for_testing(os.path.abspath(args.db_path))
    uvicorn.run(app, host='0.0.0.0', port=args.port)
