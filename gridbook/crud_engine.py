"""
CRUD Engine — table, field and entry operations over the document store.

All SQL uses parameterized queries. Every mutation runs inside
``transaction()``; a failure anywhere in an operation leaves the store
unchanged. Errors are raised as ``CrudError`` subclasses which the API
layer maps to HTTP status codes.
"""

from __future__ import annotations

import logging
import sqlite3

from gridbook_core import transaction, new_id, is_valid_id, utc_now, dump_json, load_json

from .field_schema import (
    FieldDef, TableDef, convert_value, validate_field_definition, validate_entry_data,
)

logger = logging.getLogger(__name__)


class CrudError(Exception):
    """Base class for errors reported back to the API caller."""
    status_code = 500

    def __init__(self, message: str, errors: dict | None = None):
        super().__init__(message)
        self.message = message
        self.errors = errors


class InvalidInputError(CrudError):
    status_code = 400


class DataValidationError(CrudError):
    status_code = 400


class NotFoundError(CrudError):
    status_code = 404


class ConflictError(CrudError):
    status_code = 409


def _check_id(value, label: str):
    if not is_valid_id(value):
        raise InvalidInputError(f'Invalid {label} ID format')


def _entry_dict(row) -> dict:
    return {
        'id': row['id'],
        'tableId': row['table_id'],
        'data': load_json(row['data_json'], {}),
        'createdAt': row['created_at'],
        'updatedAt': row['updated_at'],
    }


class CrudEngine:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    # -- tables -------------------------------------------------------------

    def list_tables(self) -> list[dict]:
        """All tables (without their fields), oldest first."""
        cursor = self.conn.execute(
            "SELECT id, name, created_at, updated_at FROM tables ORDER BY created_at, rowid")
        return [{'id': r['id'], 'name': r['name'],
                 'createdAt': r['created_at'], 'updatedAt': r['updated_at']}
                for r in cursor.fetchall()]

    def get_table(self, table_id) -> TableDef:
        _check_id(table_id, 'Table')
        table = self._load_table(table_id)
        if table is None:
            raise NotFoundError('Table not found')
        return table

    def create_table(self, name) -> TableDef:
        if not isinstance(name, str) or not name.strip():
            raise InvalidInputError('Table name is required and must be a non-empty string.')
        name = name.strip()

        now = utc_now()
        table = TableDef(id=new_id(), name=name, fields=[], created_at=now, updated_at=now)
        try:
            with transaction(self.conn):
                if self._table_name_taken(name):
                    raise ConflictError(f'Table with name "{name}" already exists.')
                self.conn.execute(
                    "INSERT INTO tables (id, name, fields_json, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (table.id, table.name, '[]', now, now))
        except sqlite3.IntegrityError as e:
            raise ConflictError(f'Table with name "{name}" already exists.') from e
        logger.info("Created table %s (%s)", table.name, table.id)
        return table

    def delete_table(self, table_id) -> int:
        """Delete a table and all of its entries atomically.

        Returns the number of entries removed.
        """
        _check_id(table_id, 'Table')
        with transaction(self.conn):
            cursor = self.conn.execute("DELETE FROM tables WHERE id = ?", (table_id,))
            if cursor.rowcount == 0:
                raise NotFoundError('Table not found')
            removed = self._delete_entries_of(table_id)
        logger.info("Deleted table %s with %d entries", table_id, removed)
        return removed

    def _delete_entries_of(self, table_id) -> int:
        cursor = self.conn.execute("DELETE FROM entries WHERE table_id = ?", (table_id,))
        return cursor.rowcount

    def _load_table(self, table_id) -> TableDef | None:
        row = self.conn.execute(
            "SELECT id, name, fields_json, created_at, updated_at FROM tables WHERE id = ?",
            (table_id,)).fetchone()
        if not row:
            return None
        return TableDef(
            id=row['id'],
            name=row['name'],
            fields=[FieldDef.from_dict(f) for f in load_json(row['fields_json'], [])],
            created_at=row['created_at'],
            updated_at=row['updated_at'],
        )

    def _table_name_taken(self, name: str) -> bool:
        folded = name.casefold()
        cursor = self.conn.execute("SELECT name FROM tables")
        return any(r['name'].casefold() == folded for r in cursor.fetchall())

    def _save_fields(self, table: TableDef):
        table.updated_at = utc_now()
        self.conn.execute(
            "UPDATE tables SET fields_json = ?, updated_at = ? WHERE id = ?",
            (dump_json([f.to_dict() for f in table.fields]), table.updated_at, table.id))

    # -- fields -------------------------------------------------------------

    def list_fields(self, table_id) -> list[FieldDef]:
        return self.get_table(table_id).fields

    def create_field(self, table_id, name, field_type, options=None) -> FieldDef:
        _check_id(table_id, 'Table')
        with transaction(self.conn):
            table = self._require_table(table_id)
            cleaned = self._check_field(name, field_type, options, table.fields)
            fdef = FieldDef(id=new_id(), **cleaned)
            table.fields.append(fdef)
            self._save_fields(table)
        logger.info("Added field %s (%s) to table %s", fdef.name, fdef.type, table_id)
        return fdef

    def update_field(self, table_id, field_id, name, field_type, options=None) -> FieldDef:
        """Edit a field in place.

        A rename is carried into every entry. When the type or the option
        list changes, each stored value is converted to the new definition
        and values that no longer fit are cleared, all in the same
        transaction.
        """
        _check_id(table_id, 'Table')
        _check_id(field_id, 'Field')
        with transaction(self.conn):
            table = self._require_table(table_id)
            fdef = table.field_by_id(field_id)
            if fdef is None:
                raise NotFoundError('Field not found')
            cleaned = self._check_field(name, field_type, options, table.fields, field_id)

            old_name, old_type, old_options = fdef.name, fdef.type, fdef.options
            fdef.name = cleaned['name']
            fdef.type = cleaned['type']
            fdef.options = cleaned['options']
            self._save_fields(table)

            retyped = (old_type, old_options) != (fdef.type, fdef.options)
            if old_name != fdef.name or retyped:
                def migrate(data):
                    out = {}
                    for k, v in data.items():
                        if k == old_name:
                            out[fdef.name] = convert_value(fdef, v, old_type) if retyped else v
                        else:
                            out[k] = v
                    return out
                self._rewrite_entry_keys(table_id, migrate)
        logger.info("Updated field %s in table %s", field_id, table_id)
        return fdef

    def delete_field(self, table_id, field_id) -> FieldDef:
        """Remove a field and drop its key from every entry."""
        _check_id(table_id, 'Table')
        _check_id(field_id, 'Field')
        with transaction(self.conn):
            table = self._require_table(table_id)
            fdef = table.field_by_id(field_id)
            if fdef is None:
                raise NotFoundError('Field not found')
            table.fields = [f for f in table.fields if f.id != field_id]
            self._save_fields(table)
            self._rewrite_entry_keys(table_id, lambda data: {
                k: v for k, v in data.items() if k != fdef.name})
        logger.info("Deleted field %s from table %s", fdef.name, table_id)
        return fdef

    def _check_field(self, name, field_type, options, existing, field_id=None) -> dict:
        cleaned, errors, duplicate = validate_field_definition(
            name, field_type, options, existing, field_id)
        if errors:
            raise DataValidationError(next(iter(errors.values())), errors)
        if duplicate:
            raise ConflictError(
                f'Field with name "{cleaned["name"]}" already exists in this table.')
        return cleaned

    def _rewrite_entry_keys(self, table_id, transform):
        cursor = self.conn.execute(
            "SELECT id, data_json FROM entries WHERE table_id = ?", (table_id,))
        now = utc_now()
        for row in cursor.fetchall():
            data = load_json(row['data_json'], {})
            self.conn.execute(
                "UPDATE entries SET data_json = ?, updated_at = ? WHERE id = ?",
                (dump_json(transform(data)), now, row['id']))

    def _require_table(self, table_id) -> TableDef:
        table = self._load_table(table_id)
        if table is None:
            raise NotFoundError('Table not found')
        return table

    # -- entries ------------------------------------------------------------

    def list_entries(self, table_id) -> list[dict]:
        _check_id(table_id, 'Table')
        self._require_table(table_id)
        cursor = self.conn.execute(
            "SELECT * FROM entries WHERE table_id = ? ORDER BY created_at, rowid",
            (table_id,))
        return [_entry_dict(r) for r in cursor.fetchall()]

    def read_entry(self, table_id, entry_id) -> dict | None:
        row = self.conn.execute(
            "SELECT * FROM entries WHERE id = ? AND table_id = ?",
            (entry_id, table_id)).fetchone()
        return _entry_dict(row) if row else None

    def create_entry(self, table_id, data) -> dict:
        """Validate ``data`` against the table's fields and store it."""
        _check_id(table_id, 'Table')
        data = self._check_payload(data)
        entry_id = new_id()
        with transaction(self.conn):
            table = self._require_table(table_id)
            normalized = self._validate(data, table)
            now = utc_now()
            self.conn.execute(
                "INSERT INTO entries (id, table_id, data_json, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (entry_id, table_id, dump_json(normalized), now, now))
        return self.read_entry(table_id, entry_id)

    def update_entry(self, table_id, entry_id, data) -> dict:
        """Replace an entry's data after revalidating the whole map."""
        _check_id(table_id, 'Table')
        _check_id(entry_id, 'Entry')
        data = self._check_payload(data)
        with transaction(self.conn):
            table = self._require_table(table_id)
            if self.read_entry(table_id, entry_id) is None:
                raise NotFoundError('Entry not found')
            normalized = self._validate(data, table)
            self.conn.execute(
                "UPDATE entries SET data_json = ?, updated_at = ? WHERE id = ? AND table_id = ?",
                (dump_json(normalized), utc_now(), entry_id, table_id))
        return self.read_entry(table_id, entry_id)

    def delete_entry(self, table_id, entry_id):
        _check_id(table_id, 'Table')
        _check_id(entry_id, 'Entry')
        with transaction(self.conn):
            cursor = self.conn.execute(
                "DELETE FROM entries WHERE id = ? AND table_id = ?", (entry_id, table_id))
            if cursor.rowcount == 0:
                raise NotFoundError('Entry not found')

    @staticmethod
    def _check_payload(data) -> dict:
        if not isinstance(data, dict):
            raise InvalidInputError('Request body must contain a non-array "data" object.')
        return data

    @staticmethod
    def _validate(data: dict, table: TableDef) -> dict:
        result = validate_entry_data(data, table.fields)
        if not result.valid:
            raise DataValidationError('Data validation failed', result.errors)
        return result.normalized
