"""
Grid Controller — toolkit-independent logic behind the grid editor.

Holds the loaded fields and entries of one table, feeds UI actions through
the ``grid_state`` reducer and saves the commits it emits through the API
client. Failures are kept per cell (``cell_errors``) or in ``error`` so
the view can show them next to the affected control.
"""

from __future__ import annotations

import logging

from gridbook_core import ClientError, ApiError, BulkDeleteError

from .field_schema import FieldDef, validate_entry_data, format_cell_value
from .grid_state import IDLE, Editing, Dragging, RowSelection, reduce

logger = logging.getLogger(__name__)


def _cell_message(error: ApiError, field_name: str) -> str:
    """Message to show on an edited cell; errors on other fields are named."""
    if field_name in error.errors:
        return error.errors[field_name]
    if error.errors:
        name, message = next(iter(error.errors.items()))
        return f'{name}: {message}'
    return error.message


class GridController:
    def __init__(self, client):
        self.client = client
        self.table_id: str | None = None
        self.fields: list[FieldDef] = []
        self.entries: list[dict] = []
        self.state = IDLE
        self.selection = RowSelection()
        self.cell_errors: dict[tuple[str, str], str] = {}
        self.error: str | None = None

    # -- GridView -----------------------------------------------------------

    @property
    def row_count(self) -> int:
        return len(self.entries)

    @property
    def col_count(self) -> int:
        return len(self.fields)

    def display_value(self, row: int, col: int) -> str:
        fdef = self.fields[col]
        return format_cell_value(fdef.type, self.entries[row]['data'].get(fdef.name))

    # -- loading ------------------------------------------------------------

    def load(self, table_id: str):
        """Fetch the table's fields and entries, resetting all local state."""
        fields = self.client.list_fields(table_id)
        entries = self.client.list_entries(table_id)
        self.table_id = table_id
        self.fields = [FieldDef.from_dict(f) for f in fields]
        self.entries = list(entries)
        self.state = IDLE
        self.selection.clear()
        self.cell_errors.clear()
        self.error = None

    def reload(self):
        """Fetch the table again, keeping an open edit on the same entry and field."""
        if self.table_id is not None:
            editing = self._editing_key()
            self.load(self.table_id)
            self._restore_editing(editing)

    def entry_ids(self) -> list[str]:
        return [e['id'] for e in self.entries]

    # -- editing ------------------------------------------------------------

    def dispatch(self, action):
        """Run one UI action through the reducer and save any commits."""
        transition = reduce(self.state, action, self)
        self.state = transition.state
        for commit in transition.commits:
            self.save_cell(commit.cell, commit.value)
        return self.state

    def is_drag_selected(self, cell) -> bool:
        return isinstance(self.state, Dragging) and self.state.contains(cell)

    def save_cell(self, cell, value: str) -> bool:
        """Save one edited cell. Returns True if the entry is up to date.

        Unchanged values are not sent. The value is checked locally with
        the same validator the server runs before any request is made.
        """
        if not self._cell_exists(cell):
            return False
        row, col = cell
        entry = self.entries[row]
        fdef = self.fields[col]
        key = (entry['id'], fdef.id)

        if value == self.display_value(row, col):
            self.cell_errors.pop(key, None)
            return True

        local = validate_entry_data({fdef.name: value}, [fdef])
        if not local.valid:
            self.cell_errors[key] = local.errors[fdef.name]
            return False

        data = dict(entry['data'])
        data[fdef.name] = value
        try:
            updated = self.client.update_entry(self.table_id, entry['id'], data)
        except ApiError as e:
            self.cell_errors[key] = _cell_message(e, fdef.name)
            logger.warning("Saving %s of entry %s failed: %s", fdef.name, entry['id'], e)
            return False
        except ClientError as e:
            self.cell_errors[key] = str(e)
            return False

        self.entries[row] = updated
        self.cell_errors.pop(key, None)
        return True

    # -- entries ------------------------------------------------------------

    def add_entry(self, data: dict) -> dict:
        """Create an entry from the add-row form.

        Raises ApiError carrying per-field ``errors`` when the data does
        not validate, locally or on the server.
        """
        local = validate_entry_data(data, self.fields)
        if not local.valid:
            raise ApiError('Data validation failed', status=400, errors=local.errors)
        entry = self.client.create_entry(self.table_id, data)
        self.entries.append(entry)
        return entry

    def delete_entry(self, entry_id: str):
        self.client.delete_entry(self.table_id, entry_id)
        self._drop_entries([entry_id])

    def bulk_delete(self) -> list[str]:
        """Delete every selected row, one concurrent request per row.

        Rows that were deleted leave the grid even when others fail; the
        aggregate BulkDeleteError is then recorded in ``error`` and
        re-raised. Failed rows stay selected.
        """
        ids = self.selection.ordered(self.entry_ids())
        if not ids:
            return []
        try:
            deleted = self.client.delete_entries(self.table_id, ids)
        except BulkDeleteError as e:
            self._drop_entries(e.deleted)
            self.error = str(e)
            raise
        self._drop_entries(deleted)
        self.error = None
        return deleted

    def _drop_entries(self, entry_ids):
        gone = set(entry_ids)
        editing = self._editing_key()
        self.entries = [e for e in self.entries if e['id'] not in gone]
        self.selection.discard(gone)
        self.cell_errors = {k: v for k, v in self.cell_errors.items() if k[0] not in gone}
        if isinstance(self.state, Dragging):
            self.state = IDLE
        self._restore_editing(editing)

    # -- fields -------------------------------------------------------------

    def add_field(self, name, field_type, options=None) -> FieldDef:
        fdef = FieldDef.from_dict(self.client.create_field(self.table_id, name, field_type, options))
        self.reload()
        return fdef

    def update_field(self, field_id, name, field_type, options=None) -> FieldDef:
        fdef = FieldDef.from_dict(
            self.client.update_field(self.table_id, field_id, name, field_type, options))
        self.reload()
        return fdef

    def delete_field(self, field_id):
        self.client.delete_field(self.table_id, field_id)
        self.reload()

    # -- helpers ------------------------------------------------------------

    def _cell_exists(self, cell) -> bool:
        row, col = cell
        return 0 <= row < self.row_count and 0 <= col < self.col_count

    def _editing_key(self):
        """(entry id, field id, draft) of the open edit, or None."""
        if not isinstance(self.state, Editing) or not self._cell_exists(self.state.cell):
            return None
        row, col = self.state.cell
        return self.entries[row]['id'], self.fields[col].id, self.state.value

    def _restore_editing(self, key):
        """Point an open edit back at its entry and field after rows moved.

        Drops to IDLE when either is gone.
        """
        if key is None:
            if isinstance(self.state, Editing):
                self.state = IDLE
            return
        entry_id, field_id, value = key
        row = next((i for i, e in enumerate(self.entries) if e['id'] == entry_id), None)
        col = next((i for i, f in enumerate(self.fields) if f.id == field_id), None)
        if row is None or col is None:
            self.state = IDLE
        else:
            self.state = Editing((row, col), value)
