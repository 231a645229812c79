"""
Field Schema — typed field definitions and entry-data validation.

Provides FieldDef/TableDef dataclasses, field-definition checks and the
entry validator that turns a loosely-typed attribute map into normalized,
typed cell values with per-field error messages.
"""

import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, NamedTuple
from urllib.parse import urlsplit


FIELD_TYPES = ('text', 'number', 'email', 'time', 'multiple_choice', 'website', 'date')

EMAIL_RE = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
TIME_RE = re.compile(r'^([01]\d|2[0-3]):([0-5]\d)$')
INT_RE = re.compile(r'^[+-]?[0-9]+$')
DECIMAL_RE = re.compile(r'^[+-]?([0-9]+\.?[0-9]*|\.[0-9]+)([eE][+-]?[0-9]+)?$')


@dataclass
class FieldDef:
    id: str
    name: str
    type: str = 'text'
    options: list[str] | None = None   # multiple_choice only

    def to_dict(self) -> dict:
        return {'id': self.id, 'name': self.name, 'type': self.type,
                'options': list(self.options) if self.options is not None else None}

    @classmethod
    def from_dict(cls, data: dict) -> 'FieldDef':
        return cls(
            id=data['id'],
            name=data['name'],
            type=data.get('type', 'text'),
            options=data.get('options'),
        )


@dataclass
class TableDef:
    id: str
    name: str
    fields: list[FieldDef] = field(default_factory=list)
    created_at: str = ''
    updated_at: str = ''

    def field_by_id(self, field_id: str) -> FieldDef | None:
        return next((f for f in self.fields if f.id == field_id), None)

    def to_dict(self, include_fields: bool = True) -> dict:
        data = {'id': self.id, 'name': self.name,
                'createdAt': self.created_at, 'updatedAt': self.updated_at}
        if include_fields:
            data['fields'] = [f.to_dict() for f in self.fields]
        return data


class CellValue(NamedTuple):
    """A normalized cell value tagged with the type of its field."""
    type: str
    value: Any


@dataclass
class ValidationResult:
    valid: bool
    errors: dict[str, str]
    values: dict[str, CellValue]     # field id -> tagged value, field order
    fields: list[FieldDef]

    @property
    def normalized(self) -> dict[str, Any]:
        """Plain ``{field name: value}`` map, in field order."""
        return {f.name: self.values[f.id].value for f in self.fields if f.id in self.values}


# ---------------------------------------------------------------------------
# Field definitions
# ---------------------------------------------------------------------------

def clean_options(options) -> tuple[list[str] | None, str | None]:
    """Trim and de-duplicate a multiple_choice option list.

    Returns (options, error message or None).
    """
    if options is None or not isinstance(options, (list, tuple)) or len(options) == 0:
        return None, 'Options are required for multiple choice fields.'
    cleaned = []
    for opt in options:
        if not isinstance(opt, str) or not opt.strip():
            return None, 'Options must not be blank.'
        opt = opt.strip()
        if opt not in cleaned:
            cleaned.append(opt)
    return cleaned, None


def validate_field_definition(name, field_type, options, existing: list[FieldDef],
                              field_id: str | None = None):
    """Check a requested field definition against the table's field list.

    Args:
        name: Requested field name (untrimmed)
        field_type: Requested type
        options: Requested options (only meaningful for multiple_choice)
        existing: The table's current fields
        field_id: Id of the field being edited (excluded from the
            duplicate-name check), or None for a new field

    Returns:
        (cleaned dict, errors dict, duplicate flag). ``cleaned`` holds the
        trimmed name, the type and the cleaned options.
    """
    errors = {}
    cleaned = {'name': None, 'type': field_type, 'options': None}

    if not isinstance(name, str) or not name.strip():
        errors['name'] = 'Field name is required and must be a non-empty string.'
    else:
        cleaned['name'] = name.strip()

    if field_type not in FIELD_TYPES:
        errors['type'] = f"Field type is required and must be one of: {', '.join(FIELD_TYPES)}."
    elif field_type == 'multiple_choice':
        opts, opt_error = clean_options(options)
        if opt_error:
            errors['options'] = opt_error
        cleaned['options'] = opts

    duplicate = False
    if cleaned['name'] is not None:
        folded = cleaned['name'].casefold()
        duplicate = any(f.name.casefold() == folded and f.id != field_id for f in existing)

    return cleaned, errors, duplicate


# ---------------------------------------------------------------------------
# Entry data
# ---------------------------------------------------------------------------

def _is_empty(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _parse_number(value):
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, str):
        text = value.strip()
        if not DECIMAL_RE.match(text):
            return None
        num = float(text)
        if not math.isfinite(num):
            return None
        if INT_RE.match(text):
            try:
                return int(text)
            except ValueError:
                # zero-padded past the int string conversion limit
                return num
        return num
    return None


def _parse_date(value):
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace('Z', '+00:00')).date()
    except ValueError:
        return None


def _is_url(text: str) -> bool:
    try:
        parts = urlsplit(text)
    except ValueError:
        return False
    return parts.scheme in ('http', 'https') and bool(parts.netloc) and ' ' not in text


def normalize_value(fdef: FieldDef, value):
    """Check and coerce one non-empty value.

    Returns (normalized value, error message or None).
    """
    if fdef.type == 'text':
        if not isinstance(value, str):
            return None, 'Must be a string.'
        return value.strip(), None

    if fdef.type == 'number':
        num = _parse_number(value)
        if num is None:
            return None, 'Must be a valid number.'
        return num, None

    if fdef.type == 'email':
        if not isinstance(value, str) or not EMAIL_RE.match(value.strip()):
            return None, 'Must be a valid email address.'
        return value.strip(), None

    if fdef.type == 'time':
        if not isinstance(value, str) or not TIME_RE.match(value.strip()):
            return None, 'Must be a valid time in HH:MM (24-hour) format.'
        return value.strip(), None

    if fdef.type == 'website':
        if not isinstance(value, str) or not _is_url(value.strip()):
            return None, 'Must be a valid URL.'
        return value.strip(), None

    if fdef.type == 'date':
        parsed = _parse_date(value)
        if parsed is None:
            return None, 'Must be a valid date in YYYY-MM-DD format.'
        return parsed.isoformat(), None

    if fdef.type == 'multiple_choice':
        if not isinstance(value, str):
            return None, 'Must be a string.'
        choice = value.strip()
        if fdef.options and choice not in fdef.options:
            return None, f"Must be one of: {', '.join(fdef.options)}."
        return choice, None

    return None, f'Unknown field type: {fdef.type}'


def convert_value(fdef: FieldDef, value, old_type: str):
    """Carry a stored value over to a field's new definition.

    The value is tried as stored, then as the text it was displayed as
    under ``old_type`` (so 30 becomes "30" for a text field). Empty values
    and values that fit neither way become None.
    """
    if _is_empty(value):
        return None
    for candidate in (value, format_cell_value(old_type, value)):
        normalized, error = normalize_value(fdef, candidate)
        if error is None:
            return normalized
    return None


def validate_entry_data(data: dict, fields: list[FieldDef]) -> ValidationResult:
    """Validate and normalize an entry's attribute map.

    Args:
        data: Raw ``{field name: value}`` map from the request
        fields: The table's current fields, in display order

    Returns:
        ValidationResult. Errors are keyed by the offending key or field
        name; fields that pass are present in ``values`` even when others
        fail.
    """
    errors = {}
    values = {}
    names = {f.name for f in fields}

    # Check for unknown fields
    for key in data:
        if key not in names:
            errors[key] = f'Field "{key}" does not exist in the table definition.'

    for fdef in fields:
        raw = data.get(fdef.name)
        if _is_empty(raw):
            values[fdef.id] = CellValue(fdef.type, None)
            continue

        value, error = normalize_value(fdef, raw)
        if error:
            errors[fdef.name] = error
        else:
            values[fdef.id] = CellValue(fdef.type, value)

    return ValidationResult(valid=not errors, errors=errors, values=values, fields=list(fields))


def format_cell_value(field_type: str, value) -> str:
    """Render a stored value as the text shown in an edit box."""
    if value is None:
        return ''
    if field_type == 'date':
        parsed = _parse_date(value)
        return parsed.isoformat() if parsed else str(value)
    if field_type == 'number' and isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)
